"""Operator-facing output and confirmation prompts."""

from typing import Callable, Iterable

from .models.provisioning import StepOutcome, StepResult

WIDTH = 70

_MARKS = {
    StepOutcome.CREATED: "[OK]",
    StepOutcome.DELETED: "[OK]",
    StepOutcome.EXISTS: "[SKIP]",
    StepOutcome.MISSING: "[SKIP]",
    StepOutcome.FAILED: "[WARN]",
}


def banner(title: str) -> None:
    print("=" * WIDTH)
    print(title)
    print("=" * WIDTH)


def section(title: str) -> None:
    print("\n" + "-" * 60)
    print(title)
    print("-" * 60)


def step(result: StepResult) -> None:
    print(f"  {_MARKS[result.outcome]} {result}")


def bullets(lines: Iterable[str], indent: str = "  - ") -> None:
    for line in lines:
        print(f"{indent}{line}")


def next_steps(commands: Iterable[str]) -> None:
    print("\nNext steps:")
    for number, command in enumerate(commands, start=1):
        print(f"  {number}. {command}")
    print()


def confirm(
    prompt: str,
    accept: tuple[str, ...] = ("yes",),
    input_func: Callable[[str], str] = input,
) -> bool:
    """Ask a question; only an exact accepted answer counts as consent."""
    hint = "/".join((accept[0], "no")) if accept[0] == "yes" else "y/N"
    try:
        answer = input_func(f"{prompt} ({hint}): ")
    except EOFError:
        return False
    return answer.strip().lower() in accept
