"""Tests for operator prompts."""

from cosmos_gke import console


def _answer(text):
    return lambda prompt: text


def test_confirm_requires_exact_yes():
    assert console.confirm("Proceed?", input_func=_answer("yes"))
    assert console.confirm("Proceed?", input_func=_answer(" YES "))
    assert not console.confirm("Proceed?", input_func=_answer("y"))
    assert not console.confirm("Proceed?", input_func=_answer(""))


def test_confirm_short_answers():
    assert console.confirm("Continue?", accept=("y", "yes"), input_func=_answer("y"))
    assert not console.confirm("Continue?", accept=("y", "yes"), input_func=_answer("n"))


def test_confirm_end_of_input():
    def closed(prompt):
        raise EOFError

    assert not console.confirm("Proceed?", input_func=closed)


def test_next_steps_numbered(capsys):
    console.next_steps(["first", "second"])

    out = capsys.readouterr().out
    assert "1. first" in out
    assert "2. second" in out
