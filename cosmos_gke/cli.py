"""
cosmos-gke command line entry point.

Provision a GKE cluster with a GPU node pool, deploy NVIDIA Cosmos onto it,
verify the GPU stack and tear everything down again.
"""

import argparse
import logging
import sys
from typing import Optional

from kubernetes.client.exceptions import ApiException
from pydantic import ValidationError

from . import __version__
from .commands import COMMANDS
from .config import get_settings
from .exceptions import CosmosGKEError
from .telemetry import setup_telemetry

logger = logging.getLogger("cosmos_gke")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cosmos-gke",
        description="Run NVIDIA Cosmos on a GPU-enabled GKE cluster",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: APP_LOG_LEVEL or INFO)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True, metavar="COMMAND")
    for command in COMMANDS:
        command.add_parser(subparsers)
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = get_settings()
    except ValidationError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 1
    logging.basicConfig(
        level=args.log_level or settings.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    setup_telemetry(settings)

    try:
        return args.func(args, settings)
    except CosmosGKEError as e:
        logger.error(f"{e}")
        return 1
    except ValidationError as e:
        logger.error(f"Invalid configuration: {e}")
        return 1
    except ApiException as e:
        logger.error(f"Kubernetes API request failed: {e.status} {e.reason}")
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted.")
        return 130


if __name__ == "__main__":
    sys.exit(main())
