"""Subcommands of the cosmos-gke CLI."""

from . import deploy, infra, predict, provision, status, teardown, undeploy, verify

# Registration order is the order shown in --help.
COMMANDS = [provision, verify, deploy, status, predict, undeploy, teardown, infra]

__all__ = ["COMMANDS"]
