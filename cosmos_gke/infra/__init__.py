"""Declarative infrastructure: a Pulumi inline program and its stack driver."""

from .program import create_program
from .stack import InfraStack

__all__ = ["create_program", "InfraStack"]
