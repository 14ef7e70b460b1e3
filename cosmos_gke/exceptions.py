"""Error types raised by the provisioning and deployment services."""


class CosmosGKEError(Exception):
    """Base class for all errors reported to the operator."""


class PreconditionError(CosmosGKEError):
    """A required input or external precondition is missing."""


class ProvisioningError(CosmosGKEError):
    """A create or delete call against GCP or Kubernetes failed."""


class WaitTimeoutError(CosmosGKEError):
    """A blocking wait that gates later steps ran out of time."""

    def __init__(self, description: str, attempts: int):
        super().__init__(f"Timed out waiting for {description} after {attempts} attempts")
        self.description = description
        self.attempts = attempts
