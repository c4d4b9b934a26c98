"""Exception hierarchy for ec2-cli.

Every ec2-cli error inherits from Ec2CliError, with one branch per domain
(auth, configuration, resolution, provider calls, readiness, local state)
so callers can catch as broadly or as narrowly as they need.
"""

from __future__ import annotations

from pathlib import Path


class Ec2CliError(Exception):
    """Base exception for all ec2-cli errors."""


# =============================================================================
# Authentication
# =============================================================================


class AuthError(Ec2CliError):
    """Raised when AWS credentials or region cannot be established."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"AWS credentials not found or invalid: {reason}")


# =============================================================================
# Configuration
# =============================================================================


class ConfigurationError(Ec2CliError):
    """Raised for invalid configuration or missing required settings."""


class InvalidTagError(ConfigurationError):
    """Raised when a custom tag key or value violates EC2 tag rules."""

    def __init__(self, key: str, reason: str) -> None:
        self.key = key
        self.reason = reason
        super().__init__(f"Invalid tag {key!r}: {reason}")


class ProfileValidationError(ConfigurationError):
    """Raised when a profile fails validation."""

    def __init__(self, profile: str, reason: str) -> None:
        self.profile = profile
        self.reason = reason
        super().__init__(f"Profile validation failed for {profile!r}: {reason}")


# =============================================================================
# Infrastructure resolution
# =============================================================================


class ResolutionError(Ec2CliError):
    """Raised when network placement or the permission binding cannot be resolved."""


class NoDefaultNetworkError(ResolutionError):
    def __init__(self, region: str) -> None:
        self.region = region
        super().__init__(
            f"No default VPC found in region {region}. Please specify a VPC ID in config."
        )


class SubnetNotConfiguredError(ResolutionError, ConfigurationError):
    def __init__(self) -> None:
        super().__init__("Subnet must be configured. Run 'ec2-cli config init' first.")


class SubnetNotFoundError(ResolutionError):
    def __init__(self, subnet_id: str) -> None:
        self.subnet_id = subnet_id
        super().__init__(f"Subnet not found: {subnet_id}")


class SubnetMismatchError(ResolutionError, ConfigurationError):
    """Raised when the configured subnet lives in a different VPC."""

    def __init__(self, subnet_id: str, actual_vpc_id: str, expected_vpc_id: str) -> None:
        self.subnet_id = subnet_id
        self.actual_vpc_id = actual_vpc_id
        self.expected_vpc_id = expected_vpc_id
        super().__init__(
            f"Subnet {subnet_id} is in VPC {actual_vpc_id}, not {expected_vpc_id}"
        )


class PermissionBindingError(ResolutionError):
    """Raised when the IAM role or instance profile cannot be read or created."""

    def __init__(self, operation: str, message: str) -> None:
        self.operation = operation
        self.message = message
        super().__init__(f"AWS IAM error during {operation}: {message}")


# =============================================================================
# Provider API failures
# =============================================================================


class ProviderError(Ec2CliError):
    """Raised when an AWS API call fails. The provider message is kept verbatim."""

    def __init__(
        self, service: str, operation: str, message: str, code: str | None = None
    ) -> None:
        self.service = service
        self.operation = operation
        self.message = message
        self.code = code
        super().__init__(f"AWS {service.upper()} error during {operation}: {message}")


class LaunchError(ProviderError):
    """Raised when the RunInstances request (or its preparation) fails."""

    def __init__(
        self, message: str, operation: str = "RunInstances", code: str | None = None
    ) -> None:
        super().__init__("ec2", operation, message, code)


# =============================================================================
# Readiness
# =============================================================================


class ReadinessError(Ec2CliError):
    """Raised when an instance does not reach a ready state."""


class ReadinessTimeoutError(ReadinessError):
    def __init__(self, instance_id: str, waiting_for: str, timeout: float) -> None:
        self.instance_id = instance_id
        self.waiting_for = waiting_for
        self.timeout = timeout
        super().__init__(
            f"Operation timed out: {instance_id} not {waiting_for} after {timeout:g}s"
        )


class InstanceStateError(ReadinessError):
    """Raised when an instance enters a state it cannot become ready from."""

    def __init__(self, instance_id: str, state: str) -> None:
        self.instance_id = instance_id
        self.state = state
        super().__init__(f"Instance {instance_id} in unexpected state: {state}")


# =============================================================================
# Local state
# =============================================================================


class StateError(Ec2CliError):
    """Raised for problems with the local state document."""


class StateCorruptedError(StateError):
    def __init__(self, path: Path, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"State file corrupted ({path}): {reason}")


class InstanceNotFoundError(StateError):
    """Raised when a name is unknown, or no name was given and none is linked."""

    def __init__(self, name: str | None) -> None:
        self.name = name
        if name is None:
            super().__init__(
                "Instance not found: no instance name provided and no linked instance found"
            )
        else:
            super().__init__(f"Instance not found: {name}")


class InstanceNameExistsError(StateError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Instance name already in use: {name}")
