"""ec2-cli - ephemeral EC2 instances addressed by name.

Example:

    from ec2cli import Profile, provision, resolve_instance_name, get_instance

    result = provision(Profile.default(), "alpha", link=True)

    name = resolve_instance_name()     # "alpha", via the directory link
    record = get_instance(name)        # InstanceRecord(instance_id="i-...", ...)
"""

from loguru import logger

from ec2cli.aws.infra import Infrastructure, PermissionBinding, resolve_infrastructure
from ec2cli.aws.instances import launch_instance, wait_for_agent_ready, wait_for_running
from ec2cli.aws.session import Session, establish
from ec2cli.config import Settings
from ec2cli.exceptions import (
    AuthError,
    ConfigurationError,
    Ec2CliError,
    InstanceNameExistsError,
    InstanceNotFoundError,
    LaunchError,
    ProviderError,
    ReadinessError,
    ReadinessTimeoutError,
    ResolutionError,
    StateCorruptedError,
    StateError,
)
from ec2cli.profile import Profile
from ec2cli.provision import ProvisionResult, provision
from ec2cli.state import (
    InstanceRecord,
    State,
    StateStore,
    get_instance,
    list_instances,
    remove_instance,
    resolve_instance_name,
    save_instance,
)

# Library default: silent until setup_logging() is called.
logger.disable("ec2cli")

__version__ = "0.1.0"

__all__ = [
    # Pipeline
    "establish",
    "Session",
    "resolve_infrastructure",
    "Infrastructure",
    "PermissionBinding",
    "launch_instance",
    "wait_for_running",
    "wait_for_agent_ready",
    "provision",
    "ProvisionResult",
    # Models
    "Profile",
    "Settings",
    # State
    "State",
    "StateStore",
    "InstanceRecord",
    "save_instance",
    "get_instance",
    "remove_instance",
    "list_instances",
    "resolve_instance_name",
    # Errors
    "Ec2CliError",
    "AuthError",
    "ConfigurationError",
    "ResolutionError",
    "ProviderError",
    "LaunchError",
    "ReadinessError",
    "ReadinessTimeoutError",
    "StateError",
    "StateCorruptedError",
    "InstanceNotFoundError",
    "InstanceNameExistsError",
]
