"""Network placement and IAM permission binding for ec2-cli instances.

Placement comes from settings (VPC optional, subnet required) and is
validated against EC2 before anything is created. The permission binding
is a role plus an instance profile with fixed, well-known names, so at
most one exists per account; it is looked up first and only created when
missing. IAM is eventually consistent, so a freshly created profile is
polled until it is visible with its role attached.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass

from loguru import logger

from ec2cli.aws.session import Session
from ec2cli.config import Settings
from ec2cli.constants import (
    ASSUME_ROLE_POLICY,
    INSTANCE_PROFILE_NAME,
    MANAGED_TAG_VALUE,
    PROFILE_PROPAGATION_INTERVAL,
    PROFILE_PROPAGATION_TIMEOUT,
    ROLE_DESCRIPTION,
    ROLE_NAME,
    SSM_POLICY_DOCUMENT,
    SSM_POLICY_NAME,
    Ec2CliTag,
)
from ec2cli.exceptions import (
    NoDefaultNetworkError,
    PermissionBindingError,
    ReadinessTimeoutError,
    SubnetMismatchError,
    SubnetNotConfiguredError,
    SubnetNotFoundError,
)
from ec2cli.polling import Clock, Sleep, poll_until

log = logger.bind(component="aws-infra")

_MANAGED_TAGS = [{"Key": Ec2CliTag.MANAGED.value, "Value": MANAGED_TAG_VALUE}]


@dataclass(frozen=True, slots=True)
class PermissionBinding:
    role_name: str
    profile_name: str
    profile_arn: str
    created: bool = False


@dataclass(frozen=True, slots=True)
class Infrastructure:
    """Validated placement and permission binding for a launch."""

    vpc_id: str
    subnet_id: str
    instance_profile_arn: str
    instance_profile_name: str
    binding_created: bool = False


# =============================================================================
# Network placement
# =============================================================================


def resolve_vpc(session: Session, settings: Settings) -> str:
    if settings.vpc_id:
        return settings.vpc_id

    vpc_id = session.network.default_vpc_id()
    if vpc_id is None:
        raise NoDefaultNetworkError(session.region)
    return vpc_id


def validate_subnet(session: Session, subnet_id: str, vpc_id: str) -> None:
    """Ensure ``subnet_id`` exists and belongs to ``vpc_id``. Never auto-corrects."""
    actual = session.network.subnet_vpc_id(subnet_id)
    if actual is None:
        raise SubnetNotFoundError(subnet_id)
    if actual != vpc_id:
        raise SubnetMismatchError(subnet_id, actual, vpc_id)


# =============================================================================
# Permission binding
# =============================================================================


def _ensure_role(session: Session) -> bool:
    """Create the role if absent. Returns True if created.

    The inline SSM policy is put on every call (PutRolePolicy overwrites), so a
    role left without it by an interrupted run is repaired.
    """
    created = False
    if session.permissions.get_role(ROLE_NAME) is None:
        log.info("Creating IAM role {role}", role=ROLE_NAME)
        session.permissions.create_role(
            ROLE_NAME,
            json.dumps(ASSUME_ROLE_POLICY),
            ROLE_DESCRIPTION,
            _MANAGED_TAGS,
        )
        created = True

    session.permissions.put_role_policy(
        ROLE_NAME, SSM_POLICY_NAME, json.dumps(SSM_POLICY_DOCUMENT)
    )
    return created


def _has_role(profile: dict, role_name: str) -> bool:
    return any(r.get("RoleName") == role_name for r in profile.get("Roles", []))


def _wait_for_profile(session: Session, *, clock: Clock, sleep: Sleep) -> dict:
    def check() -> dict | None:
        return session.permissions.get_instance_profile(INSTANCE_PROFILE_NAME)

    try:
        profile = poll_until(
            check,
            lambda p: p is not None and _has_role(p, ROLE_NAME),
            timeout=PROFILE_PROPAGATION_TIMEOUT,
            interval=PROFILE_PROPAGATION_INTERVAL,
            resource_id=INSTANCE_PROFILE_NAME,
            waiting_for="visible with its role attached",
            clock=clock,
            sleep=sleep,
        )
    except ReadinessTimeoutError as e:
        raise PermissionBindingError("GetInstanceProfile", str(e)) from e
    assert profile is not None
    return profile


def ensure_permission_binding(
    session: Session,
    *,
    clock: Clock = time.monotonic,
    sleep: Sleep = time.sleep,
) -> PermissionBinding:
    """Get or create the role + instance profile used by launched instances.

    Idempotent: when both already exist nothing is created and nothing is
    waited on, so every call after the first returns immediately with the
    same identifiers.

    Raises:
        PermissionBindingError: If an IAM call fails or a new profile never
            becomes visible.
    """
    role_created = _ensure_role(session)

    profile = session.permissions.get_instance_profile(INSTANCE_PROFILE_NAME)
    profile_created = profile is None

    if profile is None:
        log.info("Creating instance profile {profile}", profile=INSTANCE_PROFILE_NAME)
        profile = session.permissions.create_instance_profile(INSTANCE_PROFILE_NAME, _MANAGED_TAGS)
        session.permissions.add_role_to_instance_profile(INSTANCE_PROFILE_NAME, ROLE_NAME)
    elif not _has_role(profile, ROLE_NAME):
        log.warning(
            "Instance profile {profile} has no role attached, attaching {role}",
            profile=INSTANCE_PROFILE_NAME,
            role=ROLE_NAME,
        )
        session.permissions.add_role_to_instance_profile(INSTANCE_PROFILE_NAME, ROLE_NAME)
        profile_created = True

    if profile_created or role_created:
        profile = _wait_for_profile(session, clock=clock, sleep=sleep)

    return PermissionBinding(
        role_name=ROLE_NAME,
        profile_name=INSTANCE_PROFILE_NAME,
        profile_arn=profile["Arn"],
        created=profile_created or role_created,
    )


# =============================================================================
# Entry point
# =============================================================================


def resolve_infrastructure(
    session: Session,
    settings: Settings,
    *,
    clock: Clock = time.monotonic,
    sleep: Sleep = time.sleep,
) -> Infrastructure:
    """Resolve placement and ensure the permission binding.

    Args:
        session: Verified AWS session.
        settings: Settings carrying the VPC / subnet overrides.

    Returns:
        Infrastructure ready to be referenced by a launch request.

    Raises:
        NoDefaultNetworkError: No VPC configured and no default VPC.
        SubnetNotConfiguredError: No subnet configured.
        SubnetNotFoundError: The subnet does not exist.
        SubnetMismatchError: The subnet is in a different VPC.
        PermissionBindingError: IAM failures.
    """
    vpc_id = resolve_vpc(session, settings)

    subnet_id = settings.subnet_id
    if not subnet_id:
        raise SubnetNotConfiguredError()

    validate_subnet(session, subnet_id, vpc_id)
    log.debug("Placement: vpc={vpc} subnet={subnet}", vpc=vpc_id, subnet=subnet_id)

    binding = ensure_permission_binding(session, clock=clock, sleep=sleep)

    return Infrastructure(
        vpc_id=vpc_id,
        subnet_id=subnet_id,
        instance_profile_arn=binding.profile_arn,
        instance_profile_name=binding.profile_name,
        binding_created=binding.created,
    )
