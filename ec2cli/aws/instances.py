"""Launching EC2 instances and waiting for them to become usable.

An instance is usable once EC2 reports it ``running`` *and* its SSM agent
has registered as ``Online``. The agent cannot register before the
instance runs, so the two waits are strictly sequential, each with its
own timeout.
"""

from __future__ import annotations

import time
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from loguru import logger
from tenacity import Retrying, retry_if_exception, wait_exponential

from ec2cli.aws.ami import resolve_image
from ec2cli.aws.clients import Tag
from ec2cli.aws.infra import Infrastructure
from ec2cli.aws.session import Session
from ec2cli.constants import (
    AGENT_READY_TIMEOUT,
    MANAGED_TAG_VALUE,
    POLL_INTERVAL,
    PROFILE_PROPAGATION_TIMEOUT,
    ROOT_DEVICE_NAME,
    RUNNING_TIMEOUT,
    SSM_ONLINE,
    TERMINAL_STATES,
    Ec2CliTag,
    InstanceState,
)
from ec2cli.exceptions import InstanceStateError, LaunchError, ProviderError
from ec2cli.polling import Clock, Sleep, poll_until
from ec2cli.profile import Profile

log = logger.bind(component="aws-instances")


# =============================================================================
# Tags
# =============================================================================


def build_tags(
    name: str,
    custom_tags: Mapping[str, str] | None = None,
    *,
    allow_override: bool = False,
) -> list[Tag]:
    """Standard ec2-cli tags merged with operator-supplied custom tags.

    On a key collision the standard tag wins unless ``allow_override`` is set.

    Example:
        >>> build_tags("alpha", {"Team": "infra"})
        [{'Key': 'ec2-cli:managed', 'Value': 'true'}, {'Key': 'ec2-cli:name', 'Value': 'alpha'}, {'Key': 'Name', 'Value': 'ec2-cli-alpha'}, {'Key': 'Team', 'Value': 'infra'}]
    """
    standard = {
        Ec2CliTag.MANAGED.value: MANAGED_TAG_VALUE,
        Ec2CliTag.NAME.value: name,
        Ec2CliTag.AWS_NAME.value: f"ec2-cli-{name}",
    }
    merged = dict(standard)
    for key, value in (custom_tags or {}).items():
        if key in standard and not allow_override:
            log.debug("Ignoring custom tag {key}: reserved by ec2-cli", key=key)
            continue
        merged[key] = value
    return [{"Key": k, "Value": v} for k, v in merged.items()]


# =============================================================================
# Launch
# =============================================================================


@dataclass(frozen=True, slots=True)
class LaunchRequest:
    """Everything needed for one RunInstances call."""

    profile_name: str
    instance_type: str
    ami_id: str
    volume_size_gb: int
    volume_type: str
    tags: tuple[tuple[str, str], ...]
    user_data: str
    subnet_id: str
    instance_profile_arn: str

    def to_run_instances_args(self) -> dict[str, Any]:
        tags = [{"Key": k, "Value": v} for k, v in self.tags]
        return {
            "ImageId": self.ami_id,
            "InstanceType": self.instance_type,
            "MinCount": 1,
            "MaxCount": 1,
            "SubnetId": self.subnet_id,
            "IamInstanceProfile": {"Arn": self.instance_profile_arn},
            "UserData": self.user_data,
            "BlockDeviceMappings": [
                {
                    "DeviceName": ROOT_DEVICE_NAME,
                    "Ebs": {
                        "VolumeSize": self.volume_size_gb,
                        "VolumeType": self.volume_type,
                        "DeleteOnTermination": True,
                    },
                }
            ],
            "TagSpecifications": [
                {"ResourceType": "instance", "Tags": tags},
                {"ResourceType": "volume", "Tags": tags},
            ],
            "MetadataOptions": {"HttpTokens": "required", "HttpEndpoint": "enabled"},
        }


def build_launch_request(
    session: Session,
    infra: Infrastructure,
    profile: Profile,
    name: str,
    user_data: str,
    *,
    custom_tags: Mapping[str, str] | None = None,
) -> LaunchRequest:
    instance = profile.instance
    tags = build_tags(name, custom_tags)
    return LaunchRequest(
        profile_name=profile.name,
        instance_type=instance.instance_type,
        ami_id=resolve_image(session, profile),
        volume_size_gb=instance.root_volume.size_gb,
        volume_type=instance.root_volume.volume_type,
        tags=tuple((t["Key"], t["Value"]) for t in tags),
        user_data=user_data,
        subnet_id=infra.subnet_id,
        instance_profile_arn=infra.instance_profile_arn,
    )


def _profile_not_visible(exc: BaseException) -> bool:
    """EC2 rejecting an instance profile IAM has not finished propagating."""
    return (
        isinstance(exc, ProviderError)
        and exc.code == "InvalidParameterValue"
        and "iaminstanceprofile" in exc.message.lower()
    )


def launch_instance(
    session: Session,
    infra: Infrastructure,
    profile: Profile,
    name: str,
    user_data: str,
    *,
    custom_tags: Mapping[str, str] | None = None,
    clock: Clock = time.monotonic,
    sleep: Sleep = time.sleep,
) -> str:
    """Submit a single RunInstances request and return the new instance id.

    A failed submission is surfaced verbatim and nothing is rolled back. The
    one exception: if the permission binding was created during this run,
    EC2 may not see the instance profile yet, and that specific rejection is
    retried with backoff for a bounded time.

    Raises:
        LaunchError: If the request cannot be built or EC2 rejects it.
    """
    try:
        request = build_launch_request(
            session, infra, profile, name, user_data, custom_tags=custom_tags
        )
    except LaunchError:
        raise
    except ProviderError as e:
        raise LaunchError(e.message, operation=e.operation, code=e.code) from e

    args = request.to_run_instances_args()

    def submit() -> str:
        return session.instances.run_instance(args)

    log.info(
        "Launching {instance_type} for {name} in {subnet}",
        instance_type=request.instance_type,
        name=name,
        subnet=request.subnet_id,
    )

    try:
        if infra.binding_created:
            started = clock()
            retrying = Retrying(
                stop=lambda _: clock() - started >= PROFILE_PROPAGATION_TIMEOUT,
                wait=wait_exponential(multiplier=1, min=1, max=10),
                retry=retry_if_exception(_profile_not_visible),
                sleep=sleep,
                reraise=True,
            )
            instance_id = retrying(submit)
        else:
            instance_id = submit()
    except LaunchError:
        raise
    except ProviderError as e:
        raise LaunchError(e.message, operation=e.operation, code=e.code) from e

    log.info("Instance launched: {instance_id}", instance_id=instance_id)
    return instance_id


# =============================================================================
# Readiness
# =============================================================================


def wait_for_running(
    session: Session,
    instance_id: str,
    timeout: float = RUNNING_TIMEOUT,
    *,
    interval: float = POLL_INTERVAL,
    clock: Clock = time.monotonic,
    sleep: Sleep = time.sleep,
) -> None:
    """Block until EC2 reports the instance ``running``.

    Raises:
        ReadinessTimeoutError: If it is not running within ``timeout`` seconds.
        InstanceStateError: If it stops or terminates while waiting.
    """

    def check() -> str | None:
        state = session.instances.instance_state(instance_id)
        if state in TERMINAL_STATES:
            raise InstanceStateError(instance_id, state)
        return state

    poll_until(
        check,
        lambda state: state == InstanceState.RUNNING,
        timeout=timeout,
        interval=interval,
        resource_id=instance_id,
        waiting_for="running",
        clock=clock,
        sleep=sleep,
    )
    log.info("Instance {instance_id} running", instance_id=instance_id)


def wait_for_agent_ready(
    session: Session,
    instance_id: str,
    timeout: float = AGENT_READY_TIMEOUT,
    *,
    interval: float = POLL_INTERVAL,
    clock: Clock = time.monotonic,
    sleep: Sleep = time.sleep,
) -> None:
    """Block until the instance's SSM agent reports ``Online``.

    Raises:
        ReadinessTimeoutError: If the agent is not online within ``timeout`` seconds.
    """
    poll_until(
        lambda: session.agents.ping_status(instance_id),
        lambda status: status == SSM_ONLINE,
        timeout=timeout,
        interval=interval,
        resource_id=instance_id,
        waiting_for="registered with SSM",
        clock=clock,
        sleep=sleep,
    )
    log.info("SSM agent ready on {instance_id}", instance_id=instance_id)
