"""Centralized constants and enums for ec2-cli.

All magic strings, resource names, policy documents and timeouts are
defined here so every stage of the provisioning pipeline agrees on them.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any, Final

APP_NAME: Final = "ec2-cli"

# =============================================================================
# AWS Resource Tags
# =============================================================================


class Ec2CliTag(StrEnum):
    """AWS resource tag keys used by ec2-cli."""

    MANAGED = "ec2-cli:managed"
    NAME = "ec2-cli:name"
    AWS_NAME = "Name"


MANAGED_TAG_VALUE: Final = "true"
RESERVED_TAG_PREFIX: Final = "aws:"
MAX_TAG_KEY_LENGTH: Final = 128
MAX_TAG_VALUE_LENGTH: Final = 256
USERNAME_TAG: Final = "Username"

# =============================================================================
# EC2 / SSM States
# =============================================================================


class InstanceState(StrEnum):
    """EC2 instance state names."""

    PENDING = "pending"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    SHUTTING_DOWN = "shutting-down"
    TERMINATED = "terminated"


# States from which an instance can never become running on its own.
TERMINAL_STATES: Final = frozenset(
    s.value for s in (InstanceState.STOPPED, InstanceState.SHUTTING_DOWN, InstanceState.TERMINATED)
)

SSM_ONLINE: Final = "Online"

# =============================================================================
# IAM Permission Binding
# =============================================================================

ROLE_NAME: Final = "ec2-cli-instance-role"
INSTANCE_PROFILE_NAME: Final = "ec2-cli-instance-profile"
SSM_POLICY_NAME: Final = "ec2-cli-ssm-policy"
ROLE_DESCRIPTION: Final = "Role for ec2-cli managed instances"

ASSUME_ROLE_POLICY: Final[dict[str, Any]] = {
    "Version": "2012-10-17",
    "Statement": [
        {
            "Effect": "Allow",
            "Principal": {"Service": "ec2.amazonaws.com"},
            "Action": "sts:AssumeRole",
        }
    ],
}

# Only what Session Manager needs: agent registration plus the
# ssmmessages / ec2messages channels.
SSM_POLICY_DOCUMENT: Final[dict[str, Any]] = {
    "Version": "2012-10-17",
    "Statement": [
        {
            "Effect": "Allow",
            "Action": [
                "ssm:UpdateInstanceInformation",
                "ssmmessages:CreateControlChannel",
                "ssmmessages:CreateDataChannel",
                "ssmmessages:OpenControlChannel",
                "ssmmessages:OpenDataChannel",
                "ec2messages:AcknowledgeMessage",
                "ec2messages:DeleteMessage",
                "ec2messages:FailMessage",
                "ec2messages:GetEndpoint",
                "ec2messages:GetMessages",
                "ec2messages:SendReply",
            ],
            "Resource": "*",
        }
    ],
}

# =============================================================================
# AMI Resolution (public SSM parameters)
# =============================================================================

AMI_SSM_PARAMETERS: Final[dict[tuple[str, str], str]] = {
    ("al2023", "x86_64"): "/aws/service/ami-amazon-linux-latest/al2023-ami-kernel-default-x86_64",
    ("al2023", "arm64"): "/aws/service/ami-amazon-linux-latest/al2023-ami-kernel-default-arm64",
    ("al2", "x86_64"): "/aws/service/ami-amazon-linux-latest/amzn2-ami-hvm-x86_64-gp2",
    ("al2", "arm64"): "/aws/service/ami-amazon-linux-latest/amzn2-ami-hvm-arm64-gp2",
    ("ubuntu-22.04", "x86_64"): (
        "/aws/service/canonical/ubuntu/server/22.04/stable/current/amd64/hvm/ebs-gp2/ami-id"
    ),
    ("ubuntu-22.04", "arm64"): (
        "/aws/service/canonical/ubuntu/server/22.04/stable/current/arm64/hvm/ebs-gp2/ami-id"
    ),
    ("ubuntu-24.04", "x86_64"): (
        "/aws/service/canonical/ubuntu/server/24.04/stable/current/amd64/hvm/ebs-gp3/ami-id"
    ),
    ("ubuntu-24.04", "arm64"): (
        "/aws/service/canonical/ubuntu/server/24.04/stable/current/arm64/hvm/ebs-gp3/ami-id"
    ),
}

ROOT_DEVICE_NAME: Final = "/dev/xvda"

# =============================================================================
# Instance Filesystem Layout
# =============================================================================

INSTANCE_USER: Final = "ec2-user"
INSTANCE_HOME: Final = f"/home/{INSTANCE_USER}"
INIT_LOG: Final = "/var/log/ec2-cli-init.log"
READY_MARKER: Final = f"{INSTANCE_HOME}/.ec2-cli-ready"

# =============================================================================
# Local Files
# =============================================================================

STATE_FILE_NAME: Final = "state.json"
CONFIG_FILE_NAME: Final = "config.json"
LINK_DIR_NAME: Final = ".ec2-cli"
LINK_FILE_NAME: Final = "instance"
SETTINGS_FILE_MODE: Final = 0o600

# =============================================================================
# Timeouts (in seconds)
# =============================================================================

RUNNING_TIMEOUT: Final = 300
AGENT_READY_TIMEOUT: Final = 600
POLL_INTERVAL: Final = 5
PROFILE_PROPAGATION_TIMEOUT: Final = 60
PROFILE_PROPAGATION_INTERVAL: Final = 2
