"""Verified AWS session.

A Session is built once per invocation: it pins the region, proves the
credentials work with ``sts:GetCallerIdentity`` and hands out the narrow
service capabilities the rest of the pipeline uses. Credentials are never
assumed valid before that call succeeds, and a failure is not retried.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from botocore.exceptions import BotoCoreError, ClientError
from loguru import logger

from ec2cli.aws.clients import (
    AgentApi,
    BotoAgentApi,
    BotoImageApi,
    BotoInstanceApi,
    BotoNetworkApi,
    BotoPermissionApi,
    ImageApi,
    InstanceApi,
    NetworkApi,
    PermissionApi,
)
from ec2cli.config import Settings
from ec2cli.exceptions import AuthError

if TYPE_CHECKING:
    import boto3

log = logger.bind(component="aws-session")


@dataclass(frozen=True, slots=True)
class Session:
    """Region, account and service capabilities for one invocation."""

    region: str
    account_id: str
    network: NetworkApi
    permissions: PermissionApi
    instances: InstanceApi
    agents: AgentApi
    images: ImageApi

    @classmethod
    def from_boto(cls, boto_session: Any, region: str, account_id: str) -> Session:
        ec2 = boto_session.client("ec2", region_name=region)
        ssm = boto_session.client("ssm", region_name=region)
        iam = boto_session.client("iam", region_name=region)
        return cls(
            region=region,
            account_id=account_id,
            network=BotoNetworkApi(ec2),
            permissions=BotoPermissionApi(iam),
            instances=BotoInstanceApi(ec2),
            agents=BotoAgentApi(ssm),
            images=BotoImageApi(ssm),
        )


def establish(
    region: str | None = None,
    *,
    settings: Settings | None = None,
    boto_session: boto3.Session | None = None,
) -> Session:
    """Load ambient credentials and verify them.

    Region precedence: ``region`` argument, then ``settings.region``, then
    the ambient AWS configuration (environment, shared config files).

    Args:
        region: Explicit region override.
        settings: Settings to read a region override from. Loaded from the
            default location when omitted.
        boto_session: Pre-built boto3 session (mainly for tests).

    Returns:
        A verified Session.

    Raises:
        AuthError: If no region can be determined or the identity call fails.
    """
    if settings is None:
        settings = Settings.load()
    region = region or settings.region

    try:
        # A missing AWS_PROFILE surfaces here as ProfileNotFound.
        if boto_session is None:
            import boto3

            boto_session = boto3.Session(region_name=region)
        resolved = region or boto_session.region_name
    except BotoCoreError as e:
        raise AuthError(str(e)) from e

    if not resolved:
        raise AuthError("no AWS region configured (set AWS_REGION or run 'aws configure')")

    try:
        sts = boto_session.client("sts", region_name=resolved)
        identity = sts.get_caller_identity()
    except (ClientError, BotoCoreError) as e:
        raise AuthError(str(e)) from e

    account_id = identity.get("Account")
    if not account_id:
        raise AuthError("caller identity returned no account id")

    log.info("Connected to AWS account {account} in {region}", account=account_id, region=resolved)
    return Session.from_boto(boto_session, resolved, account_id)
