"""Narrow AWS capability interfaces and their boto3 implementations.

Each pipeline stage depends on a small protocol instead of a raw boto3
client, so the resolver and the readiness waits can be exercised against
scripted fakes. The boto3 adapters translate ``ClientError`` into the
ec2-cli exception hierarchy, keeping the provider message verbatim, and
turn "does not exist (yet)" answers into ``None``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

from botocore.exceptions import BotoCoreError, ClientError
from loguru import logger

from ec2cli.exceptions import PermissionBindingError, ProviderError

if TYPE_CHECKING:
    from mypy_boto3_ec2 import EC2Client
    from mypy_boto3_iam import IAMClient
    from mypy_boto3_ssm import SSMClient

type Tag = dict[str, str]

_INSTANCE_NOT_VISIBLE = frozenset({"InvalidInstanceID.NotFound", "InvalidInstanceID.Malformed"})
_IAM_NOT_FOUND = frozenset({"NoSuchEntity"})
_IAM_ALREADY_EXISTS = frozenset({"EntityAlreadyExists"})

log = logger.bind(component="aws-clients")


def error_code(exc: ClientError) -> str:
    return exc.response.get("Error", {}).get("Code", "Unknown")


def error_message(exc: ClientError) -> str:
    return exc.response.get("Error", {}).get("Message", "") or str(exc)


def _provider_error(service: str, operation: str, exc: ClientError | BotoCoreError) -> ProviderError:
    match exc:
        case ClientError():
            return ProviderError(service, operation, error_message(exc), error_code(exc))
        case _:
            return ProviderError(service, operation, str(exc))


# =============================================================================
# Capability protocols
# =============================================================================


class NetworkApi(Protocol):
    def default_vpc_id(self) -> str | None: ...
    def subnet_vpc_id(self, subnet_id: str) -> str | None: ...


class PermissionApi(Protocol):
    def get_role(self, role_name: str) -> dict[str, Any] | None: ...
    def create_role(
        self, role_name: str, trust_policy: str, description: str, tags: list[Tag]
    ) -> dict[str, Any]: ...
    def put_role_policy(self, role_name: str, policy_name: str, document: str) -> None: ...
    def get_instance_profile(self, profile_name: str) -> dict[str, Any] | None: ...
    def create_instance_profile(self, profile_name: str, tags: list[Tag]) -> dict[str, Any]: ...
    def add_role_to_instance_profile(self, profile_name: str, role_name: str) -> None: ...


class InstanceApi(Protocol):
    def run_instance(self, request: dict[str, Any]) -> str: ...
    def instance_state(self, instance_id: str) -> str | None: ...


class AgentApi(Protocol):
    def ping_status(self, instance_id: str) -> str | None: ...


class ImageApi(Protocol):
    def parameter(self, name: str) -> str | None: ...


# =============================================================================
# boto3 adapters
# =============================================================================


@dataclass(frozen=True, slots=True)
class BotoNetworkApi:
    ec2: EC2Client

    def default_vpc_id(self) -> str | None:
        try:
            vpcs = self.ec2.describe_vpcs(Filters=[{"Name": "is-default", "Values": ["true"]}])
        except (ClientError, BotoCoreError) as e:
            raise _provider_error("ec2", "DescribeVpcs", e) from e
        return next((v["VpcId"] for v in vpcs.get("Vpcs", []) if v.get("VpcId")), None)

    def subnet_vpc_id(self, subnet_id: str) -> str | None:
        try:
            subnets = self.ec2.describe_subnets(SubnetIds=[subnet_id])
        except ClientError as e:
            if error_code(e) == "InvalidSubnetID.NotFound":
                return None
            raise _provider_error("ec2", "DescribeSubnets", e) from e
        except BotoCoreError as e:
            raise _provider_error("ec2", "DescribeSubnets", e) from e

        found = subnets.get("Subnets", [])
        if not found:
            return None
        return found[0].get("VpcId", "")


@dataclass(frozen=True, slots=True)
class BotoPermissionApi:
    """IAM adapter. Creation calls are idempotent: "already exists" is success."""

    iam: IAMClient

    def _call(
        self, operation: str, fn: Any, *, tolerate: frozenset[str] = frozenset(), **kwargs: Any
    ) -> Any:
        """Invoke ``fn``; returns None when IAM answers with a tolerated error code."""
        try:
            return fn(**kwargs)
        except ClientError as e:
            if error_code(e) in tolerate:
                log.debug("{operation}: {code}, continuing", operation=operation, code=error_code(e))
                return None
            raise PermissionBindingError(operation, error_message(e)) from e
        except BotoCoreError as e:
            raise PermissionBindingError(operation, str(e)) from e

    def get_role(self, role_name: str) -> dict[str, Any] | None:
        resp = self._call("GetRole", self.iam.get_role, tolerate=_IAM_NOT_FOUND, RoleName=role_name)
        return resp["Role"] if resp else None

    def create_role(
        self, role_name: str, trust_policy: str, description: str, tags: list[Tag]
    ) -> dict[str, Any]:
        resp = self._call(
            "CreateRole",
            self.iam.create_role,
            tolerate=_IAM_ALREADY_EXISTS,
            RoleName=role_name,
            AssumeRolePolicyDocument=trust_policy,
            Description=description,
            Tags=tags,
        )
        if resp is None:
            # Created concurrently; may not be readable yet.
            return self.get_role(role_name) or {"RoleName": role_name}
        return resp["Role"]

    def put_role_policy(self, role_name: str, policy_name: str, document: str) -> None:
        self._call(
            "PutRolePolicy",
            self.iam.put_role_policy,
            RoleName=role_name,
            PolicyName=policy_name,
            PolicyDocument=document,
        )

    def get_instance_profile(self, profile_name: str) -> dict[str, Any] | None:
        resp = self._call(
            "GetInstanceProfile",
            self.iam.get_instance_profile,
            tolerate=_IAM_NOT_FOUND,
            InstanceProfileName=profile_name,
        )
        return resp["InstanceProfile"] if resp else None

    def create_instance_profile(self, profile_name: str, tags: list[Tag]) -> dict[str, Any]:
        resp = self._call(
            "CreateInstanceProfile",
            self.iam.create_instance_profile,
            tolerate=_IAM_ALREADY_EXISTS,
            InstanceProfileName=profile_name,
            Tags=tags,
        )
        if resp is None:
            return self.get_instance_profile(profile_name) or {
                "InstanceProfileName": profile_name,
                "Roles": [],
            }
        return resp["InstanceProfile"]

    def add_role_to_instance_profile(self, profile_name: str, role_name: str) -> None:
        # A profile holds at most one role; LimitExceeded means one is attached already.
        self._call(
            "AddRoleToInstanceProfile",
            self.iam.add_role_to_instance_profile,
            tolerate=_IAM_ALREADY_EXISTS | {"LimitExceeded"},
            InstanceProfileName=profile_name,
            RoleName=role_name,
        )


@dataclass(frozen=True, slots=True)
class BotoInstanceApi:
    ec2: EC2Client

    def run_instance(self, request: dict[str, Any]) -> str:
        try:
            resp = self.ec2.run_instances(**request)
        except (ClientError, BotoCoreError) as e:
            raise _provider_error("ec2", "RunInstances", e) from e
        return resp["Instances"][0]["InstanceId"]

    def instance_state(self, instance_id: str) -> str | None:
        try:
            resp = self.ec2.describe_instances(InstanceIds=[instance_id])
        except ClientError as e:
            # Freshly launched instances can be briefly invisible to Describe*.
            if error_code(e) in _INSTANCE_NOT_VISIBLE:
                return None
            raise _provider_error("ec2", "DescribeInstances", e) from e
        except BotoCoreError as e:
            raise _provider_error("ec2", "DescribeInstances", e) from e

        for reservation in resp.get("Reservations", []):
            for instance in reservation.get("Instances", []):
                if instance.get("InstanceId") == instance_id:
                    return instance.get("State", {}).get("Name")
        return None


@dataclass(frozen=True, slots=True)
class BotoAgentApi:
    ssm: SSMClient

    def ping_status(self, instance_id: str) -> str | None:
        try:
            resp = self.ssm.describe_instance_information(
                Filters=[{"Key": "InstanceIds", "Values": [instance_id]}]
            )
        except (ClientError, BotoCoreError) as e:
            raise _provider_error("ssm", "DescribeInstanceInformation", e) from e

        for info in resp.get("InstanceInformationList", []):
            if info.get("InstanceId") == instance_id:
                return info.get("PingStatus")
        return None


@dataclass(frozen=True, slots=True)
class BotoImageApi:
    ssm: SSMClient

    def parameter(self, name: str) -> str | None:
        try:
            resp = self.ssm.get_parameter(Name=name)
        except ClientError as e:
            if error_code(e) == "ParameterNotFound":
                return None
            raise _provider_error("ssm", "GetParameter", e) from e
        except BotoCoreError as e:
            raise _provider_error("ssm", "GetParameter", e) from e
        return resp["Parameter"]["Value"]
