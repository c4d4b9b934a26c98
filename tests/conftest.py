from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

import pytest

from ec2cli.aws.session import Session
from ec2cli.config import Settings
from ec2cli.constants import AMI_SSM_PARAMETERS
from ec2cli.exceptions import ProviderError
from ec2cli.state import StateStore

ACCOUNT = "123456789012"
REGION = "us-west-2"


class FakeClock:
    """Monotonic clock whose sleep() advances time instantly."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@dataclass
class FakeNetwork:
    default_vpc: str | None = "vpc-default"
    subnets: dict[str, str] = field(default_factory=lambda: {"subnet-a": "vpc-default"})

    def default_vpc_id(self) -> str | None:
        return self.default_vpc

    def subnet_vpc_id(self, subnet_id: str) -> str | None:
        return self.subnets.get(subnet_id)


@dataclass
class FakePermissions:
    roles: dict[str, dict[str, Any]] = field(default_factory=dict)
    profiles: dict[str, dict[str, Any]] = field(default_factory=dict)
    policies: dict[tuple[str, str], str] = field(default_factory=dict)
    invisible_reads: int = 0
    calls: list[str] = field(default_factory=list)

    def get_role(self, role_name: str) -> dict[str, Any] | None:
        self.calls.append("get_role")
        return self.roles.get(role_name)

    def create_role(
        self, role_name: str, trust_policy: str, description: str, tags: list[dict[str, str]]
    ) -> dict[str, Any]:
        self.calls.append("create_role")
        role = {
            "RoleName": role_name,
            "Arn": f"arn:aws:iam::{ACCOUNT}:role/{role_name}",
            "AssumeRolePolicyDocument": trust_policy,
            "Tags": tags,
        }
        self.roles[role_name] = role
        return role

    def put_role_policy(self, role_name: str, policy_name: str, document: str) -> None:
        self.calls.append("put_role_policy")
        self.policies[(role_name, policy_name)] = document

    def get_instance_profile(self, profile_name: str) -> dict[str, Any] | None:
        self.calls.append("get_instance_profile")
        if self.invisible_reads > 0 and profile_name in self.profiles:
            self.invisible_reads -= 1
            return None
        return self.profiles.get(profile_name)

    def create_instance_profile(self, profile_name: str, tags: list[dict[str, str]]) -> dict[str, Any]:
        self.calls.append("create_instance_profile")
        profile = {
            "InstanceProfileName": profile_name,
            "Arn": f"arn:aws:iam::{ACCOUNT}:instance-profile/{profile_name}",
            "Roles": [],
            "Tags": tags,
        }
        self.profiles[profile_name] = profile
        return profile

    def add_role_to_instance_profile(self, profile_name: str, role_name: str) -> None:
        self.calls.append("add_role_to_instance_profile")
        self.profiles[profile_name]["Roles"].append({"RoleName": role_name})

    @property
    def creations(self) -> list[str]:
        """Calls that create or attach something. PutRolePolicy overwrites, so it is excluded."""
        return [c for c in self.calls if c.startswith(("create_", "add_"))]


class FakeInstances:
    """Scripted EC2 instance lifecycle.

    ``states`` is consumed one entry per describe call; the last entry repeats.
    ``run_errors`` are raised by successive run_instance calls before succeeding.
    """

    def __init__(
        self,
        states: Iterable[str | None] = ("pending", "running"),
        run_errors: Iterable[Exception] = (),
        instance_id: str = "i-0abc",
    ) -> None:
        self.states = list(states)
        self.run_errors = list(run_errors)
        self.instance_id = instance_id
        self.requests: list[dict[str, Any]] = []
        self.describes = 0

    def run_instance(self, request: dict[str, Any]) -> str:
        self.requests.append(request)
        if self.run_errors:
            raise self.run_errors.pop(0)
        return self.instance_id

    def instance_state(self, instance_id: str) -> str | None:
        self.describes += 1
        if len(self.states) > 1:
            return self.states.pop(0)
        return self.states[0]


class FakeAgents:
    def __init__(self, statuses: Iterable[str | None] = (None, "Online")) -> None:
        self.statuses = list(statuses)
        self.polls = 0

    def ping_status(self, instance_id: str) -> str | None:
        self.polls += 1
        if len(self.statuses) > 1:
            return self.statuses.pop(0)
        return self.statuses[0]


@dataclass
class FakeImages:
    values: dict[str, str] = field(
        default_factory=lambda: {name: "ami-0public" for name in AMI_SSM_PARAMETERS.values()}
    )

    def parameter(self, name: str) -> str | None:
        return self.values.get(name)


def make_session(
    *,
    network: FakeNetwork | None = None,
    permissions: FakePermissions | None = None,
    instances: FakeInstances | None = None,
    agents: FakeAgents | None = None,
    images: FakeImages | None = None,
) -> Session:
    return Session(
        region=REGION,
        account_id=ACCOUNT,
        network=network or FakeNetwork(),
        permissions=permissions or FakePermissions(),
        instances=instances or FakeInstances(),
        agents=agents or FakeAgents(),
        images=images or FakeImages(),
    )


def profile_not_visible_error() -> ProviderError:
    return ProviderError(
        "ec2",
        "RunInstances",
        "Value (arn:aws:iam::123456789012:instance-profile/ec2-cli-instance-profile) "
        "for parameter iamInstanceProfile.arn is invalid. Invalid IAM Instance Profile ARN",
        "InvalidParameterValue",
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(tmp_path) -> StateStore:
    return StateStore(tmp_path / "state" / "state.json")


@pytest.fixture
def settings() -> Settings:
    return Settings(subnet_id="subnet-a")


@pytest.fixture(autouse=True)
def _isolated_xdg(tmp_path, monkeypatch):
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg-config"))
    monkeypatch.setenv("XDG_STATE_HOME", str(tmp_path / "xdg-state"))
