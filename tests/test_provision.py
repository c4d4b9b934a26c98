import io
import random
from pathlib import Path

import pytest
from rich.console import Console

from ec2cli.config import Settings
from ec2cli.exceptions import (
    InstanceNameExistsError,
    LaunchError,
    ProfileValidationError,
    ProviderError,
    ReadinessTimeoutError,
    SubnetNotConfiguredError,
)
from ec2cli.profile import InstanceConfig, Profile, RootVolumeConfig
from ec2cli.provision import generate_name, provision
from ec2cli.state import StateStore, read_link
from tests.conftest import FakeAgents, FakeInstances, FakePermissions, make_session

pytestmark = [pytest.mark.xdist_group("unit")]


def _console() -> Console:
    return Console(file=io.StringIO())


def _run(session, store, clock, tmp_path: Path, **kwargs):
    kwargs.setdefault("settings", Settings(subnet_id="subnet-a", tags={"Team": "infra"}))
    return provision(
        Profile.default(),
        kwargs.pop("name", "alpha"),
        store=store,
        session=session,
        console=kwargs.pop("console", _console()),
        cwd=tmp_path,
        clock=clock,
        sleep=clock.sleep,
        **kwargs,
    )


class TestGenerateName:
    def test_adjective_noun(self):
        name = generate_name(random.Random(7))
        adjective, noun = name.split("-")
        assert adjective and noun

    def test_deterministic_with_seed(self):
        assert generate_name(random.Random(1)) == generate_name(random.Random(1))


class TestProvision:
    def test_happy_path(self, store: StateStore, clock, tmp_path: Path):
        instances = FakeInstances(states=["pending", "running"], instance_id="i-0ready")
        session = make_session(instances=instances)

        result = _run(session, store, clock, tmp_path)

        assert result.name == "alpha"
        assert result.instance_id == "i-0ready"
        assert result.region == "us-west-2"
        assert result.linked is None

        record = store.get_instance("alpha")
        assert record.instance_id == "i-0ready"
        assert record.profile == "default"
        assert record.region == "us-west-2"
        assert result.record == record

    def test_launch_carries_custom_and_standard_tags(self, store, clock, tmp_path):
        instances = FakeInstances(states=["running"])
        _run(make_session(instances=instances), store, clock, tmp_path)

        (request,) = instances.requests
        tags = {t["Key"]: t["Value"] for t in request["TagSpecifications"][0]["Tags"]}
        assert tags["ec2-cli:name"] == "alpha"
        assert tags["ec2-cli:managed"] == "true"
        assert tags["Team"] == "infra"
        assert request["UserData"].startswith("#!/bin/bash")

    def test_link(self, store, clock, tmp_path):
        result = _run(make_session(), store, clock, tmp_path, link=True)
        assert result.linked == tmp_path / ".ec2-cli" / "instance"
        assert read_link(tmp_path) == "alpha"

    def test_generated_name(self, store, clock, tmp_path):
        result = _run(make_session(), store, clock, tmp_path, name=None)
        assert "-" in result.name
        assert store.get_instance(result.name) is not None

    def test_progress_is_reported(self, store, clock, tmp_path):
        console = _console()
        _run(make_session(), store, clock, tmp_path, console=console)
        output = console.file.getvalue()
        assert "Launching EC2 instance 'alpha'" in output
        assert "i-0abc" in output
        assert "is ready" in output

    def test_existing_name_refused_before_aws(self, store, clock, tmp_path):
        store.add_instance("alpha", "i-old", "default", "us-west-2")
        permissions = FakePermissions()
        instances = FakeInstances()

        with pytest.raises(InstanceNameExistsError):
            _run(make_session(permissions=permissions, instances=instances), store, clock, tmp_path)

        assert permissions.calls == []
        assert instances.requests == []
        assert store.get_instance("alpha").instance_id == "i-old"

    def test_invalid_profile_refused(self, store, clock, tmp_path):
        profile = Profile(name="tiny", instance=InstanceConfig(root_volume=RootVolumeConfig(size_gb=1)))
        instances = FakeInstances()
        with pytest.raises(ProfileValidationError):
            provision(
                profile,
                "alpha",
                store=store,
                session=make_session(instances=instances),
                settings=Settings(subnet_id="subnet-a"),
                console=_console(),
                cwd=tmp_path,
            )
        assert instances.requests == []

    def test_resolution_failure_launches_nothing(self, store, clock, tmp_path):
        instances = FakeInstances()
        with pytest.raises(SubnetNotConfiguredError):
            _run(make_session(instances=instances), store, clock, tmp_path, settings=Settings())
        assert instances.requests == []
        assert store.list_instances() == {}

    def test_launch_failure_records_nothing(self, store, clock, tmp_path):
        error = ProviderError("ec2", "RunInstances", "VcpuLimitExceeded", "VcpuLimitExceeded")
        instances = FakeInstances(run_errors=[error])
        with pytest.raises(LaunchError):
            _run(make_session(instances=instances), store, clock, tmp_path)
        assert store.list_instances() == {}

    def test_running_timeout_still_recorded(self, store, clock, tmp_path):
        instances = FakeInstances(states=["pending"], instance_id="i-0slow")
        with pytest.raises(ReadinessTimeoutError):
            _run(make_session(instances=instances), store, clock, tmp_path, running_timeout=30)

        assert store.get_instance("alpha").instance_id == "i-0slow"
        assert read_link(tmp_path) is None

    def test_agent_timeout_still_recorded(self, store, clock, tmp_path):
        agents = FakeAgents(statuses=[None])
        with pytest.raises(ReadinessTimeoutError) as exc_info:
            _run(make_session(agents=agents), store, clock, tmp_path, agent_timeout=60, link=True)

        assert exc_info.value.waiting_for == "registered with SSM"
        assert store.get_instance("alpha") is not None
        assert read_link(tmp_path) is None
