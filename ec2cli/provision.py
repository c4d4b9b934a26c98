"""The ``up`` pipeline: from a profile to a ready, recorded instance.

Stages run strictly in order, each consuming the previous one's output:

    establish session -> resolve infrastructure -> launch
        -> record in state -> wait running -> wait SSM agent -> link

The instance is recorded as soon as EC2 accepts the launch, so an instance
whose readiness wait later fails is still tracked for ``status`` and
``destroy``. Nothing created in AWS is rolled back on failure.
"""

from __future__ import annotations

import random
import time
from dataclasses import dataclass
from pathlib import Path

from loguru import logger
from rich.console import Console

from ec2cli.aws.infra import resolve_infrastructure
from ec2cli.aws.instances import launch_instance, wait_for_agent_ready, wait_for_running
from ec2cli.aws.session import Session, establish
from ec2cli.bootstrap import render_user_data
from ec2cli.config import Settings
from ec2cli.constants import AGENT_READY_TIMEOUT, RUNNING_TIMEOUT
from ec2cli.exceptions import InstanceNameExistsError
from ec2cli.polling import Clock, Sleep
from ec2cli.profile import Profile
from ec2cli.state import InstanceRecord, StateStore, write_link

log = logger.bind(component="provision")

_ADJECTIVES = (
    "amber", "brisk", "calm", "dapper", "eager", "fuzzy", "gentle", "hardy",
    "jolly", "keen", "lively", "mellow", "nimble", "plucky", "quiet", "rapid",
    "steady", "tidy", "vivid", "witty",
)
_NOUNS = (
    "badger", "condor", "dingo", "egret", "falcon", "gecko", "heron", "ibis",
    "jackal", "koala", "lemur", "marmot", "newt", "otter", "panda", "quail",
    "raven", "stoat", "tapir", "walrus",
)


def generate_name(rng: random.Random | None = None) -> str:
    """Random ``adjective-noun`` instance name."""
    rng = rng or random.Random()
    return f"{rng.choice(_ADJECTIVES)}-{rng.choice(_NOUNS)}"


@dataclass(frozen=True, slots=True)
class ProvisionResult:
    name: str
    instance_id: str
    region: str
    record: InstanceRecord
    linked: Path | None = None


def provision(
    profile: Profile,
    name: str | None = None,
    *,
    region: str | None = None,
    link: bool = False,
    settings: Settings | None = None,
    store: StateStore | None = None,
    project_name: str | None = None,
    running_timeout: float = RUNNING_TIMEOUT,
    agent_timeout: float = AGENT_READY_TIMEOUT,
    session: Session | None = None,
    console: Console | None = None,
    cwd: Path | None = None,
    clock: Clock = time.monotonic,
    sleep: Sleep = time.sleep,
) -> ProvisionResult:
    """Provision one instance from ``profile`` and wait until it is usable.

    Args:
        profile: Validated profile to launch.
        name: Instance name. A random name is generated when omitted.
        region: Region override.
        link: Link the current directory to the new instance.
        settings: Settings (placement overrides, custom tags). Loaded from
            the default location when omitted.
        store: State store. Defaults to the per-user state document.
        project_name: Project to prepare a bare git repo for on the instance.
        running_timeout: Seconds to wait for ``running``.
        agent_timeout: Seconds to wait for the SSM agent.
        session: Pre-established session (skips ``establish``).
        console: Console used for progress output.
        cwd: Directory to link. Defaults to the current directory.
        clock: Monotonic time source for the readiness waits.
        sleep: Sleep function for the readiness waits.

    Returns:
        The recorded instance.

    Raises:
        InstanceNameExistsError: If ``name`` is already tracked.
        Ec2CliError: Any failure from the individual stages.
    """
    profile.validate()
    settings = settings if settings is not None else Settings.load()
    store = store or StateStore()
    console = console or Console(stderr=True)
    name = name or generate_name()

    if store.get_instance(name) is not None:
        raise InstanceNameExistsError(name)

    console.print(f"Launching EC2 instance '{name}'...")
    console.print(f"  Profile: {profile.name}")
    console.print(f"  Instance type: {profile.instance.instance_type}")

    with console.status("Connecting to AWS...") as status:
        if session is None:
            session = establish(region, settings=settings)

        status.update("Checking infrastructure...")
        infra = resolve_infrastructure(session, settings, clock=clock, sleep=sleep)

        status.update("Launching instance...")
        user_data = render_user_data(profile, project_name)
        instance_id = launch_instance(
            session,
            infra,
            profile,
            name,
            user_data,
            custom_tags=settings.tags,
            clock=clock,
            sleep=sleep,
        )
        record = store.add_instance(name, instance_id, profile.name, session.region)
        console.print(f"  Instance launched: {instance_id}")

        status.update("Waiting for instance to start...")
        wait_for_running(session, instance_id, running_timeout, clock=clock, sleep=sleep)

        status.update("Waiting for SSM agent...")
        wait_for_agent_ready(session, instance_id, agent_timeout, clock=clock, sleep=sleep)

    linked = None
    if link:
        linked = write_link(name, cwd)
        console.print("  Linked to current directory")

    log.info("Instance {name} ({instance_id}) is ready", name=name, instance_id=instance_id)
    console.print(f"\nInstance '{name}' is ready!")
    console.print(f"  Instance ID: {instance_id}")

    return ProvisionResult(
        name=name,
        instance_id=instance_id,
        region=session.region,
        record=record,
        linked=linked,
    )
