"""Local state: the durable mapping from instance name to EC2 instance.

The state document is the only place a friendly name is bound to an
instance id. It is a single JSON document::

    {
      "instances": {
        "alpha": {
          "instance_id": "i-0123456789abcdef0",
          "profile": "default",
          "region": "us-west-2",
          "created_at": "2026-01-01T12:00:00+00:00"
        }
      }
    }

Writes go through a temp file and ``os.replace`` so readers never see a
partial document, and read-modify-write cycles hold an exclusive advisory
lock on a sibling ``.lock`` file so concurrent invocations do not lose
each other's updates.
"""

from __future__ import annotations

import fcntl
import json
import os
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from loguru import logger

from ec2cli.config import state_dir
from ec2cli.constants import LINK_DIR_NAME, LINK_FILE_NAME, STATE_FILE_NAME
from ec2cli.exceptions import InstanceNotFoundError, StateCorruptedError

log = logger.bind(component="state")


def default_state_path() -> Path:
    return state_dir() / STATE_FILE_NAME


# =============================================================================
# Records
# =============================================================================


@dataclass(frozen=True, slots=True)
class InstanceRecord:
    """What ec2-cli remembers about one provisioned instance."""

    instance_id: str
    profile: str
    region: str
    created_at: datetime

    def to_dict(self) -> dict[str, str]:
        return {
            "instance_id": self.instance_id,
            "profile": self.profile,
            "region": self.region,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> InstanceRecord:
        created_at = datetime.fromisoformat(str(data["created_at"]))
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=UTC)
        return cls(
            instance_id=str(data["instance_id"]),
            profile=str(data["profile"]),
            region=str(data["region"]),
            created_at=created_at,
        )


@dataclass(slots=True)
class State:
    """All tracked instances, keyed by name."""

    instances: dict[str, InstanceRecord] = field(default_factory=dict)

    def add_instance(
        self,
        name: str,
        instance_id: str,
        profile: str,
        region: str,
        *,
        created_at: datetime | None = None,
    ) -> InstanceRecord:
        """Add or replace the record for ``name``."""
        record = InstanceRecord(
            instance_id=instance_id,
            profile=profile,
            region=region,
            created_at=created_at or datetime.now(UTC),
        )
        self.instances[name] = record
        return record

    def remove_instance(self, name: str) -> InstanceRecord | None:
        return self.instances.pop(name, None)

    def get_instance(self, name: str) -> InstanceRecord | None:
        return self.instances.get(name)

    def to_dict(self) -> dict[str, Any]:
        return {"instances": {name: r.to_dict() for name, r in self.instances.items()}}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> State:
        raw_instances = data.get("instances", {})
        if not isinstance(raw_instances, dict):
            raise ValueError("'instances' must be an object")
        return cls(
            instances={
                str(name): InstanceRecord.from_dict(raw)
                for name, raw in raw_instances.items()
            }
        )


# =============================================================================
# Store
# =============================================================================


class StateStore:
    """File-backed state document.

    Args:
        path: State file. Defaults to ``$XDG_STATE_HOME/ec2-cli/state.json``.
    """

    def __init__(self, path: Path | None = None) -> None:
        self.path = path or default_state_path()

    @property
    def lock_path(self) -> Path:
        return self.path.with_name(self.path.name + ".lock")

    def load(self) -> State:
        """Read the document. A missing document is an empty state, not an error."""
        if not self.path.exists():
            return State()

        try:
            raw = json.loads(self.path.read_text())
            if not isinstance(raw, dict):
                raise ValueError("expected a JSON object")
            return State.from_dict(raw)
        except (ValueError, KeyError, TypeError) as e:
            raise StateCorruptedError(self.path, f"Failed to parse state file: {e}") from e

    def save(self, state: State) -> None:
        """Atomically replace the document with ``state``."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        content = json.dumps(state.to_dict(), indent=2)

        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.")
        try:
            with os.fdopen(fd, "w") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, self.path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    @contextmanager
    def transaction(self) -> Iterator[State]:
        """Hold the state lock across load, mutation and save.

        The state is saved only if the block exits without raising.
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.lock_path.open("a") as lock_file:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
            try:
                state = self.load()
                yield state
                self.save(state)
            finally:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)

    def add_instance(self, name: str, instance_id: str, profile: str, region: str) -> InstanceRecord:
        with self.transaction() as state:
            record = state.add_instance(name, instance_id, profile, region)
        log.debug("Recorded {name} -> {instance_id}", name=name, instance_id=instance_id)
        return record

    def remove_instance(self, name: str) -> InstanceRecord | None:
        with self.transaction() as state:
            removed = state.remove_instance(name)
        if removed is not None:
            log.debug("Forgot {name} ({instance_id})", name=name, instance_id=removed.instance_id)
        return removed

    def get_instance(self, name: str) -> InstanceRecord | None:
        return self.load().get_instance(name)

    def list_instances(self) -> dict[str, InstanceRecord]:
        return dict(self.load().instances)

    def resolve_instance_name(self, name: str | None = None, *, cwd: Path | None = None) -> str:
        return resolve_instance_name(name, cwd=cwd)


# =============================================================================
# Linked instance
# =============================================================================


def link_path(cwd: Path | None = None) -> Path:
    return (cwd or Path.cwd()) / LINK_DIR_NAME / LINK_FILE_NAME


def read_link(cwd: Path | None = None) -> str | None:
    """Name linked to ``cwd``, or None when there is no (or an empty) link."""
    path = link_path(cwd)
    if not path.is_file():
        return None
    return path.read_text().strip() or None


def write_link(name: str, cwd: Path | None = None) -> Path:
    path = link_path(cwd)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(name)
    return path


def resolve_instance_name(name: str | None = None, *, cwd: Path | None = None) -> str:
    """Return ``name``, or the instance linked to ``cwd`` when no name is given.

    Raises:
        InstanceNotFoundError: If no name was given and nothing is linked.
    """
    if name is not None:
        return name

    linked = read_link(cwd)
    if linked is None:
        raise InstanceNotFoundError(None)
    return linked


# =============================================================================
# Default store shortcuts
# =============================================================================


def save_instance(name: str, instance_id: str, profile: str, region: str) -> InstanceRecord:
    return StateStore().add_instance(name, instance_id, profile, region)


def remove_instance(name: str) -> InstanceRecord | None:
    return StateStore().remove_instance(name)


def get_instance(name: str) -> InstanceRecord | None:
    return StateStore().get_instance(name)


def list_instances() -> dict[str, InstanceRecord]:
    return StateStore().list_instances()
