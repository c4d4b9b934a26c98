"""Settings document: region, VPC and subnet overrides plus custom tags.

Settings live at ``$XDG_CONFIG_HOME/ec2-cli/config.json`` and are written
owner read/write only, since custom tags may identify the operator.
"""

from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

from loguru import logger

from ec2cli.constants import (
    APP_NAME,
    CONFIG_FILE_NAME,
    MAX_TAG_KEY_LENGTH,
    MAX_TAG_VALUE_LENGTH,
    RESERVED_TAG_PREFIX,
    SETTINGS_FILE_MODE,
    USERNAME_TAG,
)
from ec2cli.exceptions import ConfigurationError, InvalidTagError

log = logger.bind(component="config")

type RawConfig = dict[str, Any]


def _xdg_dir(env_var: str, fallback: Path) -> Path:
    raw = os.environ.get(env_var)
    base = Path(raw) if raw else fallback
    return base / APP_NAME


def config_dir() -> Path:
    return _xdg_dir("XDG_CONFIG_HOME", Path.home() / ".config")


def state_dir() -> Path:
    return _xdg_dir("XDG_STATE_HOME", Path.home() / ".local" / "state")


def default_config_path() -> Path:
    return config_dir() / CONFIG_FILE_NAME


def _is_printable_ascii(text: str) -> bool:
    return all(" " <= c <= "~" for c in text)


def validate_tag_key(key: str) -> None:
    """Validate a custom tag key against EC2 tag rules.

    Raises:
        InvalidTagError: If the key is empty, too long, uses the reserved
            ``aws:`` prefix, or contains non-printable / non-ASCII characters.
    """
    if not key:
        raise InvalidTagError(key, "tag key cannot be empty")
    if len(key) > MAX_TAG_KEY_LENGTH:
        raise InvalidTagError(key, f"tag key cannot exceed {MAX_TAG_KEY_LENGTH} characters")
    if key.startswith(RESERVED_TAG_PREFIX):
        raise InvalidTagError(
            key, f"tag key cannot start with {RESERVED_TAG_PREFIX!r} (reserved prefix)"
        )
    if not _is_printable_ascii(key):
        raise InvalidTagError(key, "tag key must contain only ASCII printable characters")


def validate_tag_value(key: str, value: str) -> None:
    """Validate a custom tag value. Empty values are allowed."""
    if len(value) > MAX_TAG_VALUE_LENGTH:
        raise InvalidTagError(
            key, f"tag value cannot exceed {MAX_TAG_VALUE_LENGTH} characters"
        )
    if not _is_printable_ascii(value):
        raise InvalidTagError(key, "tag value must contain only ASCII printable characters")


@dataclass(slots=True)
class Settings:
    """Operator settings shared by every invocation.

    Args:
        region: Region override. If None, the AWS default region is used.
        vpc_id: VPC override. If None, the account's default VPC is used.
        subnet_id: Subnet for launched instances. Required to provision.
        tags: Custom tags applied to every instance.
    """

    region: str | None = None
    vpc_id: str | None = None
    subnet_id: str | None = None
    tags: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: RawConfig) -> Settings:
        tags = data.get("tags") or {}
        if not isinstance(tags, dict):
            raise ConfigurationError("Failed to parse config file: 'tags' must be an object")
        parsed = {str(k): str(v) for k, v in tags.items()}
        for key, value in parsed.items():
            validate_tag_key(key)
            validate_tag_value(key, value)
        return cls(
            region=data.get("region"),
            vpc_id=data.get("vpc_id"),
            subnet_id=data.get("subnet_id"),
            tags=parsed,
        )

    def to_dict(self) -> RawConfig:
        return {k: v for k, v in asdict(self).items() if v is not None}

    @classmethod
    def load(cls, path: Path | None = None) -> Settings:
        """Load settings, returning defaults when no document exists yet."""
        path = path or default_config_path()
        if not path.is_file():
            log.debug("No settings at {path}, using defaults", path=path)
            return cls()

        try:
            raw = json.loads(path.read_text())
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Failed to parse config file {path}: {e}") from e
        if not isinstance(raw, dict):
            raise ConfigurationError(f"Failed to parse config file {path}: expected an object")
        return cls.from_dict(raw)

    def save(self, path: Path | None = None) -> Path:
        """Write settings with owner-only (0600) permissions."""
        path = path or default_config_path()
        path.parent.mkdir(parents=True, exist_ok=True)

        content = json.dumps(self.to_dict(), indent=2)
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, SETTINGS_FILE_MODE)
        with os.fdopen(fd, "w") as f:
            f.write(content)
        # O_CREAT only applies the mode to new files.
        os.chmod(path, SETTINGS_FILE_MODE)

        log.debug("Saved settings to {path}", path=path)
        return path

    def set_tag(self, key: str, value: str) -> None:
        validate_tag_key(key)
        validate_tag_value(key, value)
        self.tags[key] = value

    def remove_tag(self, key: str) -> str | None:
        return self.tags.pop(key, None)

    def has_username_tag(self) -> bool:
        return USERNAME_TAG in self.tags
