"""Instance profile model.

A profile is the declarative description of one instance: its shape, base
image, root volume, packages to install and environment variables. Profiles
reach the provisioning pipeline already parsed; this module only defines
the immutable model, the built-in default and validation.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Literal

from ec2cli.constants import AMI_SSM_PARAMETERS
from ec2cli.exceptions import ProfileValidationError

type AmiType = Literal["al2023", "al2", "ubuntu-22.04", "ubuntu-24.04"]
type Architecture = Literal["x86_64", "arm64"]

MIN_ROOT_VOLUME_GB = 8
_ENV_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_VOLUME_TYPES = frozenset({"gp2", "gp3", "io1", "io2", "st1", "sc1", "standard"})

DEFAULT_PROFILE_NAME = "default"


@dataclass(frozen=True, slots=True)
class AmiConfig:
    """Base image selection.

    Args:
        type: Public image family, resolved through SSM Parameter Store.
        architecture: CPU architecture of the image.
        id: Explicit AMI id. Overrides ``type`` and ``architecture``.
    """

    type: AmiType | str = "al2023"
    architecture: Architecture | str = "x86_64"
    id: str | None = None


@dataclass(frozen=True, slots=True)
class RootVolumeConfig:
    size_gb: int = 30
    volume_type: str = "gp3"


@dataclass(frozen=True, slots=True)
class InstanceConfig:
    instance_type: str = "t3.large"
    ami: AmiConfig = field(default_factory=AmiConfig)
    root_volume: RootVolumeConfig = field(default_factory=RootVolumeConfig)


@dataclass(frozen=True, slots=True)
class RustConfig:
    enabled: bool = True
    channel: str = "stable"
    components: tuple[str, ...] = ("clippy", "rustfmt")


@dataclass(frozen=True, slots=True)
class PackageConfig:
    system: tuple[str, ...] = ()
    rust: RustConfig = field(default_factory=RustConfig)
    cargo: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class Profile:
    """A validated, immutable instance profile.

    Example:
        >>> profile = Profile(
        ...     name="gpu",
        ...     instance=InstanceConfig(instance_type="g5.xlarge"),
        ... )
        >>> profile.validate()
    """

    name: str
    instance: InstanceConfig = field(default_factory=InstanceConfig)
    packages: PackageConfig = field(default_factory=PackageConfig)
    environment: MappingProxyType[str, str] = field(
        default_factory=lambda: MappingProxyType({})
    )

    def __post_init__(self) -> None:
        if not isinstance(self.environment, MappingProxyType):
            object.__setattr__(self, "environment", MappingProxyType(dict(self.environment)))

    @classmethod
    def default(cls) -> Profile:
        """Built-in profile used when no profile file is given."""
        return cls(
            name=DEFAULT_PROFILE_NAME,
            packages=PackageConfig(
                system=("git", "gcc", "make", "openssl-devel", "pkg-config"),
            ),
        )

    def validate(self) -> None:
        """Check the profile can be launched.

        Raises:
            ProfileValidationError: On the first problem found.
        """
        instance = self.instance
        if not instance.instance_type.strip():
            raise ProfileValidationError(self.name, "instance type cannot be empty")

        if instance.root_volume.size_gb < MIN_ROOT_VOLUME_GB:
            raise ProfileValidationError(
                self.name,
                f"root volume must be at least {MIN_ROOT_VOLUME_GB} GiB "
                f"(got {instance.root_volume.size_gb})",
            )
        if instance.root_volume.volume_type not in _VOLUME_TYPES:
            raise ProfileValidationError(
                self.name, f"unknown volume type {instance.root_volume.volume_type!r}"
            )

        ami = instance.ami
        if ami.id is None and (ami.type, ami.architecture) not in AMI_SSM_PARAMETERS:
            raise ProfileValidationError(
                self.name,
                f"unsupported AMI type/architecture {ami.type}/{ami.architecture}",
            )

        for key in self.environment:
            if not _ENV_NAME.match(key):
                raise ProfileValidationError(
                    self.name, f"invalid environment variable name {key!r}"
                )
