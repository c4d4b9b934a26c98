"""AWS side of the provisioning pipeline: session, infrastructure, instances."""

from .clients import AgentApi, ImageApi, InstanceApi, NetworkApi, PermissionApi
from .infra import Infrastructure, PermissionBinding, ensure_permission_binding, resolve_infrastructure
from .instances import (
    LaunchRequest,
    build_tags,
    launch_instance,
    wait_for_agent_ready,
    wait_for_running,
)
from .session import Session, establish

__all__ = [
    "AgentApi",
    "ImageApi",
    "InstanceApi",
    "NetworkApi",
    "PermissionApi",
    "Session",
    "establish",
    "Infrastructure",
    "PermissionBinding",
    "ensure_permission_binding",
    "resolve_infrastructure",
    "LaunchRequest",
    "build_tags",
    "launch_instance",
    "wait_for_running",
    "wait_for_agent_ready",
]
