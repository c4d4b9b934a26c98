"""User-data script generation.

The instance bootstraps itself on first boot from a bash script rendered
from the profile. The script is composed from small operations, each a
string or a function returning a string, and joined in order.

Example:
    >>> script = render_user_data(Profile.default(), project_name="api")
    >>> script.startswith("#!/bin/bash")
    True
"""

from __future__ import annotations

import shlex
from collections.abc import Callable
from typing import Final

from ec2cli.constants import INIT_LOG, INSTANCE_HOME, INSTANCE_USER, READY_MARKER
from ec2cli.profile import Profile, RustConfig

type Op = str | Callable[[], str] | list[Op]
"""Operation type: either a literal string or a function returning a string."""

RUSTUP_URL: Final = "https://sh.rustup.rs"

HEADER: Final = f"""#!/bin/bash
set -ex

exec > >(tee {INIT_LOG}) 2>&1

echo 'Waiting for cloud-init...'
cloud-init status --wait || true"""


def resolve(op: Op) -> str:
    """Resolve an operation to its string representation."""
    match op:
        case str(op):
            return op
        case list(op):
            return "\n".join(resolve(o) for o in op)
        case _:
            return op()


def _as_user(script: str) -> str:
    return f"su - {INSTANCE_USER} -c {shlex.quote(script)}"


# =============================================================================
# Operations
# =============================================================================


def system_packages(*packages: str) -> Op:
    """Install system packages with whichever package manager is present.

    Example:
        >>> print(resolve(system_packages("git")))  # doctest: +ELLIPSIS
        echo 'Installing system packages...'
        if command -v dnf &> /dev/null; then
        ...
    """
    if not packages:
        return "# No system packages to install"

    pkg_list = " ".join(shlex.quote(p) for p in packages)
    return f"""echo 'Installing system packages...'
if command -v dnf &> /dev/null; then
    dnf install -y {pkg_list}
elif command -v yum &> /dev/null; then
    yum install -y {pkg_list}
elif command -v apt-get &> /dev/null; then
    apt-get update
    apt-get install -y {pkg_list}
fi"""


def rust_toolchain(rust: RustConfig, cargo: tuple[str, ...] = ()) -> Op:
    if not rust.enabled:
        return "# Rust toolchain disabled"

    def generate() -> str:
        install = f'curl --proto "=https" --tlsv1.2 -sSf {RUSTUP_URL} | sh -s -- -y'
        if rust.channel != "stable":
            install += f" --default-toolchain {shlex.quote(rust.channel)}"

        steps = [install, "source ~/.cargo/env"]
        if rust.components:
            steps.append("rustup component add " + " ".join(map(shlex.quote, rust.components)))
        steps.extend(f"cargo install {shlex.quote(pkg)}" for pkg in cargo)

        return "\n".join(["echo 'Installing Rust...'", _as_user("\n".join(steps))])

    return generate


def environment(env: dict[str, str]) -> Op:
    if not env:
        return "# No environment variables"

    exports = "\n".join(f"export {key}={shlex.quote(value)}" for key, value in env.items())
    return f"""echo 'Setting environment variables...'
cat >> {INSTANCE_HOME}/.bashrc << 'ENVEOF'
{exports}
ENVEOF"""


def workspace_dirs() -> Op:
    repos, work = f"{INSTANCE_HOME}/repos", f"{INSTANCE_HOME}/work"
    return f"""echo 'Setting up git directories...'
mkdir -p {repos} {work}
chown -R {INSTANCE_USER}:{INSTANCE_USER} {repos} {work}"""


def git_repo(project: str | None) -> Op:
    """Bare repository plus a post-receive hook checking out into ~/work/<project>."""
    if not project:
        return "# No project repository"

    repo = f"{INSTANCE_HOME}/repos/{project}.git"
    work = f"{INSTANCE_HOME}/work/{project}"
    banner = shlex.quote(f"Setting up git repo for {project}...")
    return f"""echo {banner}
{_as_user(f"git init --bare {shlex.quote(repo)}")}
cat > {shlex.quote(repo)}/hooks/post-receive << 'HOOKEOF'
#!/bin/bash
GIT_WORK_TREE={shlex.quote(work)} git checkout -f
HOOKEOF
chmod +x {shlex.quote(repo)}/hooks/post-receive
mkdir -p {shlex.quote(work)}
chown -R {INSTANCE_USER}:{INSTANCE_USER} {shlex.quote(repo)} {shlex.quote(work)}"""


def ready_marker() -> Op:
    return f"""echo 'ec2-cli initialization complete!'
touch {READY_MARKER}"""


# =============================================================================
# Composition
# =============================================================================


def render_user_data(profile: Profile, project_name: str | None = None) -> str:
    """Render the first-boot script for ``profile``.

    Args:
        profile: Profile to bootstrap.
        project_name: If given, a bare git repo is created for it.

    Returns:
        The complete bash script.
    """
    ops: list[Op] = [
        HEADER,
        system_packages(*profile.packages.system),
        rust_toolchain(profile.packages.rust, profile.packages.cargo),
        environment(dict(profile.environment)),
        workspace_dirs(),
        git_repo(project_name),
        ready_marker(),
    ]
    return "\n\n".join(resolve(op) for op in ops) + "\n"
