"""AMI resolution for EC2 instances.

Profiles name an image family and architecture rather than an AMI id; the
latest public AMI for the region is looked up in SSM Parameter Store.
"""

from __future__ import annotations

from loguru import logger

from ec2cli.aws.session import Session
from ec2cli.constants import AMI_SSM_PARAMETERS
from ec2cli.exceptions import LaunchError
from ec2cli.profile import Profile

log = logger.bind(component="aws-ami")


def resolve_image(session: Session, profile: Profile) -> str:
    """Resolve the AMI id for ``profile`` in the session's region.

    An explicit ``profile.instance.ami.id`` is used as is.

    Raises:
        LaunchError: If the image family is unknown or its parameter does not
            exist in the region.
    """
    ami = profile.instance.ami
    if ami.id:
        return ami.id

    param_name = AMI_SSM_PARAMETERS.get((ami.type, ami.architecture))
    if param_name is None:
        raise LaunchError(
            f"No public AMI known for {ami.type}/{ami.architecture}",
            operation="ResolveImage",
        )

    ami_id = session.images.parameter(param_name)
    if ami_id is None:
        raise LaunchError(
            f"Could not find {ami.type} ({ami.architecture}) AMI in region {session.region}. "
            f"SSM parameter {param_name} not found. Set an explicit AMI id in the profile.",
            operation="ResolveImage",
        )

    log.debug("Resolved {family} AMI: {ami_id}", family=ami.type, ami_id=ami_id)
    return ami_id
