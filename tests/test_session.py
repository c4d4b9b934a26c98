from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError, NoCredentialsError, ProfileNotFound

from ec2cli.aws.clients import BotoAgentApi, BotoInstanceApi, BotoNetworkApi, BotoPermissionApi
from ec2cli.aws.session import establish
from ec2cli.config import Settings
from ec2cli.exceptions import AuthError

pytestmark = [pytest.mark.xdist_group("unit")]


def _boto_session(region_name="us-east-1", identity=None, sts_error=None):
    sts = MagicMock()
    if sts_error is not None:
        sts.get_caller_identity.side_effect = sts_error
    else:
        sts.get_caller_identity.return_value = identity or {
            "Account": "123456789012",
            "Arn": "arn:aws:iam::123456789012:user/dana",
        }

    session = MagicMock()
    session.region_name = region_name
    session.client.side_effect = lambda service, region_name=None: sts if service == "sts" else MagicMock()
    return session, sts


class TestEstablish:
    def test_verified_session(self):
        boto_session, sts = _boto_session()
        session = establish(settings=Settings(), boto_session=boto_session)

        assert session.account_id == "123456789012"
        assert session.region == "us-east-1"
        sts.get_caller_identity.assert_called_once()
        assert isinstance(session.network, BotoNetworkApi)
        assert isinstance(session.permissions, BotoPermissionApi)
        assert isinstance(session.instances, BotoInstanceApi)
        assert isinstance(session.agents, BotoAgentApi)

    def test_region_argument_wins(self):
        boto_session, _ = _boto_session(region_name="us-east-1")
        session = establish(
            "ap-south-1", settings=Settings(region="eu-west-1"), boto_session=boto_session
        )
        assert session.region == "ap-south-1"

    def test_settings_region_beats_ambient(self):
        boto_session, _ = _boto_session(region_name="us-east-1")
        session = establish(settings=Settings(region="eu-west-1"), boto_session=boto_session)
        assert session.region == "eu-west-1"

    def test_clients_use_resolved_region(self):
        boto_session, _ = _boto_session(region_name=None)
        establish("eu-central-1", settings=Settings(), boto_session=boto_session)
        regions = {call.kwargs["region_name"] for call in boto_session.client.call_args_list}
        assert regions == {"eu-central-1"}

    def test_missing_region(self):
        boto_session, sts = _boto_session(region_name=None)
        with pytest.raises(AuthError, match="region"):
            establish(settings=Settings(), boto_session=boto_session)
        sts.get_caller_identity.assert_not_called()

    def test_invalid_credentials(self):
        error = ClientError(
            {"Error": {"Code": "InvalidClientTokenId", "Message": "The security token is invalid"}},
            "GetCallerIdentity",
        )
        boto_session, sts = _boto_session(sts_error=error)
        with pytest.raises(AuthError, match="security token"):
            establish(settings=Settings(), boto_session=boto_session)
        sts.get_caller_identity.assert_called_once()

    def test_no_credentials(self):
        boto_session, _ = _boto_session(sts_error=NoCredentialsError())
        with pytest.raises(AuthError):
            establish(settings=Settings(), boto_session=boto_session)

    def test_missing_account(self):
        boto_session, _ = _boto_session(identity={"Arn": "x"})
        with pytest.raises(AuthError, match="account"):
            establish(settings=Settings(), boto_session=boto_session)

    def test_settings_loaded_when_omitted(self):
        Settings(region="sa-east-1").save()
        boto_session, _ = _boto_session(region_name=None)
        assert establish(boto_session=boto_session).region == "sa-east-1"

    def test_unknown_aws_profile(self, monkeypatch):
        monkeypatch.setenv("AWS_PROFILE", "does-not-exist")
        monkeypatch.setenv("AWS_CONFIG_FILE", "/nonexistent/config")
        monkeypatch.setenv("AWS_SHARED_CREDENTIALS_FILE", "/nonexistent/credentials")
        monkeypatch.delenv("AWS_REGION", raising=False)
        monkeypatch.delenv("AWS_DEFAULT_REGION", raising=False)
        with pytest.raises(AuthError, match="does-not-exist"):
            establish(settings=Settings())

    def test_region_lookup_failure(self):
        class BrokenProfileSession:
            @property
            def region_name(self):
                raise ProfileNotFound(profile="gone")

            def client(self, *args, **kwargs):
                raise AssertionError("no client expected")

        with pytest.raises(AuthError, match="gone"):
            establish(settings=Settings(), boto_session=BrokenProfileSession())
