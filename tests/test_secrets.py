"""
Tests for the database connection secret.
"""

import json
from unittest.mock import Mock

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from stackweave.errors import SecretPayloadError
from stackweave.secrets import SecretPayload, load_connection_details

PAYLOAD = {"Server": "db-1.rds.example", "Database": "test", "User": "admin", "Password": "s3cret-pw"}


def _client(secret_string=None, error=None):
    client = Mock()
    if error is not None:
        client.get_secret_value.side_effect = error
    else:
        client.get_secret_value.return_value = {"Name": "x", "SecretString": secret_string}
    return client


class TestSecretPayload:
    """Test parsing of the secret string."""

    def test_connection_string(self):
        payload = SecretPayload.parse(json.dumps(PAYLOAD))

        assert payload.connection_string() == \
            "Server=db-1.rds.example;Database=test;User=admin;Password=s3cret-pw;"

    def test_password_hidden_in_repr(self):
        payload = SecretPayload.parse(json.dumps(PAYLOAD))

        assert "s3cret-pw" not in repr(payload)
        assert "s3cret-pw" not in str(payload)

    @pytest.mark.parametrize("missing", ["Server", "Database", "User", "Password"])
    def test_missing_field(self, missing):
        data = {k: v for k, v in PAYLOAD.items() if k != missing}

        with pytest.raises(SecretPayloadError, match=missing):
            SecretPayload.parse(json.dumps(data))

    def test_empty_password(self):
        with pytest.raises(SecretPayloadError, match="Password"):
            SecretPayload.parse(json.dumps({**PAYLOAD, "Password": ""}))

    def test_not_json(self):
        with pytest.raises(SecretPayloadError, match="not JSON"):
            SecretPayload.parse("Server=x;")


class TestLoadConnectionDetails:
    """Consumers fail closed when the secret can't be read."""

    def test_reads_secret(self):
        client = _client(json.dumps(PAYLOAD))

        payload = load_connection_details("Sample/Production/DB/Connection", "us-east-1", client=client)

        client.get_secret_value.assert_called_once_with(SecretId="Sample/Production/DB/Connection")
        assert payload.server == "db-1.rds.example"

    def test_secret_not_found(self):
        error = ClientError({"Error": {"Code": "ResourceNotFoundException", "Message": "nope"}}, "GetSecretValue")

        with pytest.raises(SecretPayloadError, match="ResourceNotFoundException"):
            load_connection_details("Sample/Production/DB/Connection", "us-east-1", client=_client(error=error))

    def test_endpoint_unreachable(self):
        error = EndpointConnectionError(endpoint_url="https://secretsmanager.us-east-1.amazonaws.com")

        with pytest.raises(SecretPayloadError):
            load_connection_details("name", "us-east-1", client=_client(error=error))

    def test_binary_only_secret(self):
        with pytest.raises(SecretPayloadError, match="no string value"):
            load_connection_details("name", "us-east-1", client=_client(None))
