"""
Database connection secret: the payload the topology writes and the service reads.

The secret is a JSON object with exactly the keys ``Server``, ``Database``,
``User`` and ``Password``. Consumers fail closed: a missing secret or a payload
that doesn't carry all four fields raises ``SecretPayloadError`` rather than
producing a partial connection string.
"""

import json
import logging
from typing import Any, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import BaseModel, ConfigDict, Field, SecretStr, ValidationError

from .errors import SecretPayloadError
from .model import Interpolation, Literal, join

logger = logging.getLogger(__name__)


class SecretPayload(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True, frozen=True)

    server: str = Field(alias="Server", min_length=1)
    database: str = Field(alias="Database", min_length=1)
    user: str = Field(alias="User", min_length=1)
    password: SecretStr = Field(alias="Password")

    def connection_string(self) -> str:
        """MySQL connection string in the ``Key=Value;`` form the service expects."""
        return (
            f"Server={self.server};Database={self.database};"
            f"User={self.user};Password={self.password.get_secret_value()};"
        )

    @classmethod
    def parse(cls, raw: str) -> "SecretPayload":
        """
        Parse a secret string.

        Raises:
            SecretPayloadError: If it is not JSON or lacks a field
        """
        try:
            payload = cls.model_validate_json(raw)
        except ValidationError as e:
            fields = sorted({str(err["loc"][0]) for err in e.errors() if err.get("loc")})
            raise SecretPayloadError(f"Secret payload is invalid: {', '.join(fields) or 'not JSON'}") from None
        if not payload.password.get_secret_value():
            raise SecretPayloadError("Secret payload is invalid: Password")
        return payload


def build_secret_payload(server: Any, database: Any, user: Any, password: Any) -> Interpolation:
    """
    Build the secret string as an interpolation, resolved at apply time.

    ``server`` is typically a runtime-attribute reference to the database
    endpoint; ``password`` a sensitive literal. String literals are JSON-escaped
    here since interpolation only concatenates.

    Returns:
        Interpolation producing ``{"Server":...,"Database":...,"User":...,"Password":...}``
    """
    return join(
        '{"Server":"', _escaped(server),
        '","Database":"', _escaped(database),
        '","User":"', _escaped(user),
        '","Password":"', _escaped(password),
        '"}',
    )


def load_connection_details(name: str, region: str, client=None) -> SecretPayload:
    """
    Fetch and parse the connection secret from Secrets Manager.

    Args:
        name: Secret name, e.g. ``Sample/Production/DB/Connection``
        region: AWS region
        client: Optional pre-built secretsmanager client

    Returns:
        SecretPayload

    Raises:
        SecretPayloadError: If the secret is absent, unreadable or malformed
    """
    client = client or boto3.client("secretsmanager", region_name=region)
    try:
        response = client.get_secret_value(SecretId=name)
    except ClientError as e:
        code = e.response.get("Error", {}).get("Code", "Unknown")
        logger.error(f"Could not read secret {name}: {code}")
        raise SecretPayloadError(f"Secret {name} could not be read: {code}") from None
    except BotoCoreError as e:
        logger.error(f"Could not reach Secrets Manager for {name}: {e}")
        raise SecretPayloadError(f"Secret {name} could not be read: {e}") from None

    raw: Optional[str] = response.get("SecretString")
    if not raw:
        raise SecretPayloadError(f"Secret {name} has no string value")
    return SecretPayload.parse(raw)


def _escaped(value: Any) -> Any:
    if isinstance(value, Literal) and isinstance(value.value, str):
        return Literal(json.dumps(value.value)[1:-1], sensitive=value.sensitive)
    if isinstance(value, str):
        return json.dumps(value)[1:-1]
    return value
