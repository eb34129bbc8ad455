"""Secret reference resolution for tokens and the database URL.

A configured value may be a literal or a reference into a cloud secret
store:

  - ``aws-secret://name``            AWS Secrets Manager, whole SecretString
  - ``aws-secret://name#key``        AWS Secrets Manager, one key of a JSON secret
  - ``gcp-secret://name``            GCP Secret Manager, latest version
  - ``gcp-secret://projects/...``    GCP Secret Manager, full resource name
"""

from __future__ import annotations

import json
import logging
import os

logger = logging.getLogger("seatwise.secrets")

_AWS_PREFIX = "aws-secret://"
_GCP_PREFIX = "gcp-secret://"


def is_secret_reference(value: str) -> bool:
    return value.startswith((_AWS_PREFIX, _GCP_PREFIX))


def resolve_secret(value: str) -> str:
    """Return the plaintext behind ``value``; literals are returned unchanged."""
    if value.startswith(_AWS_PREFIX):
        return _resolve_aws_secret(value[len(_AWS_PREFIX):])
    if value.startswith(_GCP_PREFIX):
        return _resolve_gcp_secret(value[len(_GCP_PREFIX):])
    return value


def _resolve_aws_secret(ref: str) -> str:
    import boto3

    secret_name, _, json_key = ref.partition("#")
    client = boto3.client(
        "secretsmanager", region_name=os.environ.get("AWS_REGION", "us-east-1")
    )
    secret_string = client.get_secret_value(SecretId=secret_name)["SecretString"]
    logger.debug("Resolved AWS secret %s", secret_name)
    if json_key:
        return str(json.loads(secret_string)[json_key])
    return secret_string


def _resolve_gcp_secret(ref: str) -> str:
    from google.cloud import secretmanager

    if ref.startswith("projects/"):
        name = ref
    else:
        project = os.environ.get("GCP_PROJECT_ID", "")
        if not project:
            raise RuntimeError(
                f"GCP_PROJECT_ID is required to resolve secret reference {ref!r}"
            )
        name = f"projects/{project}/secrets/{ref}/versions/latest"

    client = secretmanager.SecretManagerServiceClient()
    response = client.access_secret_version(request={"name": name})
    logger.debug("Resolved GCP secret %s", name)
    return response.payload.data.decode("UTF-8")


def resolve_database_url() -> str:
    """DATABASE_URL (possibly a secret reference), else assembled from PG_* variables."""
    url = os.environ.get("DATABASE_URL", "")
    if url:
        return resolve_secret(url)

    host = os.environ.get("PG_HOST", "localhost")
    port = os.environ.get("PG_PORT", "5432")
    user = os.environ.get("PG_USER", "seatwise")
    password = resolve_secret(os.environ.get("PG_PASSWORD", "localdev-change-me"))
    database = os.environ.get("PG_DATABASE", "seatwise")
    return f"postgresql://{user}:{password}@{host}:{port}/{database}"
