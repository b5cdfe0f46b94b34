"""
SDK client factories, one per provider.

Each factory takes the decrypted credential map of a single request and
returns an authenticated client.  Clients are built per call; nothing here
keeps secrets around.
"""

import json
import logging
import re
from typing import Optional

import boto3
from azure.identity import ClientSecretCredential
from azure.mgmt.network import NetworkManagementClient
from google.oauth2 import service_account
from googleapiclient.discovery import build

from cloudnet.errors import ValidationFailedError

logger = logging.getLogger(__name__)

_GCP_SCOPES = ["https://www.googleapis.com/auth/cloud-platform"]
_VPC_ID_SHAPE = re.compile(r"^vpc-[0-9a-f]+$")


def _require(secrets: dict, key: str) -> str:
    value = secrets.get(key)
    if not value:
        raise ValidationFailedError(f"{key} not found in credential")
    return str(value)


def validate_aws_region(region: Optional[str]) -> str:
    """Reject a missing region and a VPC id passed where a region belongs."""
    if not region:
        raise ValidationFailedError("Region is required for AWS EC2 client")
    if _VPC_ID_SHAPE.match(region):
        raise ValidationFailedError(
            f"Invalid region: '{region}' appears to be a VPC ID, not a region"
        )
    return region


def ec2_client(secrets: dict, region: Optional[str]):
    """Build a boto3 EC2 client from a decrypted AWS credential."""
    kwargs = {
        "region_name": validate_aws_region(region),
        "aws_access_key_id": _require(secrets, "access_key"),
        "aws_secret_access_key": _require(secrets, "secret_key"),
    }
    if secrets.get("session_token"):
        kwargs["aws_session_token"] = secrets["session_token"]
    return boto3.client("ec2", **kwargs)


def gcp_project_id(secrets: dict) -> str:
    project_id = secrets.get("project_id")
    if not project_id:
        raise ValidationFailedError("Project ID not found in credential data")
    return str(project_id)


def gcp_compute_client(secrets: dict):
    """
    Build a Compute Engine v1 client.

    The credential is either the service-account JSON itself or a map holding
    it as a string under ``service_account_json``.
    """
    info = secrets
    if "service_account_json" in secrets:
        try:
            info = json.loads(secrets["service_account_json"])
        except (TypeError, ValueError) as exc:
            raise ValidationFailedError("service_account_json is not valid JSON") from exc
    credentials = service_account.Credentials.from_service_account_info(info, scopes=_GCP_SCOPES)
    return build("compute", "v1", credentials=credentials, cache_discovery=False)


def azure_network_client(secrets: dict) -> NetworkManagementClient:
    """Build an Azure network management client from a service principal."""
    credential = ClientSecretCredential(
        tenant_id=_require(secrets, "tenant_id"),
        client_id=_require(secrets, "client_id"),
        client_secret=_require(secrets, "client_secret"),
    )
    return NetworkManagementClient(credential, _require(secrets, "subscription_id"))
