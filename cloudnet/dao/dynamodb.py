"""
DynamoDB implementations of CredentialRepository and AuditLogRepository.

All DynamoDB-specific concerns live here — boto3 resource setup, table
bootstrapping — keeping the dispatcher storage-agnostic.

Table schema
────────────
  Credentials : cloud_credentials (DYNAMODB_CREDENTIALS_TABLE), key credential_id (S)
  Audit log   : DYNAMODB_AUDIT_TABLE, key audit_id (S)

Tables are created automatically on first use when they do not already
exist.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

import boto3
from botocore.exceptions import ClientError

from cloudnet.config import settings
from cloudnet.dao.base import AuditLogRepository, CredentialRepository
from cloudnet.schemas.credential import Credential

logger = logging.getLogger(__name__)


class _DynamoDBTable:
    """
    Lazily bootstrapped table handle.

    The boto3 resource and table handle are created on first use so that
    importing this module does not require live AWS credentials.
    """

    def __init__(self, table_name: str, key_name: str) -> None:
        self._table_name = table_name
        self._key_name = key_name
        self._table = None  # populated on first access via _get_table()

    # ── Internal helpers ──────────────────────────────────────────────────────

    def _build_resource(self):
        """Create a boto3 DynamoDB resource from application settings."""
        kwargs: dict = {"region_name": settings.aws_region}
        if settings.aws_access_key_id:
            kwargs["aws_access_key_id"] = settings.aws_access_key_id
            kwargs["aws_secret_access_key"] = settings.aws_secret_access_key
        if settings.dynamodb_endpoint_url:
            # Enables local DynamoDB (e.g. `dynamodb-local` container)
            kwargs["endpoint_url"] = settings.dynamodb_endpoint_url
        return boto3.resource("dynamodb", **kwargs)

    def _get_table(self):
        """
        Return the DynamoDB Table handle, creating the table if it does not
        yet exist.  The handle is cached after the first successful call.
        """
        if self._table is not None:
            return self._table

        ddb = self._build_resource()
        try:
            table = ddb.create_table(
                TableName=self._table_name,
                KeySchema=[{"AttributeName": self._key_name, "KeyType": "HASH"}],
                AttributeDefinitions=[
                    {"AttributeName": self._key_name, "AttributeType": "S"}
                ],
                BillingMode="PAY_PER_REQUEST",
            )
            table.wait_until_exists()
            logger.info("DynamoDB table '%s' created.", self._table_name)
        except ClientError as exc:
            if exc.response["Error"]["Code"] == "ResourceInUseException":
                table = ddb.Table(self._table_name)
            else:
                raise

        self._table = table
        return self._table


class DynamoDBCredentialRepository(_DynamoDBTable, CredentialRepository):
    def __init__(self, table_name: str = "") -> None:
        super().__init__(table_name or settings.dynamodb_credentials_table, "credential_id")

    def get(self, credential_id: str) -> Optional[Credential]:
        table = self._get_table()
        try:
            item = table.get_item(Key={"credential_id": credential_id}).get("Item")
        except ClientError as exc:
            logger.error("DynamoDB GetItem failed for credential '%s': %s", credential_id, exc)
            raise
        if item is None:
            return None
        return Credential(
            id=item["credential_id"],
            provider=item["provider"],
            encrypted_data=item["encrypted_data"],
            name=item.get("name", ""),
        )

    def save(self, credential: Credential) -> None:
        table = self._get_table()
        try:
            table.put_item(
                Item={
                    "credential_id": credential.id,
                    "provider": credential.provider,
                    "encrypted_data": credential.encrypted_data,
                    "name": credential.name,
                }
            )
            logger.info("Saved credential '%s' (%s).", credential.id, credential.provider)
        except ClientError as exc:
            logger.error("DynamoDB PutItem failed: %s", exc)
            raise


class DynamoDBAuditLogRepository(_DynamoDBTable, AuditLogRepository):
    def __init__(self, table_name: str = "") -> None:
        super().__init__(table_name or settings.dynamodb_audit_table, "audit_id")

    def log_action(self, actor: str, action: str, resource_path: str, details: dict) -> None:
        table = self._get_table()
        table.put_item(
            Item={
                "audit_id": uuid.uuid4().hex,
                "actor": actor,
                "action": action,
                "resource_path": resource_path,
                "details": details,
                "created_at": datetime.now(timezone.utc).isoformat(),
            }
        )
