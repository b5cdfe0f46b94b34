"""
Shared enums and query models used by every resource kind.

Provider identifiers are kept as plain strings on purpose: an unknown
provider must reach the dispatcher and fail there with ``NOT_SUPPORTED``
instead of being rejected as a malformed request.
"""

import ipaddress
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

PROVIDER_AWS = "aws"
PROVIDER_GCP = "gcp"
PROVIDER_AZURE = "azure"
PROVIDER_NCP = "ncp"


class ResourceKind(str, Enum):
    VPC = "vpc"
    SUBNET = "subnet"
    SECURITY_GROUP = "security_group"


class Verb(str, Enum):
    LIST = "list"
    GET = "get"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    ADD_RULE = "add_rule"
    REMOVE_RULE = "remove_rule"
    REPLACE_RULES = "replace_rules"


class NetworkState(str, Enum):
    CREATING = "creating"
    ACTIVE = "active"
    DELETING = "deleting"
    ERROR = "error"


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


class ListQuery(BaseModel):
    """Search / sort / pagination options applied after the provider read."""

    page: int = Field(1, description="1-indexed page number; values below 1 are treated as 1.")
    limit: Optional[int] = Field(
        None, description="Page size. Defaults to 10 and is clamped to [1, 100]."
    )
    sort_by: Optional[str] = Field(
        None,
        examples=["name"],
        description="One of name, state, cidr_block, created_at. Unknown fields sort by name.",
    )
    sort_order: SortOrder = SortOrder.ASC
    search: str = Field("", description="Case-insensitive substring filter.")


def validate_ipv4_cidr(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    try:
        ipaddress.IPv4Network(v, strict=False)
    except ValueError:
        raise ValueError(f"'{v}' is not a valid IPv4 CIDR block.")
    return v
