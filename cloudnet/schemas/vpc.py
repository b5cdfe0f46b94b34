"""
Pydantic schemas for virtual networks (AWS VPC, GCP network, Azure VNet).

Provider-specific extras (routing mode, MTU, auto-subnets) are optional
fields; only ``id``, ``name`` and ``state`` are guaranteed for every provider.
"""

from typing import Optional

from pydantic import BaseModel, Field, field_validator

from cloudnet.schemas.common import ListQuery, NetworkState, validate_ipv4_cidr


# ── Response models ───────────────────────────────────────────────────────────

class GatewayInfo(BaseModel):
    type: str = ""
    ip_address: str = ""
    name: str = ""


class VPCInfo(BaseModel):
    """A provider-neutral virtual network."""

    id: str
    name: str
    state: NetworkState = NetworkState.ACTIVE
    is_default: bool = False
    region: Optional[str] = None
    cidr: Optional[str] = None
    description: str = ""
    network_mode: Optional[str] = None
    routing_mode: Optional[str] = None
    mtu: Optional[int] = None
    auto_subnets: Optional[bool] = None
    firewall_rule_count: Optional[int] = None
    gateway: Optional[GatewayInfo] = None
    creation_timestamp: Optional[str] = None
    tags: dict[str, str] = Field(default_factory=dict)


class VPCListResponse(BaseModel):
    items: list[VPCInfo]
    total: int
    page: int
    limit: int


# ── Request models ────────────────────────────────────────────────────────────

class ListVPCsRequest(ListQuery):
    region: Optional[str] = Field(None, examples=["us-east-1"])
    resource_group: Optional[str] = None


class GetVPCRequest(BaseModel):
    vpc_id: str
    region: Optional[str] = None
    resource_group: Optional[str] = None


class CreateVPCRequest(BaseModel):
    """Request body for POST /networks/{provider}/vpcs."""

    name: str = Field(..., min_length=1, examples=["test-vpc"])
    description: str = ""
    cidr_block: Optional[str] = Field(
        None,
        examples=["10.0.0.0/16"],
        description="IPv4 CIDR block. Required for AWS and Azure, ignored by GCP.",
    )
    region: Optional[str] = Field(None, examples=["us-east-1"])
    resource_group: Optional[str] = None
    auto_create_subnets: bool = True
    routing_mode: str = "REGIONAL"
    mtu: int = 1460
    tags: dict[str, str] = Field(default_factory=dict)

    @field_validator("cidr_block")
    @classmethod
    def validate_cidr(cls, v: Optional[str]) -> Optional[str]:
        return validate_ipv4_cidr(v)


class UpdateVPCRequest(BaseModel):
    vpc_id: str = ""
    region: Optional[str] = None
    resource_group: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    tags: Optional[dict[str, str]] = None


class DeleteVPCRequest(BaseModel):
    vpc_id: str
    region: Optional[str] = None
    resource_group: Optional[str] = None
