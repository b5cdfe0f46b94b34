"""Pydantic schemas for subnets / subnetworks."""

from typing import Optional

from pydantic import BaseModel, Field, field_validator

from cloudnet.schemas.common import ListQuery, NetworkState, validate_ipv4_cidr


# ── Response models ───────────────────────────────────────────────────────────

class SubnetInfo(BaseModel):
    id: str
    name: str
    vpc_id: str = ""
    cidr_block: str = ""
    availability_zone: Optional[str] = None
    region: Optional[str] = None
    state: NetworkState = NetworkState.ACTIVE
    # Only AWS has a route-table notion of a public subnet
    is_public: bool = False
    description: str = ""
    gateway_address: Optional[str] = None
    private_ip_google_access: Optional[bool] = None
    flow_logs: Optional[bool] = None
    creation_timestamp: Optional[str] = None
    tags: dict[str, str] = Field(default_factory=dict)


class SubnetListResponse(BaseModel):
    items: list[SubnetInfo]
    total: int
    page: int
    limit: int


# ── Request models ────────────────────────────────────────────────────────────

class ListSubnetsRequest(ListQuery):
    vpc_id: Optional[str] = None
    region: Optional[str] = None
    resource_group: Optional[str] = None


class GetSubnetRequest(BaseModel):
    subnet_id: str
    # Azure addresses subnets through their parent virtual network
    vpc_id: Optional[str] = None
    region: Optional[str] = None
    resource_group: Optional[str] = None


class CreateSubnetRequest(BaseModel):
    """Request body for POST /networks/{provider}/subnets."""

    name: str = Field(..., min_length=1, examples=["app-subnet"])
    vpc_id: str = Field(..., examples=["vpc-0123456789abcdef0"])
    cidr_block: str = Field(..., examples=["10.0.1.0/24"])
    region: Optional[str] = Field(None, examples=["us-east-1"])
    availability_zone: Optional[str] = Field(None, examples=["us-east-1a"])
    description: str = ""
    private_ip_google_access: bool = False
    flow_logs: bool = False
    resource_group: Optional[str] = None
    tags: dict[str, str] = Field(default_factory=dict)

    @field_validator("cidr_block")
    @classmethod
    def validate_cidr(cls, v: str) -> str:
        return validate_ipv4_cidr(v)


class UpdateSubnetRequest(BaseModel):
    subnet_id: str = ""
    vpc_id: Optional[str] = None
    region: Optional[str] = None
    resource_group: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    private_ip_google_access: Optional[bool] = None
    flow_logs: Optional[bool] = None
    tags: Optional[dict[str, str]] = None


class DeleteSubnetRequest(BaseModel):
    subnet_id: str
    vpc_id: Optional[str] = None
    region: Optional[str] = None
    resource_group: Optional[str] = None
