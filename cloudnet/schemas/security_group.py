"""
Pydantic schemas for security groups (AWS) and firewall rules (GCP, Azure NSG).

AWS keeps a persistent group object holding many rules; GCP models every
firewall as its own resource with ``allowed``/``denied`` blocks. Both are
normalised into ``SecurityGroupInfo`` with an ordered list of rules.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from cloudnet.schemas.common import ListQuery


class RuleDirection(str, Enum):
    INGRESS = "ingress"
    EGRESS = "egress"


# ── Response models ───────────────────────────────────────────────────────────

class SecurityGroupRuleInfo(BaseModel):
    id: str = ""
    type: RuleDirection = RuleDirection.INGRESS
    protocol: str = Field("tcp", examples=["tcp", "udp", "icmp", "-1"])
    from_port: Optional[int] = None
    to_port: Optional[int] = None
    cidr_blocks: list[str] = Field(default_factory=list)
    source_groups: list[str] = Field(default_factory=list)
    description: str = ""


class SecurityGroupInfo(BaseModel):
    id: str
    name: str
    description: str = ""
    vpc_id: str = ""
    region: Optional[str] = None
    rules: list[SecurityGroupRuleInfo] = Field(default_factory=list)
    creation_timestamp: Optional[str] = None
    tags: dict[str, str] = Field(default_factory=dict)


class SecurityGroupListResponse(BaseModel):
    items: list[SecurityGroupInfo]
    total: int
    page: int
    limit: int


# ── Request models ────────────────────────────────────────────────────────────

class FirewallPortSpec(BaseModel):
    """One GCP ``allowed``/``denied`` entry."""

    protocol: str = Field("tcp", examples=["tcp"])
    ports: list[str] = Field(default_factory=list, examples=[["22", "8000-8080"]])


class ListSecurityGroupsRequest(ListQuery):
    region: Optional[str] = None
    vpc_id: Optional[str] = None
    resource_group: Optional[str] = None


class GetSecurityGroupRequest(BaseModel):
    security_group_id: str
    region: Optional[str] = None
    resource_group: Optional[str] = None


class CreateSecurityGroupRequest(BaseModel):
    """Request body for POST /networks/{provider}/security-groups."""

    name: str = Field(..., min_length=1, examples=["web-sg"])
    description: str = ""
    vpc_id: str = Field("", examples=["vpc-0123456789abcdef0"])
    region: Optional[str] = Field(None, examples=["us-east-1"])
    resource_group: Optional[str] = None
    # AWS / Azure: initial rules
    rules: list[SecurityGroupRuleInfo] = Field(default_factory=list)
    # GCP firewall fields
    direction: str = "INGRESS"
    priority: int = 1000
    action: str = Field("allow", description="allow or deny (GCP only).")
    protocol: Optional[str] = None
    ports: list[str] = Field(default_factory=list)
    source_ranges: list[str] = Field(default_factory=list)
    target_tags: list[str] = Field(default_factory=list)
    allowed: list[FirewallPortSpec] = Field(default_factory=list)
    denied: list[FirewallPortSpec] = Field(default_factory=list)
    tags: dict[str, str] = Field(default_factory=dict)


class UpdateSecurityGroupRequest(BaseModel):
    security_group_id: str = ""
    region: Optional[str] = None
    resource_group: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    tags: Optional[dict[str, str]] = None


class DeleteSecurityGroupRequest(BaseModel):
    security_group_id: str
    region: Optional[str] = None
    resource_group: Optional[str] = None


class AddSecurityGroupRuleRequest(BaseModel):
    security_group_id: str = ""
    region: Optional[str] = None
    resource_group: Optional[str] = None
    rule: SecurityGroupRuleInfo


class RemoveSecurityGroupRuleRequest(BaseModel):
    security_group_id: str = ""
    region: Optional[str] = None
    resource_group: Optional[str] = None
    rule: SecurityGroupRuleInfo


class UpdateSecurityGroupRulesRequest(BaseModel):
    """Replace every rule of a security group with the given sets."""

    security_group_id: str = ""
    region: Optional[str] = None
    resource_group: Optional[str] = None
    ingress_rules: list[SecurityGroupRuleInfo] = Field(default_factory=list)
    egress_rules: list[SecurityGroupRuleInfo] = Field(default_factory=list)
