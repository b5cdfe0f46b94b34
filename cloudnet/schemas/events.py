"""
Typed payloads published after every successful mutation.

``event_type`` follows ``network.{resource}.{provider}.{verb}`` where verb is
past tense, e.g. ``network.vpc.aws.created``.
"""

from datetime import datetime, timezone
from typing import Optional, Union

from pydantic import BaseModel, Field

from cloudnet.schemas.common import ResourceKind, Verb

_PAST_TENSE = {
    Verb.CREATE: "created",
    Verb.UPDATE: "updated",
    Verb.DELETE: "deleted",
    Verb.ADD_RULE: "rule_added",
    Verb.REMOVE_RULE: "rule_removed",
    Verb.REPLACE_RULES: "rules_replaced",
}


def event_type_for(kind: ResourceKind, provider: str, verb: Verb) -> str:
    return f"network.{kind.value}.{provider}.{_PAST_TENSE[verb]}"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class NetworkEvent(BaseModel):
    event_type: str
    provider: str
    credential_id: str
    actor: str
    request_id: str = ""
    region: Optional[str] = None
    name: Optional[str] = None
    occurred_at: str = Field(default_factory=_now)


class VPCEvent(NetworkEvent):
    vpc_id: str


class SubnetEvent(NetworkEvent):
    subnet_id: str
    vpc_id: Optional[str] = None
    cidr_block: Optional[str] = None


class SecurityGroupEvent(NetworkEvent):
    security_group_id: str
    vpc_id: Optional[str] = None
    rule_count: Optional[int] = None


AnyNetworkEvent = Union[VPCEvent, SubnetEvent, SecurityGroupEvent]
