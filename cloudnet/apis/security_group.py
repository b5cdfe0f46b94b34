"""
Security group router — all endpoints under /networks/{provider}/security-groups.

On GCP a "security group" is a single VPC firewall rule; its allow/deny
blocks are exposed as the group's rules.

Endpoints
─────────
  GET    /networks/{provider}/security-groups                      List groups
  POST   /networks/{provider}/security-groups                      Create a group
  GET    /networks/{provider}/security-groups/{sg_id}              Get a single group
  PATCH  /networks/{provider}/security-groups/{sg_id}              Update description / tags
  DELETE /networks/{provider}/security-groups/{sg_id}              Delete a group
  POST   /networks/{provider}/security-groups/{sg_id}/rules        Add one rule
  POST   /networks/{provider}/security-groups/{sg_id}/rules/remove Remove one rule
  PUT    /networks/{provider}/security-groups/{sg_id}/rules        Replace every rule
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, status

from cloudnet.context import RequestContext
from cloudnet.dependencies.api import get_credential, get_request_context
from cloudnet.dependencies.dao import get_dispatcher
from cloudnet.schemas.common import SortOrder
from cloudnet.schemas.credential import Credential
from cloudnet.schemas.security_group import (
    AddSecurityGroupRuleRequest,
    CreateSecurityGroupRequest,
    DeleteSecurityGroupRequest,
    GetSecurityGroupRequest,
    ListSecurityGroupsRequest,
    RemoveSecurityGroupRuleRequest,
    SecurityGroupInfo,
    SecurityGroupListResponse,
    SecurityGroupRuleInfo,
    UpdateSecurityGroupRequest,
    UpdateSecurityGroupRulesRequest,
)
from cloudnet.services.dispatcher import NetworkDispatcher

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/networks/{provider}/security-groups", tags=["Security Groups"])


@router.get("", response_model=SecurityGroupListResponse, summary="List security groups")
def list_security_groups(
    provider: str,
    vpc_id: Optional[str] = None,
    region: Optional[str] = None,
    resource_group: Optional[str] = None,
    page: int = 1,
    limit: Optional[int] = None,
    sort_by: Optional[str] = None,
    sort_order: SortOrder = SortOrder.ASC,
    search: str = "",
    credential: Credential = Depends(get_credential),
    ctx: RequestContext = Depends(get_request_context),
    dispatcher: NetworkDispatcher = Depends(get_dispatcher),
) -> SecurityGroupListResponse:
    logger.info("GET /networks/%s/security-groups called by '%s'", provider, ctx.actor)
    request = ListSecurityGroupsRequest(
        vpc_id=vpc_id,
        region=region,
        resource_group=resource_group,
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
        search=search,
    )
    return dispatcher.execute("security_group", "list", provider, credential, request, ctx)


@router.post(
    "",
    response_model=SecurityGroupInfo,
    status_code=status.HTTP_201_CREATED,
    summary="Create a security group",
)
def create_security_group(
    provider: str,
    body: CreateSecurityGroupRequest,
    credential: Credential = Depends(get_credential),
    ctx: RequestContext = Depends(get_request_context),
    dispatcher: NetworkDispatcher = Depends(get_dispatcher),
) -> SecurityGroupInfo:
    logger.info("POST /networks/%s/security-groups called by '%s'", provider, ctx.actor)
    return dispatcher.execute("security_group", "create", provider, credential, body, ctx)


@router.get("/{sg_id}", response_model=SecurityGroupInfo, summary="Get a security group by id")
def get_security_group(
    provider: str,
    sg_id: str,
    region: Optional[str] = None,
    resource_group: Optional[str] = None,
    credential: Credential = Depends(get_credential),
    ctx: RequestContext = Depends(get_request_context),
    dispatcher: NetworkDispatcher = Depends(get_dispatcher),
) -> SecurityGroupInfo:
    logger.info("GET /networks/%s/security-groups/%s called by '%s'", provider, sg_id, ctx.actor)
    request = GetSecurityGroupRequest(
        security_group_id=sg_id, region=region, resource_group=resource_group
    )
    return dispatcher.execute("security_group", "get", provider, credential, request, ctx)


@router.patch("/{sg_id}", response_model=SecurityGroupInfo, summary="Update a security group")
def update_security_group(
    provider: str,
    sg_id: str,
    body: UpdateSecurityGroupRequest,
    credential: Credential = Depends(get_credential),
    ctx: RequestContext = Depends(get_request_context),
    dispatcher: NetworkDispatcher = Depends(get_dispatcher),
) -> SecurityGroupInfo:
    logger.info("PATCH /networks/%s/security-groups/%s called by '%s'", provider, sg_id, ctx.actor)
    request = body.model_copy(update={"security_group_id": sg_id})
    return dispatcher.execute("security_group", "update", provider, credential, request, ctx)


@router.delete(
    "/{sg_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a security group",
)
def delete_security_group(
    provider: str,
    sg_id: str,
    region: Optional[str] = None,
    resource_group: Optional[str] = None,
    credential: Credential = Depends(get_credential),
    ctx: RequestContext = Depends(get_request_context),
    dispatcher: NetworkDispatcher = Depends(get_dispatcher),
) -> None:
    logger.info("DELETE /networks/%s/security-groups/%s called by '%s'", provider, sg_id, ctx.actor)
    request = DeleteSecurityGroupRequest(
        security_group_id=sg_id, region=region, resource_group=resource_group
    )
    dispatcher.execute("security_group", "delete", provider, credential, request, ctx)


# ── Rules ─────────────────────────────────────────────────────────────────────

@router.post(
    "/{sg_id}/rules",
    response_model=SecurityGroupInfo,
    summary="Add a rule to a security group",
)
def add_security_group_rule(
    provider: str,
    sg_id: str,
    rule: SecurityGroupRuleInfo,
    region: Optional[str] = None,
    resource_group: Optional[str] = None,
    credential: Credential = Depends(get_credential),
    ctx: RequestContext = Depends(get_request_context),
    dispatcher: NetworkDispatcher = Depends(get_dispatcher),
) -> SecurityGroupInfo:
    logger.info("POST /networks/%s/security-groups/%s/rules called by '%s'", provider, sg_id, ctx.actor)
    request = AddSecurityGroupRuleRequest(
        security_group_id=sg_id, region=region, resource_group=resource_group, rule=rule
    )
    return dispatcher.execute("security_group", "add_rule", provider, credential, request, ctx)


@router.post(
    "/{sg_id}/rules/remove",
    response_model=SecurityGroupInfo,
    summary="Remove a rule from a security group",
)
def remove_security_group_rule(
    provider: str,
    sg_id: str,
    rule: SecurityGroupRuleInfo,
    region: Optional[str] = None,
    resource_group: Optional[str] = None,
    credential: Credential = Depends(get_credential),
    ctx: RequestContext = Depends(get_request_context),
    dispatcher: NetworkDispatcher = Depends(get_dispatcher),
) -> SecurityGroupInfo:
    logger.info(
        "POST /networks/%s/security-groups/%s/rules/remove called by '%s'", provider, sg_id, ctx.actor
    )
    request = RemoveSecurityGroupRuleRequest(
        security_group_id=sg_id, region=region, resource_group=resource_group, rule=rule
    )
    return dispatcher.execute("security_group", "remove_rule", provider, credential, request, ctx)


@router.put(
    "/{sg_id}/rules",
    response_model=SecurityGroupInfo,
    summary="Replace every rule of a security group",
    description=(
        "Atomic on GCP (single firewall update). On AWS the current rules are removed and the "
        "new ones added, so a failure part-way can leave the group with a partial rule set."
    ),
)
def update_security_group_rules(
    provider: str,
    sg_id: str,
    body: UpdateSecurityGroupRulesRequest,
    credential: Credential = Depends(get_credential),
    ctx: RequestContext = Depends(get_request_context),
    dispatcher: NetworkDispatcher = Depends(get_dispatcher),
) -> SecurityGroupInfo:
    logger.info("PUT /networks/%s/security-groups/%s/rules called by '%s'", provider, sg_id, ctx.actor)
    request = body.model_copy(update={"security_group_id": sg_id})
    return dispatcher.execute("security_group", "replace_rules", provider, credential, request, ctx)
