"""
VPC router — all endpoints under /networks/{provider}/vpcs.

Every route resolves the stored credential from the ``credential_id`` query
parameter and hands the unified request to the NetworkDispatcher.  Provider
errors surface through the application-wide NetworkError handler.

Endpoints
─────────
  GET    /networks/{provider}/vpcs            List VPCs (search / sort / page)
  POST   /networks/{provider}/vpcs            Create a VPC
  GET    /networks/{provider}/vpcs/{vpc_id}   Get a single VPC
  PATCH  /networks/{provider}/vpcs/{vpc_id}   Update name / description / tags
  DELETE /networks/{provider}/vpcs/{vpc_id}   Cascading delete
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, status

from cloudnet.context import RequestContext
from cloudnet.dependencies.api import get_credential, get_request_context
from cloudnet.dependencies.dao import get_dispatcher
from cloudnet.schemas.common import SortOrder
from cloudnet.schemas.credential import Credential
from cloudnet.schemas.vpc import (
    CreateVPCRequest,
    DeleteVPCRequest,
    GetVPCRequest,
    ListVPCsRequest,
    UpdateVPCRequest,
    VPCInfo,
    VPCListResponse,
)
from cloudnet.services.dispatcher import NetworkDispatcher

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/networks/{provider}/vpcs", tags=["VPCs"])


@router.get(
    "",
    response_model=VPCListResponse,
    summary="List VPCs",
    description=(
        "Lists the provider's virtual networks visible to the credential. The full provider "
        "result is cached; search, sort and pagination are applied afterwards."
    ),
)
def list_vpcs(
    provider: str,
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
) -> VPCListResponse:
    logger.info("GET /networks/%s/vpcs called by '%s'", provider, ctx.actor)
    request = ListVPCsRequest(
        region=region,
        resource_group=resource_group,
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
        search=search,
    )
    return dispatcher.execute("vpc", "list", provider, credential, request, ctx)


@router.post(
    "",
    response_model=VPCInfo,
    status_code=status.HTTP_201_CREATED,
    summary="Create a VPC",
)
def create_vpc(
    provider: str,
    body: CreateVPCRequest,
    credential: Credential = Depends(get_credential),
    ctx: RequestContext = Depends(get_request_context),
    dispatcher: NetworkDispatcher = Depends(get_dispatcher),
) -> VPCInfo:
    """Create a VPC; GCP calls return once the insert operation has finished."""
    logger.info("POST /networks/%s/vpcs called by '%s'", provider, ctx.actor)
    return dispatcher.execute("vpc", "create", provider, credential, body, ctx)


@router.get("/{vpc_id}", response_model=VPCInfo, summary="Get a VPC by id")
def get_vpc(
    provider: str,
    vpc_id: str,
    region: Optional[str] = None,
    resource_group: Optional[str] = None,
    credential: Credential = Depends(get_credential),
    ctx: RequestContext = Depends(get_request_context),
    dispatcher: NetworkDispatcher = Depends(get_dispatcher),
) -> VPCInfo:
    logger.info("GET /networks/%s/vpcs/%s called by '%s'", provider, vpc_id, ctx.actor)
    request = GetVPCRequest(vpc_id=vpc_id, region=region, resource_group=resource_group)
    return dispatcher.execute("vpc", "get", provider, credential, request, ctx)


@router.patch("/{vpc_id}", response_model=VPCInfo, summary="Update a VPC")
def update_vpc(
    provider: str,
    vpc_id: str,
    body: UpdateVPCRequest,
    credential: Credential = Depends(get_credential),
    ctx: RequestContext = Depends(get_request_context),
    dispatcher: NetworkDispatcher = Depends(get_dispatcher),
) -> VPCInfo:
    logger.info("PATCH /networks/%s/vpcs/%s called by '%s'", provider, vpc_id, ctx.actor)
    request = body.model_copy(update={"vpc_id": vpc_id})
    return dispatcher.execute("vpc", "update", provider, credential, request, ctx)


@router.delete(
    "/{vpc_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a VPC and its dependent resources",
    description=(
        "Best-effort removal of subnets, firewall rules / security groups and gateways, "
        "then deletion of the VPC itself. Refused with 409 while instances still use it."
    ),
)
def delete_vpc(
    provider: str,
    vpc_id: str,
    region: Optional[str] = None,
    resource_group: Optional[str] = None,
    credential: Credential = Depends(get_credential),
    ctx: RequestContext = Depends(get_request_context),
    dispatcher: NetworkDispatcher = Depends(get_dispatcher),
) -> None:
    logger.info("DELETE /networks/%s/vpcs/%s called by '%s'", provider, vpc_id, ctx.actor)
    request = DeleteVPCRequest(vpc_id=vpc_id, region=region, resource_group=resource_group)
    dispatcher.execute("vpc", "delete", provider, credential, request, ctx)
