"""
Subnet router — all endpoints under /networks/{provider}/subnets.

Endpoints
─────────
  GET    /networks/{provider}/subnets               List subnets (optionally of one VPC)
  POST   /networks/{provider}/subnets               Create a subnet
  GET    /networks/{provider}/subnets/{subnet_id}   Get a single subnet
  PATCH  /networks/{provider}/subnets/{subnet_id}   Update a subnet
  DELETE /networks/{provider}/subnets/{subnet_id}   Delete a subnet
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, status

from cloudnet.context import RequestContext
from cloudnet.dependencies.api import get_credential, get_request_context
from cloudnet.dependencies.dao import get_dispatcher
from cloudnet.schemas.common import SortOrder
from cloudnet.schemas.credential import Credential
from cloudnet.schemas.subnet import (
    CreateSubnetRequest,
    DeleteSubnetRequest,
    GetSubnetRequest,
    ListSubnetsRequest,
    SubnetInfo,
    SubnetListResponse,
    UpdateSubnetRequest,
)
from cloudnet.services.dispatcher import NetworkDispatcher

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/networks/{provider}/subnets", tags=["Subnets"])


@router.get("", response_model=SubnetListResponse, summary="List subnets")
def list_subnets(
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
) -> SubnetListResponse:
    logger.info("GET /networks/%s/subnets called by '%s'", provider, ctx.actor)
    request = ListSubnetsRequest(
        vpc_id=vpc_id,
        region=region,
        resource_group=resource_group,
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
        search=search,
    )
    return dispatcher.execute("subnet", "list", provider, credential, request, ctx)


@router.post(
    "",
    response_model=SubnetInfo,
    status_code=status.HTTP_201_CREATED,
    summary="Create a subnet",
)
def create_subnet(
    provider: str,
    body: CreateSubnetRequest,
    credential: Credential = Depends(get_credential),
    ctx: RequestContext = Depends(get_request_context),
    dispatcher: NetworkDispatcher = Depends(get_dispatcher),
) -> SubnetInfo:
    logger.info("POST /networks/%s/subnets called by '%s'", provider, ctx.actor)
    return dispatcher.execute("subnet", "create", provider, credential, body, ctx)


@router.get("/{subnet_id}", response_model=SubnetInfo, summary="Get a subnet by id")
def get_subnet(
    provider: str,
    subnet_id: str,
    vpc_id: Optional[str] = None,
    region: Optional[str] = None,
    resource_group: Optional[str] = None,
    credential: Credential = Depends(get_credential),
    ctx: RequestContext = Depends(get_request_context),
    dispatcher: NetworkDispatcher = Depends(get_dispatcher),
) -> SubnetInfo:
    logger.info("GET /networks/%s/subnets/%s called by '%s'", provider, subnet_id, ctx.actor)
    request = GetSubnetRequest(
        subnet_id=subnet_id, vpc_id=vpc_id, region=region, resource_group=resource_group
    )
    return dispatcher.execute("subnet", "get", provider, credential, request, ctx)


@router.patch("/{subnet_id}", response_model=SubnetInfo, summary="Update a subnet")
def update_subnet(
    provider: str,
    subnet_id: str,
    body: UpdateSubnetRequest,
    credential: Credential = Depends(get_credential),
    ctx: RequestContext = Depends(get_request_context),
    dispatcher: NetworkDispatcher = Depends(get_dispatcher),
) -> SubnetInfo:
    logger.info("PATCH /networks/%s/subnets/%s called by '%s'", provider, subnet_id, ctx.actor)
    request = body.model_copy(update={"subnet_id": subnet_id})
    return dispatcher.execute("subnet", "update", provider, credential, request, ctx)


@router.delete(
    "/{subnet_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a subnet",
)
def delete_subnet(
    provider: str,
    subnet_id: str,
    vpc_id: Optional[str] = None,
    region: Optional[str] = None,
    resource_group: Optional[str] = None,
    credential: Credential = Depends(get_credential),
    ctx: RequestContext = Depends(get_request_context),
    dispatcher: NetworkDispatcher = Depends(get_dispatcher),
) -> None:
    logger.info("DELETE /networks/%s/subnets/%s called by '%s'", provider, subnet_id, ctx.actor)
    request = DeleteSubnetRequest(
        subnet_id=subnet_id, vpc_id=vpc_id, region=region, resource_group=resource_group
    )
    dispatcher.execute("subnet", "delete", provider, credential, request, ctx)
