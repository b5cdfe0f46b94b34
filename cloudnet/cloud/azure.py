"""
Azure handlers: virtual networks, subnets and network security groups.

The management SDK blocks on its own LRO pollers (``begin_*().result()``),
so the operation poller is not involved.  Every call except an unscoped
list needs a resource group, taken from the request, the ARM id or the
credential (``resource_group``), in that order.

Security-rule mutation and subnet updates are not built for Azure.
"""

import logging
from contextlib import contextmanager
from typing import Callable, Optional

from azure.core.exceptions import (
    AzureError,
    HttpResponseError,
    ResourceExistsError,
    ResourceNotFoundError,
)

from cloudnet.cloud.base import (
    ProviderHandlers,
    ProviderSession,
    SecurityGroupHandler,
    SubnetHandler,
    VPCHandler,
)
from cloudnet.cloud.clients import azure_network_client
from cloudnet.errors import (
    ConflictError,
    NetworkError,
    NotFoundError,
    ProviderError,
    ValidationFailedError,
)
from cloudnet.schemas.common import PROVIDER_AZURE, NetworkState
from cloudnet.schemas.security_group import (
    CreateSecurityGroupRequest,
    DeleteSecurityGroupRequest,
    GetSecurityGroupRequest,
    ListSecurityGroupsRequest,
    RuleDirection,
    SecurityGroupInfo,
    SecurityGroupRuleInfo,
    UpdateSecurityGroupRequest,
)
from cloudnet.schemas.subnet import (
    CreateSubnetRequest,
    DeleteSubnetRequest,
    GetSubnetRequest,
    ListSubnetsRequest,
    SubnetInfo,
)
from cloudnet.schemas.vpc import (
    CreateVPCRequest,
    DeleteVPCRequest,
    GetVPCRequest,
    ListVPCsRequest,
    UpdateVPCRequest,
    VPCInfo,
)

logger = logging.getLogger(__name__)

_STATE_MAP = {
    "Succeeded": NetworkState.ACTIVE,
    "Creating": NetworkState.CREATING,
    "Updating": NetworkState.CREATING,
    "Deleting": NetworkState.DELETING,
    "Failed": NetworkState.ERROR,
}

_CONFLICT_CODES = {"InUseSubnetCannotBeDeleted", "InUseNetworkSecurityGroupCannotBeDeleted", "AnotherOperationInProgress"}


# ── Internal helpers ──────────────────────────────────────────────────────────

def _convert_azure_error(exc: AzureError, operation: str) -> NetworkError:
    details = {"provider": PROVIDER_AZURE, "operation": operation}
    message = getattr(exc, "message", None) or str(exc)
    if isinstance(exc, ResourceNotFoundError):
        return NotFoundError(message, details)
    if isinstance(exc, ResourceExistsError):
        return ConflictError(message, details)
    if isinstance(exc, HttpResponseError):
        code = getattr(getattr(exc, "error", None), "code", None) or ""
        details["azure_code"] = code
        if exc.status_code == 404:
            return NotFoundError(message, details)
        if exc.status_code == 409 or code in _CONFLICT_CODES:
            return ConflictError(message, details)
        if exc.status_code == 400:
            return ValidationFailedError(message, details)
    return ProviderError(
        f"Azure {operation} failed: {message}", provider=PROVIDER_AZURE, operation=operation
    )


@contextmanager
def _azure_call(operation: str):
    try:
        yield
    except AzureError as exc:
        logger.error("Azure %s failed: %s", operation, exc)
        raise _convert_azure_error(exc, operation) from exc


def _arm_segments(resource_id: str) -> dict[str, str]:
    """ARM id -> {"subscriptions": ..., "resourceGroups": ..., "virtualNetworks": ...}."""
    parts = [p for p in (resource_id or "").split("/") if p]
    if len(parts) < 2:
        return {}
    return {parts[i]: parts[i + 1] for i in range(0, len(parts) - 1, 2)}


def _name_of(value: str) -> str:
    return value.rstrip("/").rsplit("/", 1)[-1]


def _state(resource) -> NetworkState:
    return _STATE_MAP.get(getattr(resource, "provisioning_state", None) or "", NetworkState.ACTIVE)


def _to_vpc_info(vnet) -> VPCInfo:
    address_space = getattr(vnet, "address_space", None)
    prefixes = list(getattr(address_space, "address_prefixes", None) or [])
    return VPCInfo(
        id=vnet.id,
        name=vnet.name,
        state=_state(vnet),
        is_default=False,
        region=vnet.location,
        cidr=prefixes[0] if prefixes else None,
        tags=dict(vnet.tags or {}),
    )


def _to_subnet_info(subnet, region: Optional[str] = None) -> SubnetInfo:
    vnet_id = subnet.id.split("/subnets/")[0] if subnet.id else ""
    return SubnetInfo(
        id=subnet.id,
        name=subnet.name,
        vpc_id=vnet_id,
        cidr_block=subnet.address_prefix or "",
        region=region,
        state=_state(subnet),
        is_public=False,
    )


def _port_range(value: Optional[str]) -> tuple[Optional[int], Optional[int]]:
    if not value or value == "*":
        return None, None
    low, _, high = value.partition("-")
    return int(low), int(high or low)


def _to_rule(rule) -> SecurityGroupRuleInfo:
    from_port, to_port = _port_range(rule.destination_port_range)
    direction = RuleDirection.EGRESS if rule.direction == "Outbound" else RuleDirection.INGRESS
    remote = rule.destination_address_prefix if direction == RuleDirection.EGRESS else rule.source_address_prefix
    protocol = (rule.protocol or "*").lower()
    return SecurityGroupRuleInfo(
        id=rule.id or rule.name,
        type=direction,
        protocol="-1" if protocol == "*" else protocol,
        from_port=from_port,
        to_port=to_port,
        cidr_blocks=[remote] if remote and remote != "*" else [],
        description=rule.description or "",
    )


def _to_security_group_info(nsg) -> SecurityGroupInfo:
    return SecurityGroupInfo(
        id=nsg.id,
        name=nsg.name,
        description="",
        vpc_id="",
        region=nsg.location,
        rules=[_to_rule(r) for r in nsg.security_rules or []],
        tags=dict(nsg.tags or {}),
    )


def _security_rule_body(rule: SecurityGroupRuleInfo, priority: int) -> dict:
    egress = rule.type == RuleDirection.EGRESS
    if rule.from_port is None:
        ports = "*"
    elif rule.to_port is None or rule.to_port == rule.from_port:
        ports = str(rule.from_port)
    else:
        ports = f"{rule.from_port}-{rule.to_port}"
    remote = rule.cidr_blocks[0] if rule.cidr_blocks else "*"
    protocol = "*" if rule.protocol in ("-1", "all") else rule.protocol.capitalize()
    return {
        "name": f"{rule.type.value}-{priority}",
        "priority": priority,
        "direction": "Outbound" if egress else "Inbound",
        "access": "Allow",
        "protocol": protocol,
        "source_port_range": "*",
        "destination_port_range": ports,
        "source_address_prefix": "*" if egress else remote,
        "destination_address_prefix": remote if egress else "*",
        "description": rule.description,
    }


class _AzureHandler:
    provider = PROVIDER_AZURE

    def __init__(self, client_factory: Callable = azure_network_client) -> None:
        self._client_factory = client_factory

    def _client(self, session: ProviderSession):
        session.ctx.raise_if_cancelled()
        return self._client_factory(session.secrets)

    @staticmethod
    def _resource_group(
        session: ProviderSession, requested: Optional[str], resource_id: str = ""
    ) -> Optional[str]:
        return (
            requested
            or _arm_segments(resource_id).get("resourceGroups")
            or session.secrets.get("resource_group")
        )

    def _require_resource_group(
        self, session: ProviderSession, requested: Optional[str], resource_id: str = ""
    ) -> str:
        resource_group = self._resource_group(session, requested, resource_id)
        if not resource_group:
            raise ValidationFailedError(
                f"Resource group is required for Azure {self.resource}"
            )
        return resource_group


# ── Virtual networks ──────────────────────────────────────────────────────────

class AzureVPCHandler(_AzureHandler, VPCHandler):
    resource = "Virtual Network"

    def list_all(self, session: ProviderSession, request: ListVPCsRequest) -> list[VPCInfo]:
        client = self._client(session)
        resource_group = self._resource_group(session, request.resource_group)
        with _azure_call("virtual_networks.list"):
            if resource_group:
                vnets = list(client.virtual_networks.list(resource_group))
            else:
                vnets = list(client.virtual_networks.list_all())
        items = [_to_vpc_info(v) for v in vnets]
        if request.region:
            items = [v for v in items if v.region == request.region]
        return items

    def get(self, session: ProviderSession, request: GetVPCRequest) -> VPCInfo:
        resource_group = self._require_resource_group(session, request.resource_group, request.vpc_id)
        client = self._client(session)
        with _azure_call("virtual_networks.get"):
            vnet = client.virtual_networks.get(resource_group, _name_of(request.vpc_id))
        return _to_vpc_info(vnet)

    def create(self, session: ProviderSession, request: CreateVPCRequest) -> VPCInfo:
        resource_group = self._require_resource_group(session, request.resource_group)
        if not request.region:
            raise ValidationFailedError("region (location) is required for Azure virtual networks")
        if not request.cidr_block:
            raise ValidationFailedError("cidr_block is required for Azure virtual networks")
        client = self._client(session)
        parameters = {
            "location": request.region,
            "address_space": {"address_prefixes": [request.cidr_block]},
            "tags": dict(request.tags),
        }
        logger.info("Creating Azure virtual network %s in %s/%s", request.name, resource_group, request.region)
        with _azure_call("virtual_networks.begin_create_or_update"):
            vnet = client.virtual_networks.begin_create_or_update(
                resource_group, request.name, parameters
            ).result()
        return _to_vpc_info(vnet)

    def update(self, session: ProviderSession, request: UpdateVPCRequest) -> VPCInfo:
        resource_group = self._require_resource_group(session, request.resource_group, request.vpc_id)
        name = _name_of(request.vpc_id)
        if request.name and request.name != name:
            raise ValidationFailedError("Azure virtual networks cannot be renamed")
        if request.description is not None:
            raise ValidationFailedError("Azure virtual networks have no description")
        client = self._client(session)
        if request.tags is None:
            with _azure_call("virtual_networks.get"):
                vnet = client.virtual_networks.get(resource_group, name)
        else:
            with _azure_call("virtual_networks.update_tags"):
                vnet = client.virtual_networks.update_tags(
                    resource_group, name, {"tags": dict(request.tags)}
                )
        return _to_vpc_info(vnet)

    def delete(self, session: ProviderSession, request: DeleteVPCRequest) -> None:
        resource_group = self._require_resource_group(session, request.resource_group, request.vpc_id)
        client = self._client(session)
        with _azure_call("virtual_networks.begin_delete"):
            client.virtual_networks.begin_delete(resource_group, _name_of(request.vpc_id)).result()
        logger.info("Deleted Azure virtual network %s", request.vpc_id)


# ── Subnets ───────────────────────────────────────────────────────────────────

class AzureSubnetHandler(_AzureHandler, SubnetHandler):
    resource = "Subnet"

    @staticmethod
    def _vnet_name(vpc_id: Optional[str], subnet_id: str = "") -> str:
        vnet = _arm_segments(subnet_id).get("virtualNetworks") or (_name_of(vpc_id) if vpc_id else "")
        if not vnet:
            raise ValidationFailedError("vpc_id (virtual network) is required for Azure subnets")
        return vnet

    def list_all(self, session: ProviderSession, request: ListSubnetsRequest) -> list[SubnetInfo]:
        resource_group = self._require_resource_group(session, request.resource_group, request.vpc_id or "")
        vnet = self._vnet_name(request.vpc_id)
        client = self._client(session)
        with _azure_call("subnets.list"):
            subnets = list(client.subnets.list(resource_group, vnet))
        return [_to_subnet_info(s, request.region) for s in subnets]

    def get(self, session: ProviderSession, request: GetSubnetRequest) -> SubnetInfo:
        resource_group = self._require_resource_group(session, request.resource_group, request.subnet_id)
        vnet = self._vnet_name(request.vpc_id, request.subnet_id)
        client = self._client(session)
        with _azure_call("subnets.get"):
            subnet = client.subnets.get(resource_group, vnet, _name_of(request.subnet_id))
        return _to_subnet_info(subnet, request.region)

    def create(self, session: ProviderSession, request: CreateSubnetRequest) -> SubnetInfo:
        resource_group = self._require_resource_group(session, request.resource_group, request.vpc_id)
        vnet = self._vnet_name(request.vpc_id)
        client = self._client(session)
        with _azure_call("subnets.begin_create_or_update"):
            subnet = client.subnets.begin_create_or_update(
                resource_group, vnet, request.name, {"address_prefix": request.cidr_block}
            ).result()
        return _to_subnet_info(subnet, request.region)

    def delete(self, session: ProviderSession, request: DeleteSubnetRequest) -> None:
        resource_group = self._require_resource_group(session, request.resource_group, request.subnet_id)
        vnet = self._vnet_name(request.vpc_id, request.subnet_id)
        client = self._client(session)
        with _azure_call("subnets.begin_delete"):
            client.subnets.begin_delete(resource_group, vnet, _name_of(request.subnet_id)).result()


# ── Network security groups ───────────────────────────────────────────────────

class AzureSecurityGroupHandler(_AzureHandler, SecurityGroupHandler):
    resource = "Network Security Group"

    def list_all(
        self, session: ProviderSession, request: ListSecurityGroupsRequest
    ) -> list[SecurityGroupInfo]:
        client = self._client(session)
        resource_group = self._resource_group(session, request.resource_group)
        with _azure_call("network_security_groups.list"):
            if resource_group:
                groups = list(client.network_security_groups.list(resource_group))
            else:
                groups = list(client.network_security_groups.list_all())
        items = [_to_security_group_info(g) for g in groups]
        if request.region:
            items = [g for g in items if g.region == request.region]
        return items

    def get(self, session: ProviderSession, request: GetSecurityGroupRequest) -> SecurityGroupInfo:
        resource_group = self._require_resource_group(
            session, request.resource_group, request.security_group_id
        )
        client = self._client(session)
        with _azure_call("network_security_groups.get"):
            nsg = client.network_security_groups.get(
                resource_group, _name_of(request.security_group_id)
            )
        return _to_security_group_info(nsg)

    def create(
        self, session: ProviderSession, request: CreateSecurityGroupRequest
    ) -> SecurityGroupInfo:
        resource_group = self._require_resource_group(session, request.resource_group)
        if not request.region:
            raise ValidationFailedError("region (location) is required for Azure network security groups")
        client = self._client(session)
        parameters = {
            "location": request.region,
            "tags": dict(request.tags),
            "security_rules": [
                _security_rule_body(rule, request.priority + idx * 10)
                for idx, rule in enumerate(request.rules)
            ],
        }
        with _azure_call("network_security_groups.begin_create_or_update"):
            nsg = client.network_security_groups.begin_create_or_update(
                resource_group, request.name, parameters
            ).result()
        return _to_security_group_info(nsg)

    def update(
        self, session: ProviderSession, request: UpdateSecurityGroupRequest
    ) -> SecurityGroupInfo:
        resource_group = self._require_resource_group(
            session, request.resource_group, request.security_group_id
        )
        name = _name_of(request.security_group_id)
        if request.name and request.name != name:
            raise ValidationFailedError("Azure network security groups cannot be renamed")
        if request.description is not None:
            raise ValidationFailedError("Azure network security groups have no description")
        client = self._client(session)
        if request.tags is None:
            with _azure_call("network_security_groups.get"):
                nsg = client.network_security_groups.get(resource_group, name)
        else:
            with _azure_call("network_security_groups.update_tags"):
                nsg = client.network_security_groups.update_tags(
                    resource_group, name, {"tags": dict(request.tags)}
                )
        return _to_security_group_info(nsg)

    def delete(self, session: ProviderSession, request: DeleteSecurityGroupRequest) -> None:
        resource_group = self._require_resource_group(
            session, request.resource_group, request.security_group_id
        )
        client = self._client(session)
        with _azure_call("network_security_groups.begin_delete"):
            client.network_security_groups.begin_delete(
                resource_group, _name_of(request.security_group_id)
            ).result()


def build_azure_handlers(client_factory: Callable = azure_network_client) -> ProviderHandlers:
    return ProviderHandlers(
        vpcs=AzureVPCHandler(client_factory),
        subnets=AzureSubnetHandler(client_factory),
        security_groups=AzureSecurityGroupHandler(client_factory),
    )
