"""
Resource dispatcher — routes unified network operations to provider handlers.

Read path
─────────
  cache hit  -> filter / sort / paginate
  cache miss -> decrypt credential -> provider handler -> cache the full,
                unfiltered result -> filter / sort / paginate

Write path
──────────
  decrypt credential -> provider handler -> invalidate cache (also when the
  handler raises) -> audit log entry + event (both non-fatal, success only)

The dispatcher never retries a failed provider call; error kinds raised by
handlers reach the caller unchanged.
"""

import logging
from typing import Callable, Optional, TypeVar

from pydantic import BaseModel

from cloudnet.cache.layer import (
    NetworkCache,
    compose_scope,
    item_key,
    item_prefix,
    list_key,
    list_prefix,
)
from cloudnet.cloud.base import ProviderHandlers, ProviderSession
from cloudnet.cloud.registry import ProviderRegistry
from cloudnet.context import RequestContext
from cloudnet.dao.audit import LoggingAuditLogRepository
from cloudnet.errors import FeatureNotImplementedError, ValidationFailedError
from cloudnet.schemas.common import ListQuery, ResourceKind, Verb
from cloudnet.schemas.credential import Credential
from cloudnet.schemas.events import (
    NetworkEvent,
    SecurityGroupEvent,
    SubnetEvent,
    VPCEvent,
    event_type_for,
)
from cloudnet.schemas.security_group import (
    AddSecurityGroupRuleRequest,
    CreateSecurityGroupRequest,
    DeleteSecurityGroupRequest,
    GetSecurityGroupRequest,
    ListSecurityGroupsRequest,
    RemoveSecurityGroupRuleRequest,
    SecurityGroupInfo,
    SecurityGroupListResponse,
    UpdateSecurityGroupRequest,
    UpdateSecurityGroupRulesRequest,
)
from cloudnet.schemas.subnet import (
    CreateSubnetRequest,
    DeleteSubnetRequest,
    GetSubnetRequest,
    ListSubnetsRequest,
    SubnetInfo,
    SubnetListResponse,
    UpdateSubnetRequest,
)
from cloudnet.schemas.vpc import (
    CreateVPCRequest,
    DeleteVPCRequest,
    GetVPCRequest,
    ListVPCsRequest,
    UpdateVPCRequest,
    VPCInfo,
    VPCListResponse,
)
from cloudnet.services.credentials import CredentialDecryptor
from cloudnet.services.side_effects import LoggingEventPublisher, SideEffectEmitter
from cloudnet.utils.listing import apply_list_query

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

_ROUTES: dict[tuple[ResourceKind, Verb], str] = {
    (ResourceKind.VPC, Verb.LIST): "list_vpcs",
    (ResourceKind.VPC, Verb.GET): "get_vpc",
    (ResourceKind.VPC, Verb.CREATE): "create_vpc",
    (ResourceKind.VPC, Verb.UPDATE): "update_vpc",
    (ResourceKind.VPC, Verb.DELETE): "delete_vpc",
    (ResourceKind.SUBNET, Verb.LIST): "list_subnets",
    (ResourceKind.SUBNET, Verb.GET): "get_subnet",
    (ResourceKind.SUBNET, Verb.CREATE): "create_subnet",
    (ResourceKind.SUBNET, Verb.UPDATE): "update_subnet",
    (ResourceKind.SUBNET, Verb.DELETE): "delete_subnet",
    (ResourceKind.SECURITY_GROUP, Verb.LIST): "list_security_groups",
    (ResourceKind.SECURITY_GROUP, Verb.GET): "get_security_group",
    (ResourceKind.SECURITY_GROUP, Verb.CREATE): "create_security_group",
    (ResourceKind.SECURITY_GROUP, Verb.UPDATE): "update_security_group",
    (ResourceKind.SECURITY_GROUP, Verb.DELETE): "delete_security_group",
    (ResourceKind.SECURITY_GROUP, Verb.ADD_RULE): "add_security_group_rule",
    (ResourceKind.SECURITY_GROUP, Verb.REMOVE_RULE): "remove_security_group_rule",
    (ResourceKind.SECURITY_GROUP, Verb.REPLACE_RULES): "update_security_group_rules",
}

# Cached kinds whose entries a mutation of the given kind can make stale
_AFFECTED: dict[tuple[ResourceKind, Verb], tuple[ResourceKind, ...]] = {
    # The cascade removes subnets and firewalls / security groups too
    (ResourceKind.VPC, Verb.DELETE): (
        ResourceKind.VPC, ResourceKind.SUBNET, ResourceKind.SECURITY_GROUP,
    ),
}

_PATH_SEGMENTS = {
    ResourceKind.VPC: "vpcs",
    ResourceKind.SUBNET: "subnets",
    ResourceKind.SECURITY_GROUP: "security-groups",
}


def _affected_kinds(kind: ResourceKind, verb: Verb) -> tuple[ResourceKind, ...]:
    if (kind, verb) in _AFFECTED:
        return _AFFECTED[(kind, verb)]
    if kind == ResourceKind.SECURITY_GROUP:
        # GCP network records carry a firewall rule count
        return (ResourceKind.SECURITY_GROUP, ResourceKind.VPC)
    return (kind,)


class NetworkDispatcher:
    def __init__(
        self,
        registry: ProviderRegistry,
        decryptor: CredentialDecryptor,
        cache: Optional[NetworkCache] = None,
        emitter: Optional[SideEffectEmitter] = None,
    ) -> None:
        self._registry = registry
        self._decryptor = decryptor
        self._cache = cache or NetworkCache(None)
        self._emitter = emitter or SideEffectEmitter(
            LoggingAuditLogRepository(), LoggingEventPublisher()
        )

    # ── Unified entry point ───────────────────────────────────────────────────

    def execute(
        self,
        kind,
        verb,
        provider: str,
        credential: Credential,
        request: BaseModel,
        ctx: Optional[RequestContext] = None,
    ):
        """
        Run *verb* on a *kind* resource at *provider*.

        Raises
        ------
        NotSupportedError
            *provider* is not registered.
        FeatureNotImplementedError
            The provider is registered but the verb is not built for it, or
            the verb does not apply to the resource kind.
        ValidationFailedError
            Unknown kind/verb, or the credential belongs to another provider.
        """
        try:
            kind, verb = ResourceKind(kind), Verb(verb)
        except ValueError as exc:
            raise ValidationFailedError(str(exc)) from exc

        self._registry.get(provider)
        if credential.provider != provider:
            raise ValidationFailedError(
                f"Credential '{credential.id}' belongs to provider {credential.provider}, not {provider}"
            )

        method_name = _ROUTES.get((kind, verb))
        if method_name is None:
            raise FeatureNotImplementedError(
                f"{verb.value} is not available for {kind.value} resources",
                details={"provider": provider, "verb": verb.value},
            )
        return getattr(self, method_name)(credential, request, ctx)

    # ── VPCs ──────────────────────────────────────────────────────────────────

    def list_vpcs(
        self, credential: Credential, request: ListVPCsRequest, ctx: Optional[RequestContext] = None
    ) -> VPCListResponse:
        items = self._read_list(
            ResourceKind.VPC, credential, compose_scope(request.region, request.resource_group),
            VPCInfo, lambda h, s: h.vpcs.list_all(s, request), ctx,
        )
        page, total, page_no, limit = self._page(ResourceKind.VPC, items, request)
        return VPCListResponse(items=page, total=total, page=page_no, limit=limit)

    def get_vpc(
        self, credential: Credential, request: GetVPCRequest, ctx: Optional[RequestContext] = None
    ) -> VPCInfo:
        return self._read_item(
            ResourceKind.VPC, credential,
            compose_scope(request.vpc_id, request.region, request.resource_group),
            VPCInfo, lambda h, s: h.vpcs.get(s, request), ctx,
        )

    def create_vpc(
        self, credential: Credential, request: CreateVPCRequest, ctx: Optional[RequestContext] = None
    ) -> VPCInfo:
        ctx = ctx or RequestContext()
        vpc = self._mutate(ResourceKind.VPC, Verb.CREATE, credential, ctx,
                           lambda h, s: h.vpcs.create(s, request))
        self._emit_vpc(Verb.CREATE, credential, ctx, vpc.id, vpc.name, vpc.region or request.region)
        return vpc

    def update_vpc(
        self, credential: Credential, request: UpdateVPCRequest, ctx: Optional[RequestContext] = None
    ) -> VPCInfo:
        ctx = ctx or RequestContext()
        vpc = self._mutate(ResourceKind.VPC, Verb.UPDATE, credential, ctx,
                           lambda h, s: h.vpcs.update(s, request))
        self._emit_vpc(Verb.UPDATE, credential, ctx, vpc.id, vpc.name, vpc.region or request.region)
        return vpc

    def delete_vpc(
        self, credential: Credential, request: DeleteVPCRequest, ctx: Optional[RequestContext] = None
    ) -> None:
        ctx = ctx or RequestContext()
        self._mutate(ResourceKind.VPC, Verb.DELETE, credential, ctx,
                     lambda h, s: h.vpcs.delete(s, request))
        self._emit_vpc(Verb.DELETE, credential, ctx, request.vpc_id, None, request.region)

    # ── Subnets ───────────────────────────────────────────────────────────────

    def list_subnets(
        self, credential: Credential, request: ListSubnetsRequest, ctx: Optional[RequestContext] = None
    ) -> SubnetListResponse:
        items = self._read_list(
            ResourceKind.SUBNET, credential,
            compose_scope(request.vpc_id, request.region, request.resource_group),
            SubnetInfo, lambda h, s: h.subnets.list_all(s, request), ctx,
        )
        page, total, page_no, limit = self._page(ResourceKind.SUBNET, items, request)
        return SubnetListResponse(items=page, total=total, page=page_no, limit=limit)

    def get_subnet(
        self, credential: Credential, request: GetSubnetRequest, ctx: Optional[RequestContext] = None
    ) -> SubnetInfo:
        return self._read_item(
            ResourceKind.SUBNET, credential,
            compose_scope(request.subnet_id, request.region, request.resource_group),
            SubnetInfo, lambda h, s: h.subnets.get(s, request), ctx,
        )

    def create_subnet(
        self, credential: Credential, request: CreateSubnetRequest, ctx: Optional[RequestContext] = None
    ) -> SubnetInfo:
        ctx = ctx or RequestContext()
        subnet = self._mutate(ResourceKind.SUBNET, Verb.CREATE, credential, ctx,
                              lambda h, s: h.subnets.create(s, request))
        self._emit_subnet(Verb.CREATE, credential, ctx, subnet, request.region)
        return subnet

    def update_subnet(
        self, credential: Credential, request: UpdateSubnetRequest, ctx: Optional[RequestContext] = None
    ) -> SubnetInfo:
        ctx = ctx or RequestContext()
        subnet = self._mutate(ResourceKind.SUBNET, Verb.UPDATE, credential, ctx,
                              lambda h, s: h.subnets.update(s, request))
        self._emit_subnet(Verb.UPDATE, credential, ctx, subnet, request.region)
        return subnet

    def delete_subnet(
        self, credential: Credential, request: DeleteSubnetRequest, ctx: Optional[RequestContext] = None
    ) -> None:
        ctx = ctx or RequestContext()
        self._mutate(ResourceKind.SUBNET, Verb.DELETE, credential, ctx,
                     lambda h, s: h.subnets.delete(s, request))
        event = SubnetEvent(
            **self._event_fields(ResourceKind.SUBNET, Verb.DELETE, credential, ctx, request.region),
            subnet_id=request.subnet_id,
            vpc_id=request.vpc_id,
        )
        self._emit(ResourceKind.SUBNET, Verb.DELETE, event, request.subnet_id)

    # ── Security groups ───────────────────────────────────────────────────────

    def list_security_groups(
        self,
        credential: Credential,
        request: ListSecurityGroupsRequest,
        ctx: Optional[RequestContext] = None,
    ) -> SecurityGroupListResponse:
        items = self._read_list(
            ResourceKind.SECURITY_GROUP, credential,
            compose_scope(request.region, request.vpc_id, request.resource_group),
            SecurityGroupInfo, lambda h, s: h.security_groups.list_all(s, request), ctx,
        )
        page, total, page_no, limit = self._page(ResourceKind.SECURITY_GROUP, items, request)
        return SecurityGroupListResponse(items=page, total=total, page=page_no, limit=limit)

    def get_security_group(
        self,
        credential: Credential,
        request: GetSecurityGroupRequest,
        ctx: Optional[RequestContext] = None,
    ) -> SecurityGroupInfo:
        return self._read_item(
            ResourceKind.SECURITY_GROUP, credential,
            compose_scope(request.security_group_id, request.region, request.resource_group),
            SecurityGroupInfo, lambda h, s: h.security_groups.get(s, request), ctx,
        )

    def create_security_group(
        self,
        credential: Credential,
        request: CreateSecurityGroupRequest,
        ctx: Optional[RequestContext] = None,
    ) -> SecurityGroupInfo:
        return self._mutate_security_group(
            Verb.CREATE, credential, ctx, request.region,
            lambda h, s: h.security_groups.create(s, request),
        )

    def update_security_group(
        self,
        credential: Credential,
        request: UpdateSecurityGroupRequest,
        ctx: Optional[RequestContext] = None,
    ) -> SecurityGroupInfo:
        return self._mutate_security_group(
            Verb.UPDATE, credential, ctx, request.region,
            lambda h, s: h.security_groups.update(s, request),
        )

    def delete_security_group(
        self,
        credential: Credential,
        request: DeleteSecurityGroupRequest,
        ctx: Optional[RequestContext] = None,
    ) -> None:
        ctx = ctx or RequestContext()
        self._mutate(ResourceKind.SECURITY_GROUP, Verb.DELETE, credential, ctx,
                     lambda h, s: h.security_groups.delete(s, request))
        event = SecurityGroupEvent(
            **self._event_fields(ResourceKind.SECURITY_GROUP, Verb.DELETE, credential, ctx, request.region),
            security_group_id=request.security_group_id,
        )
        self._emit(ResourceKind.SECURITY_GROUP, Verb.DELETE, event, request.security_group_id)

    def add_security_group_rule(
        self,
        credential: Credential,
        request: AddSecurityGroupRuleRequest,
        ctx: Optional[RequestContext] = None,
    ) -> SecurityGroupInfo:
        return self._mutate_security_group(
            Verb.ADD_RULE, credential, ctx, request.region,
            lambda h, s: h.security_groups.add_rule(s, request),
        )

    def remove_security_group_rule(
        self,
        credential: Credential,
        request: RemoveSecurityGroupRuleRequest,
        ctx: Optional[RequestContext] = None,
    ) -> SecurityGroupInfo:
        return self._mutate_security_group(
            Verb.REMOVE_RULE, credential, ctx, request.region,
            lambda h, s: h.security_groups.remove_rule(s, request),
        )

    def update_security_group_rules(
        self,
        credential: Credential,
        request: UpdateSecurityGroupRulesRequest,
        ctx: Optional[RequestContext] = None,
    ) -> SecurityGroupInfo:
        def replace(handlers: ProviderHandlers, session: ProviderSession) -> SecurityGroupInfo:
            if not handlers.security_groups.atomic_rule_replacement:
                logger.info(
                    "Replacing rules of %s on %s by remove-then-add; not atomic",
                    request.security_group_id, credential.provider,
                )
            return handlers.security_groups.replace_rules(session, request)

        return self._mutate_security_group(
            Verb.REPLACE_RULES, credential, ctx, request.region, replace
        )

    # ── Internal helpers ──────────────────────────────────────────────────────

    def _session(self, credential: Credential, ctx: RequestContext) -> ProviderSession:
        ctx.raise_if_cancelled()
        secrets = self._decryptor.decrypt(credential.encrypted_data)
        return ProviderSession(
            provider=credential.provider, credential_id=credential.id, secrets=secrets, ctx=ctx
        )

    def _read_list(
        self,
        kind: ResourceKind,
        credential: Credential,
        scope: str,
        model: type[M],
        fetch: Callable[[ProviderHandlers, ProviderSession], list[M]],
        ctx: Optional[RequestContext],
    ) -> list[M]:
        handlers = self._registry.get(credential.provider)
        key = list_key(kind, credential.provider, credential.id, scope)
        items, hit = self._cache.get_list(key, model)
        if hit:
            return items
        items = fetch(handlers, self._session(credential, ctx or RequestContext()))
        self._cache.set_list(key, items)
        return items

    def _read_item(
        self,
        kind: ResourceKind,
        credential: Credential,
        scope: str,
        model: type[M],
        fetch: Callable[[ProviderHandlers, ProviderSession], M],
        ctx: Optional[RequestContext],
    ) -> M:
        handlers = self._registry.get(credential.provider)
        key = item_key(kind, credential.provider, credential.id, scope)
        item, hit = self._cache.get_item(key, model)
        if hit:
            return item
        item = fetch(handlers, self._session(credential, ctx or RequestContext()))
        self._cache.set_item(key, item)
        return item

    @staticmethod
    def _page(kind: ResourceKind, items: list, query: ListQuery) -> tuple[list, int, int, int]:
        return apply_list_query(items, kind, query)

    def _mutate(self, kind, verb, credential, ctx, call):
        handlers = self._registry.get(credential.provider)
        session = self._session(credential, ctx)
        try:
            result = call(handlers, session)
        finally:
            # A failed write may already have changed provider state
            for affected in _affected_kinds(kind, verb):
                self._cache.invalidate_prefix(list_prefix(affected, credential.provider, credential.id))
                self._cache.invalidate_prefix(item_prefix(affected, credential.provider, credential.id))
        logger.info(
            "%s %s on %s succeeded (credential=%s, actor=%s)",
            verb.value, kind.value, credential.provider, credential.id, ctx.actor,
        )
        return result

    def _mutate_security_group(self, verb, credential, ctx, region, call) -> SecurityGroupInfo:
        ctx = ctx or RequestContext()
        group = self._mutate(ResourceKind.SECURITY_GROUP, verb, credential, ctx, call)
        event = SecurityGroupEvent(
            **self._event_fields(
                ResourceKind.SECURITY_GROUP, verb, credential, ctx, group.region or region, group.name
            ),
            security_group_id=group.id,
            vpc_id=group.vpc_id or None,
            rule_count=len(group.rules),
        )
        self._emit(ResourceKind.SECURITY_GROUP, verb, event, group.id)
        return group

    def _emit_vpc(self, verb, credential, ctx, vpc_id, name, region) -> None:
        event = VPCEvent(
            **self._event_fields(ResourceKind.VPC, verb, credential, ctx, region, name),
            vpc_id=vpc_id,
        )
        self._emit(ResourceKind.VPC, verb, event, vpc_id)

    def _emit_subnet(self, verb, credential, ctx, subnet: SubnetInfo, region) -> None:
        event = SubnetEvent(
            **self._event_fields(
                ResourceKind.SUBNET, verb, credential, ctx, subnet.region or region, subnet.name
            ),
            subnet_id=subnet.id,
            vpc_id=subnet.vpc_id or None,
            cidr_block=subnet.cidr_block or None,
        )
        self._emit(ResourceKind.SUBNET, verb, event, subnet.id)

    @staticmethod
    def _event_fields(kind, verb, credential, ctx, region, name=None) -> dict:
        return {
            "event_type": event_type_for(kind, credential.provider, verb),
            "provider": credential.provider,
            "credential_id": credential.id,
            "actor": ctx.actor,
            "request_id": ctx.request_id,
            "region": region,
            "name": name,
        }

    def _emit(self, kind: ResourceKind, verb: Verb, event: NetworkEvent, resource_id: str) -> None:
        resource_path = f"/networks/{event.provider}/{_PATH_SEGMENTS[kind]}/{resource_id}"
        self._emitter.emit(event, verb.value, resource_path)
