"""
GCP (Compute Engine v1) handlers for networks, subnetworks and firewalls.

Every mutation returns a long-running operation that is handed to the
`OperationPoller`; global resources (networks, firewalls) use
``globalOperations`` and subnetworks use ``regionOperations``.

Identifiers
───────────
  VPC     : projects/{project}/global/networks/{name}
  Subnet  : projects/{project}/regions/{region}/subnetworks/{name}
  Firewall: the firewall name

Requests may pass either the full path or the bare name; the last path
segment is what the API is called with.

Network delete is a cascade: firewalls on the network, then its
subnetworks in every region, then a hard gate on instances still attached,
then the delete itself.
"""

import logging
from contextlib import contextmanager
from typing import Callable, Optional

from googleapiclient.errors import HttpError

from cloudnet.cloud.base import (
    ProviderHandlers,
    ProviderSession,
    SecurityGroupHandler,
    SubnetHandler,
    VPCHandler,
)
from cloudnet.cloud.clients import gcp_compute_client, gcp_project_id
from cloudnet.errors import (
    ConflictError,
    NetworkError,
    NotFoundError,
    ProviderError,
    ValidationFailedError,
)
from cloudnet.operations.poller import (
    OperationHandle,
    OperationPoller,
    OperationState,
    OperationStatus,
)
from cloudnet.schemas.common import PROVIDER_GCP, NetworkState
from cloudnet.schemas.security_group import (
    AddSecurityGroupRuleRequest,
    CreateSecurityGroupRequest,
    DeleteSecurityGroupRequest,
    GetSecurityGroupRequest,
    ListSecurityGroupsRequest,
    RemoveSecurityGroupRuleRequest,
    RuleDirection,
    SecurityGroupInfo,
    SecurityGroupRuleInfo,
    UpdateSecurityGroupRequest,
    UpdateSecurityGroupRulesRequest,
)
from cloudnet.schemas.subnet import (
    CreateSubnetRequest,
    DeleteSubnetRequest,
    GetSubnetRequest,
    ListSubnetsRequest,
    SubnetInfo,
    UpdateSubnetRequest,
)
from cloudnet.schemas.vpc import (
    CreateVPCRequest,
    DeleteVPCRequest,
    GatewayInfo,
    GetVPCRequest,
    ListVPCsRequest,
    VPCInfo,
)
from cloudnet.services.cascade import (
    CascadingDeleteOrchestrator,
    CleanupStep,
    DeleteGate,
    best_effort_delete,
)

logger = logging.getLogger(__name__)

DEFAULT_MTU = 1460
DEFAULT_ROUTING_MODE = "REGIONAL"


# ── Internal helpers ──────────────────────────────────────────────────────────

def _convert_http_error(exc: HttpError, operation: str) -> NetworkError:
    status = int(getattr(exc.resp, "status", 0) or 0)
    message = str(exc)
    lowered = message.lower()
    details = {"provider": PROVIDER_GCP, "operation": operation, "http_status": status}
    if status == 404 or "not found" in lowered:
        return NotFoundError(message, details)
    if status == 409 or "already exists" in lowered or "conflict" in lowered:
        return ConflictError(message, details)
    if "resourceinusebyanotherresource" in lowered or "being used by" in lowered:
        return ConflictError(message, details)
    if status == 400:
        return ValidationFailedError(message, details)
    return ProviderError(
        f"GCP {operation} failed: {message}",
        provider=PROVIDER_GCP,
        operation=operation,
        details={"http_status": status},
    )


@contextmanager
def _gcp_call(operation: str):
    try:
        yield
    except HttpError as exc:
        logger.error("GCP %s failed: %s", operation, exc)
        raise _convert_http_error(exc, operation) from exc


def _path_segments(path: str) -> dict[str, str]:
    """``.../projects/p/regions/r/subnetworks/s`` -> {"projects": "p", ...}."""
    if "projects/" in path:
        path = path[path.index("projects/"):]
    parts = [p for p in path.split("/") if p]
    return {parts[i]: parts[i + 1] for i in range(0, len(parts) - 1, 2)}


def _last_segment(value: str) -> str:
    return value.rstrip("/").rsplit("/", 1)[-1]


def _network_path(project: str, network: str) -> str:
    return f"projects/{project}/global/networks/{_last_segment(network)}"


def _same_network(url: str, project: str, network: str) -> bool:
    return bool(url) and url.endswith(_network_path(project, network))


def _relative(url: str) -> str:
    return url[url.index("projects/"):] if "projects/" in url else url


def _parse_port(port: Optional[str]) -> tuple[Optional[int], Optional[int]]:
    if not port:
        return None, None
    low, _, high = port.partition("-")
    return int(low), int(high or low)


def _port_string(rule: SecurityGroupRuleInfo) -> Optional[str]:
    if rule.from_port is None:
        return None
    if rule.to_port is None or rule.to_port == rule.from_port:
        return str(rule.from_port)
    return f"{rule.from_port}-{rule.to_port}"


def _list_pages(collection, key: str = "items", **kwargs) -> list:
    items: list = []
    request = collection.list(**kwargs)
    while request is not None:
        response = request.execute()
        items.extend(response.get(key, []))
        request = collection.list_next(previous_request=request, previous_response=response)
    return items


def _aggregated_pages(collection, key: str, **kwargs) -> list:
    items: list = []
    request = collection.aggregatedList(**kwargs)
    while request is not None:
        response = request.execute()
        for scoped in response.get("items", {}).values():
            items.extend(scoped.get(key, []))
        request = collection.aggregatedList_next(previous_request=request, previous_response=response)
    return items


def _operation_status(operation: dict) -> OperationStatus:
    status = operation.get("status", OperationState.PENDING.value)
    try:
        state = OperationState(status)
    except ValueError:
        state = OperationState.RUNNING
    error = operation.get("error")
    if state == OperationState.DONE and error:
        state = OperationState.DONE_WITH_ERROR
    return OperationStatus(state=state, error=error, raw=operation)


def _to_vpc_info(project: str, network: dict, firewall_count: Optional[int] = None) -> VPCInfo:
    name = network["name"]
    legacy = bool(network.get("IPv4Range"))
    if legacy:
        mode = "legacy"
    else:
        mode = "auto" if network.get("autoCreateSubnetworks") else "custom"
    gateway = None
    if network.get("gatewayIPv4"):
        gateway = GatewayInfo(type="internet", ip_address=network["gatewayIPv4"], name="default-internet-gateway")
    return VPCInfo(
        id=_network_path(project, name),
        name=name,
        state=NetworkState.ACTIVE,
        is_default=name == "default",
        region=None,
        cidr=network.get("IPv4Range"),
        description=network.get("description", ""),
        network_mode=mode,
        routing_mode=network.get("routingConfig", {}).get("routingMode"),
        mtu=network.get("mtu"),
        auto_subnets=network.get("autoCreateSubnetworks", False),
        firewall_rule_count=firewall_count,
        gateway=gateway,
        creation_timestamp=network.get("creationTimestamp"),
    )


def _to_subnet_info(project: str, subnet: dict) -> SubnetInfo:
    region = _last_segment(subnet.get("region", ""))
    log_config = subnet.get("logConfig") or {}
    return SubnetInfo(
        id=f"projects/{project}/regions/{region}/subnetworks/{subnet['name']}",
        name=subnet["name"],
        vpc_id=_relative(subnet.get("network", "")),
        cidr_block=subnet.get("ipCidrRange", ""),
        region=region,
        state=NetworkState.ACTIVE,
        is_public=False,
        description=subnet.get("description", ""),
        gateway_address=subnet.get("gatewayAddress"),
        private_ip_google_access=subnet.get("privateIpGoogleAccess", False),
        flow_logs=log_config.get("enable", subnet.get("enableFlowLogs", False)),
        creation_timestamp=subnet.get("creationTimestamp"),
    )


def _firewall_rules(firewall: dict) -> list[SecurityGroupRuleInfo]:
    direction = (
        RuleDirection.EGRESS if firewall.get("direction") == "EGRESS" else RuleDirection.INGRESS
    )
    ranges = firewall.get("destinationRanges" if direction == RuleDirection.EGRESS else "sourceRanges", [])
    rules = []
    for action in ("allowed", "denied"):
        for block in firewall.get(action, []):
            protocol = block.get("IPProtocol", "all")
            for port in block.get("ports") or [None]:
                from_port, to_port = _parse_port(port)
                rules.append(
                    SecurityGroupRuleInfo(
                        id=f"{firewall['name']}-{action}-{protocol}-{port or 'all'}",
                        type=direction,
                        protocol=protocol,
                        from_port=from_port,
                        to_port=to_port,
                        cidr_blocks=list(ranges),
                        source_groups=list(firewall.get("sourceTags", [])),
                        description="deny" if action == "denied" else "",
                    )
                )
    return rules


def _to_security_group_info(firewall: dict) -> SecurityGroupInfo:
    tags = {
        "priority": str(firewall.get("priority", 1000)),
        "direction": firewall.get("direction", "INGRESS"),
        "action": "deny" if firewall.get("denied") else "allow",
    }
    if firewall.get("targetTags"):
        tags["target_tags"] = ",".join(firewall["targetTags"])
    return SecurityGroupInfo(
        id=firewall["name"],
        name=firewall["name"],
        description=firewall.get("description", ""),
        vpc_id=_relative(firewall.get("network", "")),
        region=None,
        rules=_firewall_rules(firewall),
        creation_timestamp=firewall.get("creationTimestamp"),
        tags=tags,
    )


def _firewall_direction(firewall: dict) -> RuleDirection:
    return RuleDirection.EGRESS if firewall.get("direction") == "EGRESS" else RuleDirection.INGRESS


def _block_key(firewall: dict) -> str:
    return "denied" if firewall.get("denied") else "allowed"


def _ranges_key(firewall: dict) -> str:
    return "destinationRanges" if firewall.get("direction") == "EGRESS" else "sourceRanges"


def _merge_rule(blocks: list[dict], rule: SecurityGroupRuleInfo) -> None:
    """Merge one rule's protocol/port into ``allowed``/``denied`` blocks in place."""
    port = _port_string(rule)
    block = next((b for b in blocks if b.get("IPProtocol") == rule.protocol), None)
    if block is None:
        block = {"IPProtocol": rule.protocol}
        if port:
            block["ports"] = [port]
        blocks.append(block)
        return
    if "ports" not in block:
        # Already open on every port
        return
    if port is None:
        del block["ports"]
    elif port not in block["ports"]:
        block["ports"].append(port)


def _remove_rule(blocks: list[dict], rule: SecurityGroupRuleInfo) -> list[dict]:
    port = _port_string(rule)
    kept = []
    for block in blocks:
        if block.get("IPProtocol") != rule.protocol:
            kept.append(block)
            continue
        if port is None:
            continue
        ports = [p for p in block.get("ports", []) if p != port]
        if ports:
            kept.append({**block, "ports": ports})
    return kept


class _GCPHandler:
    provider = PROVIDER_GCP

    def __init__(
        self,
        poller: Optional[OperationPoller] = None,
        client_factory: Callable = gcp_compute_client,
    ) -> None:
        self._poller = poller or OperationPoller()
        self._client_factory = client_factory

    def _connect(self, session: ProviderSession):
        project = gcp_project_id(session.secrets)
        session.ctx.raise_if_cancelled()
        return self._client_factory(session.secrets), project

    def _wait(
        self,
        compute,
        project: str,
        session: ProviderSession,
        operation: dict,
        kind: str,
        target: str,
        region: Optional[str] = None,
    ) -> OperationStatus:
        handle = OperationHandle(name=operation["name"], kind=kind, target=target, region=region)

        def fetch(h: OperationHandle) -> OperationStatus:
            if h.region:
                op = compute.regionOperations().get(
                    project=project, region=h.region, operation=h.name
                ).execute()
            else:
                op = compute.globalOperations().get(project=project, operation=h.name).execute()
            return _operation_status(op)

        return self._poller.wait(handle, fetch, session.ctx, initial=_operation_status(operation))


# ── Networks ──────────────────────────────────────────────────────────────────

class GCPVPCHandler(_GCPHandler, VPCHandler):
    def __init__(
        self,
        poller: Optional[OperationPoller] = None,
        client_factory: Callable = gcp_compute_client,
        orchestrator: Optional[CascadingDeleteOrchestrator] = None,
    ) -> None:
        super().__init__(poller, client_factory)
        self._orchestrator = orchestrator or CascadingDeleteOrchestrator()

    def list_all(self, session: ProviderSession, request: ListVPCsRequest) -> list[VPCInfo]:
        compute, project = self._connect(session)
        with _gcp_call("networks.list"):
            networks = _list_pages(compute.networks(), project=project)
            firewalls = _list_pages(compute.firewalls(), project=project)
        counts: dict[str, int] = {}
        for fw in firewalls:
            name = _last_segment(fw.get("network", ""))
            counts[name] = counts.get(name, 0) + 1
        logger.info("Listed %d network(s) in project %s", len(networks), project)
        return [_to_vpc_info(project, n, counts.get(n["name"], 0)) for n in networks]

    def get(self, session: ProviderSession, request: GetVPCRequest) -> VPCInfo:
        compute, project = self._connect(session)
        name = _last_segment(request.vpc_id)
        with _gcp_call("networks.get"):
            network = compute.networks().get(project=project, network=name).execute()
            firewalls = _list_pages(compute.firewalls(), project=project)
        count = sum(1 for fw in firewalls if _same_network(fw.get("network", ""), project, name))
        return _to_vpc_info(project, network, count)

    def create(self, session: ProviderSession, request: CreateVPCRequest) -> VPCInfo:
        compute, project = self._connect(session)
        body = {
            "name": request.name,
            "description": request.description,
            "autoCreateSubnetworks": request.auto_create_subnets,
            "routingConfig": {"routingMode": request.routing_mode or DEFAULT_ROUTING_MODE},
            "mtu": request.mtu or DEFAULT_MTU,
        }
        logger.info("Creating GCP network %s in project %s", request.name, project)
        with _gcp_call("networks.insert"):
            operation = compute.networks().insert(project=project, body=body).execute()
        self._wait(compute, project, session, operation, "create", _network_path(project, request.name))
        return self.get(session, GetVPCRequest(vpc_id=request.name))

    def delete(self, session: ProviderSession, request: DeleteVPCRequest) -> None:
        compute, project = self._connect(session)
        name = _last_segment(request.vpc_id)
        target = _network_path(project, name)

        def delete_firewall(fw: dict) -> None:
            with _gcp_call("firewalls.delete"):
                op = compute.firewalls().delete(project=project, firewall=fw["name"]).execute()
            self._wait(compute, project, session, op, "delete", fw["name"])

        def delete_subnetwork(sn: dict) -> None:
            region = _last_segment(sn["region"])
            with _gcp_call("subnetworks.delete"):
                op = compute.subnetworks().delete(
                    project=project, region=region, subnetwork=sn["name"]
                ).execute()
            self._wait(compute, project, session, op, "delete", sn["name"], region=region)

        def delete_firewalls() -> int:
            with _gcp_call("firewalls.list"):
                firewalls = _list_pages(compute.firewalls(), project=project)
            return best_effort_delete(
                [fw for fw in firewalls if _same_network(fw.get("network", ""), project, name)],
                delete_firewall,
                lambda fw: f"firewall rule {fw['name']}",
            )

        def delete_subnetworks() -> int:
            with _gcp_call("subnetworks.aggregatedList"):
                subnets = _aggregated_pages(compute.subnetworks(), "subnetworks", project=project)
            return best_effort_delete(
                [sn for sn in subnets if _same_network(sn.get("network", ""), project, name)],
                delete_subnetwork,
                lambda sn: f"subnetwork {sn['name']}",
            )

        def attached_instances() -> list[str]:
            with _gcp_call("instances.aggregatedList"):
                instances = _aggregated_pages(compute.instances(), "instances", project=project)
            return [
                inst["name"]
                for inst in instances
                if any(
                    _same_network(nic.get("network", ""), project, name)
                    for nic in inst.get("networkInterfaces", [])
                )
            ]

        def delete_network() -> None:
            with _gcp_call("networks.delete"):
                op = compute.networks().delete(project=project, network=name).execute()
            self._wait(compute, project, session, op, "delete", target)

        self._orchestrator.run(
            target=target,
            stages=[
                CleanupStep("firewall-rules", delete_firewalls),
                CleanupStep("subnetworks", delete_subnetworks),
                DeleteGate(
                    name="instances",
                    find_blockers=attached_instances,
                    message="cannot delete VPC: instances are still using this network",
                ),
            ],
            delete=delete_network,
            ctx=session.ctx,
        )


# ── Subnetworks ───────────────────────────────────────────────────────────────

class GCPSubnetHandler(_GCPHandler, SubnetHandler):
    @staticmethod
    def _locate(subnet_id: str, region: Optional[str]) -> tuple[str, str]:
        region = region or _path_segments(subnet_id).get("regions")
        if not region:
            raise ValidationFailedError("region is required for GCP subnetworks")
        return region, _last_segment(subnet_id)

    def list_all(self, session: ProviderSession, request: ListSubnetsRequest) -> list[SubnetInfo]:
        compute, project = self._connect(session)
        with _gcp_call("subnetworks.list"):
            if request.region:
                subnets = _list_pages(compute.subnetworks(), project=project, region=request.region)
            else:
                subnets = _aggregated_pages(compute.subnetworks(), "subnetworks", project=project)
        if request.vpc_id:
            subnets = [
                sn for sn in subnets if _same_network(sn.get("network", ""), project, request.vpc_id)
            ]
        return [_to_subnet_info(project, sn) for sn in subnets]

    def get(self, session: ProviderSession, request: GetSubnetRequest) -> SubnetInfo:
        compute, project = self._connect(session)
        region, name = self._locate(request.subnet_id, request.region)
        with _gcp_call("subnetworks.get"):
            subnet = compute.subnetworks().get(project=project, region=region, subnetwork=name).execute()
        return _to_subnet_info(project, subnet)

    def create(self, session: ProviderSession, request: CreateSubnetRequest) -> SubnetInfo:
        if not request.region:
            raise ValidationFailedError("region is required for GCP subnetworks")
        compute, project = self._connect(session)
        body = {
            "name": request.name,
            "network": _network_path(project, request.vpc_id),
            "ipCidrRange": request.cidr_block,
            "description": request.description,
            "privateIpGoogleAccess": request.private_ip_google_access,
            "logConfig": {"enable": request.flow_logs},
        }
        logger.info("Creating GCP subnetwork %s (%s) in %s", request.name, request.cidr_block, request.region)
        with _gcp_call("subnetworks.insert"):
            operation = compute.subnetworks().insert(
                project=project, region=request.region, body=body
            ).execute()
        self._wait(compute, project, session, operation, "create", request.name, region=request.region)
        return self.get(session, GetSubnetRequest(subnet_id=request.name, region=request.region))

    def update(self, session: ProviderSession, request: UpdateSubnetRequest) -> SubnetInfo:
        if request.tags:
            raise ValidationFailedError("GCP subnetworks do not support tags")
        compute, project = self._connect(session)
        region, name = self._locate(request.subnet_id, request.region)
        if request.name and request.name != name:
            raise ValidationFailedError("GCP subnetworks cannot be renamed")

        with _gcp_call("subnetworks.get"):
            current = compute.subnetworks().get(project=project, region=region, subnetwork=name).execute()

        patch: dict = {}
        if request.description is not None:
            patch["description"] = request.description
        if request.flow_logs is not None:
            patch["logConfig"] = {"enable": request.flow_logs}
        if patch:
            patch["fingerprint"] = current.get("fingerprint")
            with _gcp_call("subnetworks.patch"):
                op = compute.subnetworks().patch(
                    project=project, region=region, subnetwork=name, body=patch
                ).execute()
            self._wait(compute, project, session, op, "update", name, region=region)

        if (
            request.private_ip_google_access is not None
            and request.private_ip_google_access != current.get("privateIpGoogleAccess", False)
        ):
            with _gcp_call("subnetworks.setPrivateIpGoogleAccess"):
                op = compute.subnetworks().setPrivateIpGoogleAccess(
                    project=project,
                    region=region,
                    subnetwork=name,
                    body={"privateIpGoogleAccess": request.private_ip_google_access},
                ).execute()
            self._wait(compute, project, session, op, "update", name, region=region)

        return self.get(session, GetSubnetRequest(subnet_id=name, region=region))

    def delete(self, session: ProviderSession, request: DeleteSubnetRequest) -> None:
        compute, project = self._connect(session)
        region, name = self._locate(request.subnet_id, request.region)
        with _gcp_call("subnetworks.delete"):
            op = compute.subnetworks().delete(project=project, region=region, subnetwork=name).execute()
        self._wait(compute, project, session, op, "delete", name, region=region)


# ── Firewalls ─────────────────────────────────────────────────────────────────

class GCPSecurityGroupHandler(_GCPHandler, SecurityGroupHandler):
    # firewalls.update swaps the whole allowed/denied set in one call
    atomic_rule_replacement = True

    def _fetch(self, compute, project: str, firewall: str) -> dict:
        with _gcp_call("firewalls.get"):
            return compute.firewalls().get(project=project, firewall=firewall).execute()

    def _update(self, compute, project: str, session: ProviderSession, firewall: dict) -> SecurityGroupInfo:
        with _gcp_call("firewalls.update"):
            op = compute.firewalls().update(
                project=project, firewall=firewall["name"], body=firewall
            ).execute()
        self._wait(compute, project, session, op, "update", firewall["name"])
        return _to_security_group_info(self._fetch(compute, project, firewall["name"]))

    @staticmethod
    def _check_direction(firewall: dict, rule: SecurityGroupRuleInfo) -> None:
        if rule.type != _firewall_direction(firewall):
            raise ValidationFailedError(
                f"firewall {firewall['name']} is {firewall.get('direction', 'INGRESS')}; "
                f"cannot apply a {rule.type.value} rule"
            )

    def list_all(
        self, session: ProviderSession, request: ListSecurityGroupsRequest
    ) -> list[SecurityGroupInfo]:
        compute, project = self._connect(session)
        with _gcp_call("firewalls.list"):
            firewalls = _list_pages(compute.firewalls(), project=project)
        if request.vpc_id:
            firewalls = [
                fw for fw in firewalls if _same_network(fw.get("network", ""), project, request.vpc_id)
            ]
        return [_to_security_group_info(fw) for fw in firewalls]

    def get(self, session: ProviderSession, request: GetSecurityGroupRequest) -> SecurityGroupInfo:
        compute, project = self._connect(session)
        return _to_security_group_info(
            self._fetch(compute, project, _last_segment(request.security_group_id))
        )

    def create(
        self, session: ProviderSession, request: CreateSecurityGroupRequest
    ) -> SecurityGroupInfo:
        if not request.vpc_id:
            raise ValidationFailedError("vpc_id is required for GCP firewall rules")
        compute, project = self._connect(session)
        direction = request.direction.upper()
        blocks = [
            {"IPProtocol": entry.protocol, **({"ports": list(entry.ports)} if entry.ports else {})}
            for entry in (request.denied if request.action == "deny" else request.allowed)
        ]
        if request.protocol:
            block = {"IPProtocol": request.protocol}
            if request.ports:
                block["ports"] = list(request.ports)
            blocks.append(block)
        for rule in request.rules:
            _merge_rule(blocks, rule)
        if not blocks:
            raise ValidationFailedError("at least one allowed or denied rule is required")

        body = {
            "name": request.name,
            "description": request.description,
            "network": _network_path(project, request.vpc_id),
            "direction": direction,
            "priority": request.priority,
            "denied" if request.action == "deny" else "allowed": blocks,
        }
        ranges = list(request.source_ranges) or sorted(
            {cidr for rule in request.rules for cidr in rule.cidr_blocks}
        )
        if ranges:
            body["destinationRanges" if direction == "EGRESS" else "sourceRanges"] = ranges
        if request.target_tags:
            body["targetTags"] = list(request.target_tags)

        logger.info("Creating GCP firewall %s on %s", request.name, request.vpc_id)
        with _gcp_call("firewalls.insert"):
            op = compute.firewalls().insert(project=project, body=body).execute()
        self._wait(compute, project, session, op, "create", request.name)
        return _to_security_group_info(self._fetch(compute, project, request.name))

    def update(
        self, session: ProviderSession, request: UpdateSecurityGroupRequest
    ) -> SecurityGroupInfo:
        if request.tags:
            raise ValidationFailedError("GCP firewall rules do not support tags")
        compute, project = self._connect(session)
        name = _last_segment(request.security_group_id)
        if request.name and request.name != name:
            raise ValidationFailedError("GCP firewall rules cannot be renamed")
        if request.description is None:
            return _to_security_group_info(self._fetch(compute, project, name))
        with _gcp_call("firewalls.patch"):
            op = compute.firewalls().patch(
                project=project, firewall=name, body={"description": request.description}
            ).execute()
        self._wait(compute, project, session, op, "update", name)
        return _to_security_group_info(self._fetch(compute, project, name))

    def delete(self, session: ProviderSession, request: DeleteSecurityGroupRequest) -> None:
        compute, project = self._connect(session)
        name = _last_segment(request.security_group_id)
        with _gcp_call("firewalls.delete"):
            op = compute.firewalls().delete(project=project, firewall=name).execute()
        self._wait(compute, project, session, op, "delete", name)

    def add_rule(
        self, session: ProviderSession, request: AddSecurityGroupRuleRequest
    ) -> SecurityGroupInfo:
        compute, project = self._connect(session)
        firewall = self._fetch(compute, project, _last_segment(request.security_group_id))
        self._check_direction(firewall, request.rule)

        key = _block_key(firewall)
        blocks = [dict(b) for b in firewall.get(key, [])]
        _merge_rule(blocks, request.rule)
        firewall[key] = blocks

        ranges_key = _ranges_key(firewall)
        ranges = list(firewall.get(ranges_key, []))
        ranges += [c for c in request.rule.cidr_blocks if c not in ranges]
        if ranges:
            firewall[ranges_key] = ranges
        return self._update(compute, project, session, firewall)

    def remove_rule(
        self, session: ProviderSession, request: RemoveSecurityGroupRuleRequest
    ) -> SecurityGroupInfo:
        compute, project = self._connect(session)
        firewall = self._fetch(compute, project, _last_segment(request.security_group_id))
        self._check_direction(firewall, request.rule)

        key = _block_key(firewall)
        blocks = _remove_rule(firewall.get(key, []), request.rule)
        if not blocks:
            raise ValidationFailedError(
                "cannot remove the last rule of a GCP firewall; delete the firewall instead"
            )
        firewall[key] = blocks
        return self._update(compute, project, session, firewall)

    def replace_rules(
        self, session: ProviderSession, request: UpdateSecurityGroupRulesRequest
    ) -> SecurityGroupInfo:
        compute, project = self._connect(session)
        firewall = self._fetch(compute, project, _last_segment(request.security_group_id))
        direction = _firewall_direction(firewall)
        wanted = request.ingress_rules if direction == RuleDirection.INGRESS else request.egress_rules
        other = request.egress_rules if direction == RuleDirection.INGRESS else request.ingress_rules
        if other:
            raise ValidationFailedError(
                f"firewall {firewall['name']} is {direction.value}; it cannot hold other rules"
            )
        if not wanted:
            raise ValidationFailedError("a GCP firewall needs at least one rule")

        blocks: list[dict] = []
        ranges: list[str] = []
        for rule in wanted:
            _merge_rule(blocks, rule)
            ranges += [c for c in rule.cidr_blocks if c not in ranges]
        firewall[_block_key(firewall)] = blocks
        if ranges:
            firewall[_ranges_key(firewall)] = ranges
        return self._update(compute, project, session, firewall)


def build_gcp_handlers(
    poller: Optional[OperationPoller] = None, client_factory: Callable = gcp_compute_client
) -> ProviderHandlers:
    return ProviderHandlers(
        vpcs=GCPVPCHandler(poller, client_factory),
        subnets=GCPSubnetHandler(poller, client_factory),
        security_groups=GCPSecurityGroupHandler(poller, client_factory),
    )
