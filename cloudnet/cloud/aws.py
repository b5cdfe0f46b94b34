"""
AWS (EC2) handlers for VPCs, subnets and security groups.

EC2 is synchronous, so nothing here engages the operation poller.  VPC
deletion runs through the cascade orchestrator with a single gate, refusing
while any network interface in the VPC is attached to an instance, and then
DeleteVpc.  Subnets, security groups and gateways are left to the caller;
EC2 answers DependencyViolation while they remain, surfaced as a conflict.

Security-group rule replacement is remove-all then add-all; EC2 has no call
that swaps a whole rule set.
"""

import logging
from contextlib import contextmanager
from typing import Callable, Optional

from botocore.exceptions import ClientError

from cloudnet.cloud.base import (
    ProviderHandlers,
    ProviderSession,
    RemoveThenAddRuleReplacement,
    SecurityGroupHandler,
    SubnetHandler,
    VPCHandler,
)
from cloudnet.cloud.clients import ec2_client, validate_aws_region
from cloudnet.errors import (
    ConflictError,
    NetworkError,
    NotFoundError,
    ProviderError,
    ValidationFailedError,
)
from cloudnet.schemas.common import PROVIDER_AWS, NetworkState
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
    GetVPCRequest,
    ListVPCsRequest,
    UpdateVPCRequest,
    VPCInfo,
)
from cloudnet.services.cascade import CascadingDeleteOrchestrator, DeleteGate

logger = logging.getLogger(__name__)

_STATE_MAP = {
    "pending": NetworkState.CREATING,
    "available": NetworkState.ACTIVE,
}

_CONFLICT_CODES = {
    "DependencyViolation",
    "InvalidPermission.Duplicate",
    "InvalidGroup.Duplicate",
    "InvalidGroup.InUse",
    "InvalidSubnet.Conflict",
}

_VALIDATION_CODES = {
    "InvalidParameterValue",
    "InvalidParameterCombination",
    "InvalidParameter",
    "MissingParameter",
    "InvalidVpc.Range",
    "InvalidSubnet.Range",
}


# ── Internal helpers ──────────────────────────────────────────────────────────

def _convert_client_error(exc: ClientError, operation: str) -> NetworkError:
    error = exc.response.get("Error", {})
    code = error.get("Code", "")
    message = error.get("Message", str(exc))
    details = {"provider": PROVIDER_AWS, "operation": operation, "aws_code": code}
    if code.endswith(".NotFound"):
        return NotFoundError(message, details)
    if code in _CONFLICT_CODES:
        return ConflictError(message, details)
    if code in _VALIDATION_CODES:
        return ValidationFailedError(message, details)
    return ProviderError(
        f"AWS {operation} failed: {code}: {message}",
        provider=PROVIDER_AWS,
        operation=operation,
        details={"aws_code": code},
    )


@contextmanager
def _aws_call(operation: str):
    try:
        yield
    except ClientError as exc:
        logger.error("AWS %s failed: %s", operation, exc)
        raise _convert_client_error(exc, operation) from exc


def _paginate(call, key: str, **kwargs) -> list:
    """Follow ``NextToken`` until the listing is exhausted."""
    response = call(**kwargs)
    items = list(response.get(key, []))
    while response.get("NextToken"):
        response = call(NextToken=response["NextToken"], **kwargs)
        items.extend(response.get(key, []))
    return items


def _tag_specs(resource_type: str, name: str, extra_tags: dict) -> list:
    """Build a TagSpecifications list understood by the EC2 API."""
    tags = [{"Key": "Name", "Value": name}]
    tags += [{"Key": k, "Value": v} for k, v in extra_tags.items() if k != "Name"]
    return [{"ResourceType": resource_type, "Tags": tags}]


def _tags_to_dict(tags: Optional[list]) -> dict[str, str]:
    return {t["Key"]: t["Value"] for t in tags or []}


def _name_from_tags(tags: Optional[list], default: str) -> str:
    return next((t["Value"] for t in tags or [] if t["Key"] == "Name"), default)


def _tag_update(name: Optional[str], tags: Optional[dict]) -> list:
    update = [{"Key": k, "Value": v} for k, v in (tags or {}).items()]
    if name:
        update = [t for t in update if t["Key"] != "Name"]
        update.append({"Key": "Name", "Value": name})
    return update


def _to_vpc_info(vpc: dict, region: str) -> VPCInfo:
    tags = vpc.get("Tags", [])
    return VPCInfo(
        id=vpc["VpcId"],
        name=_name_from_tags(tags, ""),
        state=_STATE_MAP.get(vpc.get("State", ""), NetworkState.ACTIVE),
        is_default=vpc.get("IsDefault", False),
        region=region,
        cidr=vpc.get("CidrBlock"),
        description=_tags_to_dict(tags).get("Description", ""),
        tags=_tags_to_dict(tags),
    )


def _to_subnet_info(subnet: dict, region: str, is_public: bool) -> SubnetInfo:
    tags = subnet.get("Tags", [])
    return SubnetInfo(
        id=subnet["SubnetId"],
        name=_name_from_tags(tags, ""),
        vpc_id=subnet.get("VpcId", ""),
        cidr_block=subnet.get("CidrBlock", ""),
        availability_zone=subnet.get("AvailabilityZone"),
        region=region,
        state=_STATE_MAP.get(subnet.get("State", ""), NetworkState.ACTIVE),
        is_public=is_public,
        description=_tags_to_dict(tags).get("Description", ""),
        tags=_tags_to_dict(tags),
    )


def _to_rules(permissions: list, direction: RuleDirection) -> list[SecurityGroupRuleInfo]:
    rules = []
    for perm in permissions:
        ranges = perm.get("IpRanges", [])
        protocol = perm.get("IpProtocol", "-1")
        from_port, to_port = perm.get("FromPort"), perm.get("ToPort")
        rules.append(
            SecurityGroupRuleInfo(
                id=f"{direction.value}-{protocol}-{from_port}-{to_port}",
                type=direction,
                protocol=protocol,
                from_port=from_port,
                to_port=to_port,
                cidr_blocks=[r["CidrIp"] for r in ranges],
                source_groups=[p["GroupId"] for p in perm.get("UserIdGroupPairs", [])],
                description=next((r["Description"] for r in ranges if r.get("Description")), ""),
            )
        )
    return rules


def _to_security_group_info(group: dict, region: str) -> SecurityGroupInfo:
    return SecurityGroupInfo(
        id=group["GroupId"],
        name=group.get("GroupName", ""),
        description=group.get("Description", ""),
        vpc_id=group.get("VpcId", ""),
        region=region,
        rules=_to_rules(group.get("IpPermissions", []), RuleDirection.INGRESS)
        + _to_rules(group.get("IpPermissionsEgress", []), RuleDirection.EGRESS),
        tags=_tags_to_dict(group.get("Tags", [])),
    )


def _ip_permission(rule: SecurityGroupRuleInfo) -> dict:
    perm: dict = {"IpProtocol": rule.protocol}
    if rule.protocol != "-1":
        if rule.from_port is not None:
            perm["FromPort"] = rule.from_port
        if rule.to_port is not None:
            perm["ToPort"] = rule.to_port
    ip_ranges = []
    for cidr in rule.cidr_blocks:
        entry = {"CidrIp": cidr}
        if rule.description:
            entry["Description"] = rule.description
        ip_ranges.append(entry)
    if ip_ranges:
        perm["IpRanges"] = ip_ranges
    if rule.source_groups:
        perm["UserIdGroupPairs"] = [{"GroupId": g} for g in rule.source_groups]
    return perm


def _route_table_visibility(ec2, vpc_ids: list[str]) -> dict:
    """
    Collect which subnets route to an internet gateway.

    A subnet is public when its route table (explicit association, or the
    VPC's main table otherwise) has a route to an ``igw-`` gateway.
    """
    filters = [{"Name": "vpc-id", "Values": vpc_ids}] if vpc_ids else []
    tables = _paginate(ec2.describe_route_tables, "RouteTables", Filters=filters)
    explicit: dict[str, bool] = {}
    main_public: dict[str, bool] = {}
    for table in tables:
        public = any(
            r.get("GatewayId", "").startswith("igw-") for r in table.get("Routes", [])
        )
        for assoc in table.get("Associations", []):
            if assoc.get("Main"):
                main_public[table.get("VpcId", "")] = public
            elif assoc.get("SubnetId"):
                explicit[assoc["SubnetId"]] = public
    return {"explicit": explicit, "main": main_public}


def _is_public(subnet: dict, routes: dict) -> bool:
    if subnet["SubnetId"] in routes["explicit"]:
        return routes["explicit"][subnet["SubnetId"]]
    return routes["main"].get(subnet.get("VpcId", ""), False)


class _AWSHandler:
    provider = PROVIDER_AWS

    def __init__(self, client_factory: Callable = ec2_client) -> None:
        self._client_factory = client_factory

    def _client(self, session: ProviderSession, region: Optional[str]):
        session.ctx.raise_if_cancelled()
        return self._client_factory(session.secrets, validate_aws_region(region))


# ── VPCs ──────────────────────────────────────────────────────────────────────

class AWSVPCHandler(_AWSHandler, VPCHandler):
    def __init__(
        self,
        client_factory: Callable = ec2_client,
        orchestrator: Optional[CascadingDeleteOrchestrator] = None,
    ) -> None:
        super().__init__(client_factory)
        self._orchestrator = orchestrator or CascadingDeleteOrchestrator()

    def list_all(self, session: ProviderSession, request: ListVPCsRequest) -> list[VPCInfo]:
        ec2 = self._client(session, request.region)
        with _aws_call("DescribeVpcs"):
            vpcs = _paginate(ec2.describe_vpcs, "Vpcs")
        logger.info("Listed %d VPC(s) in %s", len(vpcs), request.region)
        return [_to_vpc_info(v, request.region) for v in vpcs]

    def get(self, session: ProviderSession, request: GetVPCRequest) -> VPCInfo:
        ec2 = self._client(session, request.region)
        with _aws_call("DescribeVpcs"):
            vpcs = ec2.describe_vpcs(VpcIds=[request.vpc_id]).get("Vpcs", [])
        if not vpcs:
            raise NotFoundError(f"VPC '{request.vpc_id}' not found")
        return _to_vpc_info(vpcs[0], request.region)

    def create(self, session: ProviderSession, request: CreateVPCRequest) -> VPCInfo:
        if not request.cidr_block:
            raise ValidationFailedError("cidr_block is required for AWS VPCs")
        ec2 = self._client(session, request.region)
        tags = dict(request.tags)
        if request.description:
            tags["Description"] = request.description

        logger.info("Creating VPC %s with CIDR %s in %s", request.name, request.cidr_block, request.region)
        with _aws_call("CreateVpc"):
            vpc = ec2.create_vpc(
                CidrBlock=request.cidr_block,
                TagSpecifications=_tag_specs("vpc", request.name, tags),
            )["Vpc"]
        vpc_id = vpc["VpcId"]

        with _aws_call("ModifyVpcAttribute"):
            ec2.modify_vpc_attribute(VpcId=vpc_id, EnableDnsHostnames={"Value": True})
            ec2.modify_vpc_attribute(VpcId=vpc_id, EnableDnsSupport={"Value": True})
        logger.info("VPC created: %s", vpc_id)

        vpc.setdefault("Tags", _tag_specs("vpc", request.name, tags)[0]["Tags"])
        return _to_vpc_info(vpc, request.region)

    def update(self, session: ProviderSession, request: UpdateVPCRequest) -> VPCInfo:
        ec2 = self._client(session, request.region)
        tags = dict(request.tags or {})
        if request.description is not None:
            tags["Description"] = request.description
        update = _tag_update(request.name, tags)
        if update:
            with _aws_call("CreateTags"):
                ec2.create_tags(Resources=[request.vpc_id], Tags=update)
        return self.get(session, GetVPCRequest(vpc_id=request.vpc_id, region=request.region))

    def delete(self, session: ProviderSession, request: DeleteVPCRequest) -> None:
        ec2 = self._client(session, request.region)
        vpc_id = request.vpc_id
        vpc_filter = [{"Name": "vpc-id", "Values": [vpc_id]}]

        def attached_instances() -> list[str]:
            with _aws_call("DescribeNetworkInterfaces"):
                enis = _paginate(ec2.describe_network_interfaces, "NetworkInterfaces", Filters=vpc_filter)
            return [
                f"{eni['NetworkInterfaceId']} ({eni['Attachment']['InstanceId']})"
                for eni in enis
                if eni.get("Attachment", {}).get("InstanceId")
            ]

        def delete_vpc() -> None:
            with _aws_call("DeleteVpc"):
                ec2.delete_vpc(VpcId=vpc_id)

        self._orchestrator.run(
            target=f"aws vpc {vpc_id}",
            stages=[
                DeleteGate(
                    name="attached-instances",
                    find_blockers=attached_instances,
                    message="cannot delete VPC: instances are still using this network",
                ),
            ],
            delete=delete_vpc,
            ctx=session.ctx,
        )


# ── Subnets ───────────────────────────────────────────────────────────────────

class AWSSubnetHandler(_AWSHandler, SubnetHandler):
    def list_all(self, session: ProviderSession, request: ListSubnetsRequest) -> list[SubnetInfo]:
        ec2 = self._client(session, request.region)
        filters = [{"Name": "vpc-id", "Values": [request.vpc_id]}] if request.vpc_id else []
        with _aws_call("DescribeSubnets"):
            subnets = _paginate(ec2.describe_subnets, "Subnets", Filters=filters)
            routes = _route_table_visibility(ec2, [request.vpc_id] if request.vpc_id else [])
        return [_to_subnet_info(s, request.region, _is_public(s, routes)) for s in subnets]

    def get(self, session: ProviderSession, request: GetSubnetRequest) -> SubnetInfo:
        ec2 = self._client(session, request.region)
        with _aws_call("DescribeSubnets"):
            subnets = ec2.describe_subnets(SubnetIds=[request.subnet_id]).get("Subnets", [])
            if not subnets:
                raise NotFoundError(f"Subnet '{request.subnet_id}' not found")
            routes = _route_table_visibility(ec2, [subnets[0]["VpcId"]])
        return _to_subnet_info(subnets[0], request.region, _is_public(subnets[0], routes))

    def create(self, session: ProviderSession, request: CreateSubnetRequest) -> SubnetInfo:
        ec2 = self._client(session, request.region)
        tags = dict(request.tags)
        if request.description:
            tags["Description"] = request.description
        kwargs = {
            "VpcId": request.vpc_id,
            "CidrBlock": request.cidr_block,
            "TagSpecifications": _tag_specs("subnet", request.name, tags),
        }
        if request.availability_zone:
            kwargs["AvailabilityZone"] = request.availability_zone

        logger.info("Creating subnet %s in %s", request.cidr_block, request.vpc_id)
        with _aws_call("CreateSubnet"):
            subnet = ec2.create_subnet(**kwargs)["Subnet"]
        logger.info("Subnet created: %s", subnet["SubnetId"])
        subnet.setdefault("Tags", kwargs["TagSpecifications"][0]["Tags"])
        return _to_subnet_info(subnet, request.region, False)

    def update(self, session: ProviderSession, request: UpdateSubnetRequest) -> SubnetInfo:
        ec2 = self._client(session, request.region)
        tags = dict(request.tags or {})
        if request.description is not None:
            tags["Description"] = request.description
        update = _tag_update(request.name, tags)
        if update:
            with _aws_call("CreateTags"):
                ec2.create_tags(Resources=[request.subnet_id], Tags=update)
        return self.get(
            session, GetSubnetRequest(subnet_id=request.subnet_id, region=request.region)
        )

    def delete(self, session: ProviderSession, request: DeleteSubnetRequest) -> None:
        ec2 = self._client(session, request.region)
        with _aws_call("DeleteSubnet"):
            ec2.delete_subnet(SubnetId=request.subnet_id)
        logger.info("Deleted subnet %s", request.subnet_id)


# ── Security groups ───────────────────────────────────────────────────────────

class AWSSecurityGroupHandler(_AWSHandler, RemoveThenAddRuleReplacement, SecurityGroupHandler):
    def list_all(
        self, session: ProviderSession, request: ListSecurityGroupsRequest
    ) -> list[SecurityGroupInfo]:
        ec2 = self._client(session, request.region)
        filters = [{"Name": "vpc-id", "Values": [request.vpc_id]}] if request.vpc_id else []
        with _aws_call("DescribeSecurityGroups"):
            groups = _paginate(ec2.describe_security_groups, "SecurityGroups", Filters=filters)
        return [_to_security_group_info(g, request.region) for g in groups]

    def get(self, session: ProviderSession, request: GetSecurityGroupRequest) -> SecurityGroupInfo:
        ec2 = self._client(session, request.region)
        with _aws_call("DescribeSecurityGroups"):
            groups = ec2.describe_security_groups(
                GroupIds=[request.security_group_id]
            ).get("SecurityGroups", [])
        if not groups:
            raise NotFoundError(f"Security group '{request.security_group_id}' not found")
        return _to_security_group_info(groups[0], request.region)

    def create(
        self, session: ProviderSession, request: CreateSecurityGroupRequest
    ) -> SecurityGroupInfo:
        if not request.vpc_id:
            raise ValidationFailedError("vpc_id is required for AWS security groups")
        ec2 = self._client(session, request.region)
        with _aws_call("CreateSecurityGroup"):
            group_id = ec2.create_security_group(
                GroupName=request.name,
                Description=request.description or request.name,
                VpcId=request.vpc_id,
                TagSpecifications=_tag_specs("security-group", request.name, request.tags),
            )["GroupId"]
        logger.info("Security group created: %s", group_id)

        for rule in request.rules:
            self.add_rule(
                session,
                AddSecurityGroupRuleRequest(
                    security_group_id=group_id, region=request.region, rule=rule
                ),
            )
        return self.get(
            session, GetSecurityGroupRequest(security_group_id=group_id, region=request.region)
        )

    def update(
        self, session: ProviderSession, request: UpdateSecurityGroupRequest
    ) -> SecurityGroupInfo:
        if request.description is not None:
            raise ValidationFailedError("AWS security group descriptions cannot be changed")
        ec2 = self._client(session, request.region)
        update = _tag_update(request.name, request.tags)
        if update:
            with _aws_call("CreateTags"):
                ec2.create_tags(Resources=[request.security_group_id], Tags=update)
        return self.get(
            session,
            GetSecurityGroupRequest(
                security_group_id=request.security_group_id, region=request.region
            ),
        )

    def delete(self, session: ProviderSession, request: DeleteSecurityGroupRequest) -> None:
        ec2 = self._client(session, request.region)
        with _aws_call("DeleteSecurityGroup"):
            ec2.delete_security_group(GroupId=request.security_group_id)
        logger.info("Deleted security group %s", request.security_group_id)

    def add_rule(
        self, session: ProviderSession, request: AddSecurityGroupRuleRequest
    ) -> SecurityGroupInfo:
        ec2 = self._client(session, request.region)
        rule = request.rule
        if rule.type == RuleDirection.INGRESS:
            with _aws_call("AuthorizeSecurityGroupIngress"):
                ec2.authorize_security_group_ingress(
                    GroupId=request.security_group_id, IpPermissions=[_ip_permission(rule)]
                )
        else:
            with _aws_call("AuthorizeSecurityGroupEgress"):
                ec2.authorize_security_group_egress(
                    GroupId=request.security_group_id, IpPermissions=[_ip_permission(rule)]
                )
        return self.get(
            session,
            GetSecurityGroupRequest(
                security_group_id=request.security_group_id, region=request.region
            ),
        )

    def remove_rule(
        self, session: ProviderSession, request: RemoveSecurityGroupRuleRequest
    ) -> SecurityGroupInfo:
        ec2 = self._client(session, request.region)
        rule = request.rule
        if rule.type == RuleDirection.INGRESS:
            with _aws_call("RevokeSecurityGroupIngress"):
                ec2.revoke_security_group_ingress(
                    GroupId=request.security_group_id, IpPermissions=[_ip_permission(rule)]
                )
        else:
            with _aws_call("RevokeSecurityGroupEgress"):
                ec2.revoke_security_group_egress(
                    GroupId=request.security_group_id, IpPermissions=[_ip_permission(rule)]
                )
        return self.get(
            session,
            GetSecurityGroupRequest(
                security_group_id=request.security_group_id, region=request.region
            ),
        )


def build_aws_handlers(client_factory: Callable = ec2_client) -> ProviderHandlers:
    return ProviderHandlers(
        vpcs=AWSVPCHandler(client_factory),
        subnets=AWSSubnetHandler(client_factory),
        security_groups=AWSSecurityGroupHandler(client_factory),
    )
