import itertools

import pytest
from botocore.exceptions import ClientError

from cloudnet.cache.backends import InMemoryCacheBackend
from cloudnet.cache.layer import NetworkCache
from cloudnet.cloud.aws import build_aws_handlers
from cloudnet.cloud.registry import ProviderRegistry
from cloudnet.errors import ConflictError, NotFoundError, ProviderError, ValidationFailedError
from cloudnet.schemas.common import NetworkState
from cloudnet.schemas.security_group import (
    AddSecurityGroupRuleRequest,
    CreateSecurityGroupRequest,
    GetSecurityGroupRequest,
    RuleDirection,
    SecurityGroupRuleInfo,
    UpdateSecurityGroupRequest,
    UpdateSecurityGroupRulesRequest,
)
from cloudnet.schemas.subnet import CreateSubnetRequest, ListSubnetsRequest
from cloudnet.schemas.vpc import (
    CreateVPCRequest,
    DeleteVPCRequest,
    GetVPCRequest,
    ListVPCsRequest,
)
from cloudnet.services.dispatcher import NetworkDispatcher
from cloudnet.services.side_effects import SideEffectEmitter

REGION = "us-east-1"


def _client_error(code, operation, message="error"):
    return ClientError({"Error": {"Code": code, "Message": message}}, operation)


def _vpc_of(filters):
    return next(f["Values"][0] for f in filters if f["Name"] == "vpc-id")


class FakeEC2:
    """Just enough of the EC2 API to exercise the handlers against real state."""

    def __init__(self):
        self._ids = itertools.count(1)
        self.vpcs = {}
        self.subnets = {}
        self.groups = {}
        self.enis = {}
        self.route_tables = []
        self.fail_authorize = False

    def _id(self, prefix):
        return f"{prefix}-{next(self._ids):08x}"

    # VPCs
    def describe_vpcs(self, VpcIds=None, NextToken=None):
        if VpcIds:
            missing = [v for v in VpcIds if v not in self.vpcs]
            if missing:
                raise _client_error("InvalidVpcID.NotFound", "DescribeVpcs", f"{missing[0]} does not exist")
            return {"Vpcs": [self.vpcs[v] for v in VpcIds]}
        return {"Vpcs": list(self.vpcs.values())}

    def create_vpc(self, CidrBlock, TagSpecifications):
        vpc = {
            "VpcId": self._id("vpc"),
            "CidrBlock": CidrBlock,
            "State": "pending",
            "IsDefault": False,
            "Tags": TagSpecifications[0]["Tags"],
        }
        self.vpcs[vpc["VpcId"]] = vpc
        return {"Vpc": dict(vpc)}

    def modify_vpc_attribute(self, VpcId, **kwargs):
        self.vpcs[VpcId]["State"] = "available"

    def create_tags(self, Resources, Tags):
        for resource_id in Resources:
            for store in (self.vpcs, self.subnets, self.groups):
                if resource_id in store:
                    current = {t["Key"]: t["Value"] for t in store[resource_id].get("Tags", [])}
                    current.update({t["Key"]: t["Value"] for t in Tags})
                    store[resource_id]["Tags"] = [{"Key": k, "Value": v} for k, v in current.items()]

    def delete_vpc(self, VpcId):
        if any(s["VpcId"] == VpcId for s in self.subnets.values()):
            raise _client_error("DependencyViolation", "DeleteVpc", "has dependencies")
        self.vpcs.pop(VpcId)

    # Subnets
    def describe_subnets(self, SubnetIds=None, Filters=None, NextToken=None):
        if SubnetIds:
            return {"Subnets": [self.subnets[s] for s in SubnetIds if s in self.subnets]}
        subnets = list(self.subnets.values())
        if Filters:
            subnets = [s for s in subnets if s["VpcId"] == _vpc_of(Filters)]
        return {"Subnets": subnets}

    def create_subnet(self, VpcId, CidrBlock, TagSpecifications, AvailabilityZone="us-east-1a"):
        subnet = {
            "SubnetId": self._id("subnet"),
            "VpcId": VpcId,
            "CidrBlock": CidrBlock,
            "AvailabilityZone": AvailabilityZone,
            "State": "available",
            "Tags": TagSpecifications[0]["Tags"],
        }
        self.subnets[subnet["SubnetId"]] = subnet
        return {"Subnet": dict(subnet)}

    def delete_subnet(self, SubnetId):
        self.subnets.pop(SubnetId)

    def describe_route_tables(self, Filters=None, NextToken=None):
        return {"RouteTables": self.route_tables}

    # Security groups
    def describe_security_groups(self, GroupIds=None, Filters=None, NextToken=None):
        if GroupIds:
            return {"SecurityGroups": [self.groups[g] for g in GroupIds if g in self.groups]}
        groups = list(self.groups.values())
        if Filters:
            groups = [g for g in groups if g["VpcId"] == _vpc_of(Filters)]
        return {"SecurityGroups": groups}

    def create_security_group(self, GroupName, Description, VpcId, TagSpecifications):
        group = {
            "GroupId": self._id("sg"),
            "GroupName": GroupName,
            "Description": Description,
            "VpcId": VpcId,
            "IpPermissions": [],
            "IpPermissionsEgress": [],
            "Tags": TagSpecifications[0]["Tags"],
        }
        self.groups[group["GroupId"]] = group
        return {"GroupId": group["GroupId"]}

    def delete_security_group(self, GroupId):
        self.groups.pop(GroupId)

    def authorize_security_group_ingress(self, GroupId, IpPermissions):
        if self.fail_authorize:
            raise _client_error("RulesPerSecurityGroupLimitExceeded", "AuthorizeSecurityGroupIngress")
        self.groups[GroupId]["IpPermissions"].extend(IpPermissions)

    def authorize_security_group_egress(self, GroupId, IpPermissions):
        self.groups[GroupId]["IpPermissionsEgress"].extend(IpPermissions)

    def revoke_security_group_ingress(self, GroupId, IpPermissions):
        perms = self.groups[GroupId]["IpPermissions"]
        perms[:] = [p for p in perms if p not in IpPermissions]

    def revoke_security_group_egress(self, GroupId, IpPermissions):
        perms = self.groups[GroupId]["IpPermissionsEgress"]
        perms[:] = [p for p in perms if p not in IpPermissions]

    # Interfaces
    def describe_network_interfaces(self, Filters, NextToken=None):
        vpc_id = _vpc_of(Filters)
        return {"NetworkInterfaces": [e for e in self.enis.values() if e["VpcId"] == vpc_id]}


@pytest.fixture()
def ec2():
    return FakeEC2()


@pytest.fixture()
def aws_dispatcher(ec2, decryptor, audit_log, publisher):
    registry = ProviderRegistry()
    registry.register("aws", build_aws_handlers(client_factory=lambda secrets, region: ec2))
    return NetworkDispatcher(
        registry=registry,
        decryptor=decryptor,
        cache=NetworkCache(InMemoryCacheBackend()),
        emitter=SideEffectEmitter(audit_log, publisher),
    )


def _list_vpc_ids(dispatcher, credential):
    result = dispatcher.execute("vpc", "list", "aws", credential, ListVPCsRequest(region=REGION))
    return [v.id for v in result.items]


def test_vpc_lifecycle_with_attached_instance(aws_dispatcher, ec2, make_credential, publisher):
    credential = make_credential()

    vpc = aws_dispatcher.execute(
        "vpc", "create", "aws", credential,
        CreateVPCRequest(name="test-vpc", cidr_block="10.0.0.0/16", region=REGION),
    )
    assert vpc.id.startswith("vpc-")
    assert vpc.name == "test-vpc"
    assert vpc.cidr == "10.0.0.0/16"

    fetched = aws_dispatcher.execute(
        "vpc", "get", "aws", credential, GetVPCRequest(vpc_id=vpc.id, region=REGION)
    )
    assert fetched.state == NetworkState.ACTIVE
    assert _list_vpc_ids(aws_dispatcher, credential) == [vpc.id]

    ec2.enis["eni-1"] = {
        "NetworkInterfaceId": "eni-1",
        "VpcId": vpc.id,
        "Attachment": {"InstanceId": "i-0abc"},
    }
    with pytest.raises(ConflictError, match="instances are still using this network"):
        aws_dispatcher.execute(
            "vpc", "delete", "aws", credential, DeleteVPCRequest(vpc_id=vpc.id, region=REGION)
        )
    assert vpc.id in ec2.vpcs

    del ec2.enis["eni-1"]
    aws_dispatcher.execute(
        "vpc", "delete", "aws", credential, DeleteVPCRequest(vpc_id=vpc.id, region=REGION)
    )

    assert _list_vpc_ids(aws_dispatcher, credential) == []
    assert [e[0] for e in publisher.events] == ["network.vpc.aws.created", "network.vpc.aws.deleted"]


def test_delete_leaves_dependents_in_place(aws_dispatcher, ec2, make_credential):
    credential = make_credential()
    vpc = aws_dispatcher.execute(
        "vpc", "create", "aws", credential,
        CreateVPCRequest(name="shared", cidr_block="10.1.0.0/16", region=REGION),
    )
    subnet = aws_dispatcher.execute(
        "subnet", "create", "aws", credential,
        CreateSubnetRequest(name="a", vpc_id=vpc.id, cidr_block="10.1.1.0/24", region=REGION),
    )
    group = aws_dispatcher.execute(
        "security_group", "create", "aws", credential,
        CreateSecurityGroupRequest(name="web", vpc_id=vpc.id, region=REGION),
    )

    with pytest.raises(ConflictError):
        aws_dispatcher.execute(
            "vpc", "delete", "aws", credential, DeleteVPCRequest(vpc_id=vpc.id, region=REGION)
        )

    assert vpc.id in ec2.vpcs
    assert list(ec2.subnets) == [subnet.id]
    assert list(ec2.groups) == [group.id]


def test_get_unknown_vpc_is_not_found(aws_dispatcher, make_credential):
    with pytest.raises(NotFoundError):
        aws_dispatcher.execute(
            "vpc", "get", "aws", make_credential(), GetVPCRequest(vpc_id="vpc-0dead", region=REGION)
        )


def test_region_is_required(aws_dispatcher, make_credential):
    with pytest.raises(ValidationFailedError, match="Region is required"):
        aws_dispatcher.execute("vpc", "list", "aws", make_credential(), ListVPCsRequest())


def test_vpc_id_passed_as_region_is_rejected(aws_dispatcher, make_credential):
    with pytest.raises(ValidationFailedError, match="appears to be a VPC ID"):
        aws_dispatcher.execute("vpc", "list", "aws", make_credential(), ListVPCsRequest(region="vpc-0abc"))


def test_subnet_public_flag_follows_route_tables(aws_dispatcher, ec2, make_credential):
    credential = make_credential()
    vpc = aws_dispatcher.execute(
        "vpc", "create", "aws", credential,
        CreateVPCRequest(name="net", cidr_block="10.2.0.0/16", region=REGION),
    )
    public = aws_dispatcher.execute(
        "subnet", "create", "aws", credential,
        CreateSubnetRequest(name="public", vpc_id=vpc.id, cidr_block="10.2.1.0/24", region=REGION),
    )
    aws_dispatcher.execute(
        "subnet", "create", "aws", credential,
        CreateSubnetRequest(name="private", vpc_id=vpc.id, cidr_block="10.2.2.0/24", region=REGION),
    )
    ec2.route_tables = [
        {
            "VpcId": vpc.id,
            "Routes": [{"GatewayId": "igw-1", "DestinationCidrBlock": "0.0.0.0/0"}],
            "Associations": [{"SubnetId": public.id}],
        },
        {"VpcId": vpc.id, "Routes": [{"GatewayId": "local"}], "Associations": [{"Main": True}]},
    ]

    result = aws_dispatcher.execute(
        "subnet", "list", "aws", credential, ListSubnetsRequest(vpc_id=vpc.id, region=REGION)
    )
    assert {s.name: s.is_public for s in result.items} == {"public": True, "private": False}


def test_security_group_rules(aws_dispatcher, ec2, make_credential):
    credential = make_credential()
    https = SecurityGroupRuleInfo(protocol="tcp", from_port=443, to_port=443, cidr_blocks=["0.0.0.0/0"])
    group = aws_dispatcher.execute(
        "security_group", "create", "aws", credential,
        CreateSecurityGroupRequest(name="web", vpc_id="vpc-1", region=REGION, rules=[https]),
    )
    assert [(r.type, r.from_port) for r in group.rules] == [(RuleDirection.INGRESS, 443)]

    ssh = SecurityGroupRuleInfo(protocol="tcp", from_port=22, to_port=22, cidr_blocks=["10.0.0.0/8"])
    replaced = aws_dispatcher.execute(
        "security_group", "replace_rules", "aws", credential,
        UpdateSecurityGroupRulesRequest(
            security_group_id=group.id, region=REGION, ingress_rules=[ssh]
        ),
    )
    assert [(r.type, r.from_port) for r in replaced.rules] == [(RuleDirection.INGRESS, 22)]


def test_replace_rules_surfaces_failed_add(aws_dispatcher, ec2, make_credential):
    credential = make_credential()
    group = aws_dispatcher.execute(
        "security_group", "create", "aws", credential,
        CreateSecurityGroupRequest(name="web", vpc_id="vpc-1", region=REGION),
    )
    ec2.fail_authorize = True

    with pytest.raises(ProviderError, match="failed to add ingress rule"):
        aws_dispatcher.execute(
            "security_group", "replace_rules", "aws", credential,
            UpdateSecurityGroupRulesRequest(
                security_group_id=group.id,
                region=REGION,
                ingress_rules=[SecurityGroupRuleInfo(from_port=80, to_port=80, cidr_blocks=["0.0.0.0/0"])],
            ),
        )


def test_partial_rule_replacement_is_not_served_from_cache(aws_dispatcher, ec2, make_credential):
    credential = make_credential()
    https = SecurityGroupRuleInfo(protocol="tcp", from_port=443, to_port=443, cidr_blocks=["0.0.0.0/0"])
    group = aws_dispatcher.execute(
        "security_group", "create", "aws", credential,
        CreateSecurityGroupRequest(name="web", vpc_id="vpc-1", region=REGION, rules=[https]),
    )
    get = GetSecurityGroupRequest(security_group_id=group.id, region=REGION)
    cached = aws_dispatcher.execute("security_group", "get", "aws", credential, get)
    assert [r.from_port for r in cached.rules] == [443]

    ec2.fail_authorize = True
    with pytest.raises(ProviderError):
        aws_dispatcher.execute(
            "security_group", "replace_rules", "aws", credential,
            UpdateSecurityGroupRulesRequest(
                security_group_id=group.id,
                region=REGION,
                ingress_rules=[
                    SecurityGroupRuleInfo(protocol="tcp", from_port=22, to_port=22, cidr_blocks=["10.0.0.0/8"])
                ],
            ),
        )

    assert ec2.groups[group.id]["IpPermissions"] == []
    assert aws_dispatcher.execute("security_group", "get", "aws", credential, get).rules == []


def test_security_group_description_is_immutable(aws_dispatcher, make_credential):
    with pytest.raises(ValidationFailedError):
        aws_dispatcher.execute(
            "security_group", "update", "aws", make_credential(),
            UpdateSecurityGroupRequest(security_group_id="sg-1", region=REGION, description="new"),
        )


def test_add_egress_rule(aws_dispatcher, ec2, make_credential):
    credential = make_credential()
    group = aws_dispatcher.execute(
        "security_group", "create", "aws", credential,
        CreateSecurityGroupRequest(name="db", vpc_id="vpc-1", region=REGION),
    )
    updated = aws_dispatcher.execute(
        "security_group", "add_rule", "aws", credential,
        AddSecurityGroupRuleRequest(
            security_group_id=group.id,
            region=REGION,
            rule=SecurityGroupRuleInfo(type=RuleDirection.EGRESS, protocol="-1", cidr_blocks=["0.0.0.0/0"]),
        ),
    )
    assert ec2.groups[group.id]["IpPermissionsEgress"] == [
        {"IpProtocol": "-1", "IpRanges": [{"CidrIp": "0.0.0.0/0"}]}
    ]
    assert updated.rules[0].type == RuleDirection.EGRESS
