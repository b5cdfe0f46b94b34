from unittest.mock import MagicMock

import pytest
from googleapiclient.errors import HttpError

from cloudnet.cloud.base import ProviderSession
from cloudnet.cloud.gcp import build_gcp_handlers
from cloudnet.errors import (
    ConflictError,
    InternalError,
    NotFoundError,
    ValidationFailedError,
)
from cloudnet.operations.poller import OperationPoller
from cloudnet.schemas.security_group import (
    AddSecurityGroupRuleRequest,
    GetSecurityGroupRequest,
    RemoveSecurityGroupRuleRequest,
    RuleDirection,
    SecurityGroupRuleInfo,
    UpdateSecurityGroupRulesRequest,
)
from cloudnet.schemas.subnet import GetSubnetRequest
from cloudnet.schemas.vpc import CreateVPCRequest, DeleteVPCRequest, GetVPCRequest, ListVPCsRequest

PROJECT = "proj-1"
NETWORK_URL = f"https://www.googleapis.com/compute/v1/projects/{PROJECT}/global/networks/prod"
OTHER_URL = f"https://www.googleapis.com/compute/v1/projects/{PROJECT}/global/networks/staging"
DONE = {"name": "op-1", "status": "DONE"}


def _compute():
    compute = MagicMock()
    for collection in (compute.networks, compute.firewalls, compute.subnetworks, compute.instances):
        collection.return_value.list_next.return_value = None
        collection.return_value.aggregatedList_next.return_value = None
    return compute


def _http_error(status, message):
    return HttpError(
        resp=MagicMock(status=status, reason=message),
        content=('{"error": {"message": "%s"}}' % message).encode(),
    )


@pytest.fixture()
def compute():
    return _compute()


@pytest.fixture()
def handlers(compute):
    return build_gcp_handlers(
        poller=OperationPoller(interval=0.001, timeout=5), client_factory=lambda secrets: compute
    )


@pytest.fixture()
def session():
    return ProviderSession(provider="gcp", credential_id="cred-gcp", secrets={"project_id": PROJECT})


def test_list_counts_firewalls_per_network(handlers, compute, session):
    compute.networks.return_value.list.return_value.execute.return_value = {
        "items": [
            {"name": "prod", "autoCreateSubnetworks": False, "routingConfig": {"routingMode": "REGIONAL"}},
            {"name": "default", "autoCreateSubnetworks": True},
        ]
    }
    compute.firewalls.return_value.list.return_value.execute.return_value = {
        "items": [
            {"name": "allow-ssh", "network": NETWORK_URL},
            {"name": "allow-web", "network": NETWORK_URL},
        ]
    }

    vpcs = handlers.vpcs.list_all(session, ListVPCsRequest())

    prod, default = vpcs
    assert prod.id == f"projects/{PROJECT}/global/networks/prod"
    assert prod.network_mode == "custom"
    assert prod.firewall_rule_count == 2
    assert default.is_default is True
    assert default.network_mode == "auto"
    assert default.firewall_rule_count == 0


def test_missing_project_id_is_rejected(handlers):
    session = ProviderSession(provider="gcp", credential_id="c", secrets={})
    with pytest.raises(ValidationFailedError, match="Project ID not found"):
        handlers.vpcs.list_all(session, ListVPCsRequest())


def test_create_waits_for_operation(handlers, compute, session):
    networks = compute.networks.return_value
    networks.insert.return_value.execute.return_value = {"name": "op-1", "status": "RUNNING"}
    compute.globalOperations.return_value.get.return_value.execute.return_value = DONE
    networks.get.return_value.execute.return_value = {"name": "prod", "mtu": 1460}
    compute.firewalls.return_value.list.return_value.execute.return_value = {"items": []}

    vpc = handlers.vpcs.create(session, CreateVPCRequest(name="prod", auto_create_subnets=False))

    body = networks.insert.call_args.kwargs["body"]
    assert body["mtu"] == 1460
    assert body["routingConfig"] == {"routingMode": "REGIONAL"}
    assert body["autoCreateSubnetworks"] is False
    compute.globalOperations.return_value.get.assert_called_with(project=PROJECT, operation="op-1")
    assert vpc.name == "prod"


def test_failed_operation_surfaces_internal_error(handlers, compute, session):
    compute.networks.return_value.insert.return_value.execute.return_value = {
        "name": "op-1",
        "status": "DONE",
        "error": {"errors": [{"code": "QUOTA_EXCEEDED"}]},
    }
    with pytest.raises(InternalError, match="Operation failed"):
        handlers.vpcs.create(session, CreateVPCRequest(name="prod"))


def test_not_found_is_translated(handlers, compute, session):
    compute.networks.return_value.get.return_value.execute.side_effect = _http_error(
        404, "The resource 'prod' was not found"
    )
    with pytest.raises(NotFoundError):
        handlers.vpcs.get(session, GetVPCRequest(vpc_id="prod"))


def test_delete_cascades_to_firewalls_and_subnetworks(handlers, compute, session):
    compute.firewalls.return_value.list.return_value.execute.return_value = {
        "items": [
            {"name": "fw-prod", "network": NETWORK_URL},
            {"name": "fw-staging", "network": OTHER_URL},
        ]
    }
    compute.subnetworks.return_value.aggregatedList.return_value.execute.return_value = {
        "items": {
            "regions/us-central1": {
                "subnetworks": [
                    {"name": "sn-1", "region": "regions/us-central1", "network": NETWORK_URL}
                ]
            },
            "regions/europe-west1": {"warning": {"code": "NO_RESULTS_ON_PAGE"}},
        }
    }
    compute.instances.return_value.aggregatedList.return_value.execute.return_value = {"items": {}}
    compute.firewalls.return_value.delete.return_value.execute.return_value = DONE
    compute.subnetworks.return_value.delete.return_value.execute.return_value = DONE
    compute.networks.return_value.delete.return_value.execute.return_value = DONE

    handlers.vpcs.delete(session, DeleteVPCRequest(vpc_id=f"projects/{PROJECT}/global/networks/prod"))

    compute.firewalls.return_value.delete.assert_called_once_with(project=PROJECT, firewall="fw-prod")
    compute.subnetworks.return_value.delete.assert_called_once_with(
        project=PROJECT, region="us-central1", subnetwork="sn-1"
    )
    compute.networks.return_value.delete.assert_called_once_with(project=PROJECT, network="prod")


def test_delete_refused_while_instances_attached(handlers, compute, session):
    compute.firewalls.return_value.list.return_value.execute.return_value = {}
    compute.subnetworks.return_value.aggregatedList.return_value.execute.return_value = {"items": {}}
    compute.instances.return_value.aggregatedList.return_value.execute.return_value = {
        "items": {
            "zones/us-central1-a": {
                "instances": [{"name": "vm-1", "networkInterfaces": [{"network": NETWORK_URL}]}]
            }
        }
    }

    with pytest.raises(ConflictError) as exc_info:
        handlers.vpcs.delete(session, DeleteVPCRequest(vpc_id="prod"))

    assert exc_info.value.details["blockers"] == ["vm-1"]
    compute.networks.return_value.delete.assert_not_called()


def test_subnet_region_comes_from_path(handlers, compute, session):
    compute.subnetworks.return_value.get.return_value.execute.return_value = {
        "name": "sn-1",
        "region": "https://www.googleapis.com/compute/v1/projects/proj-1/regions/us-central1",
        "network": NETWORK_URL,
        "ipCidrRange": "10.10.0.0/24",
    }
    subnet = handlers.subnets.get(
        session, GetSubnetRequest(subnet_id=f"projects/{PROJECT}/regions/us-central1/subnetworks/sn-1")
    )
    compute.subnetworks.return_value.get.assert_called_with(
        project=PROJECT, region="us-central1", subnetwork="sn-1"
    )
    assert subnet.vpc_id == f"projects/{PROJECT}/global/networks/prod"
    assert subnet.is_public is False


def test_subnet_without_region_is_rejected(handlers, session):
    with pytest.raises(ValidationFailedError, match="region is required"):
        handlers.subnets.get(session, GetSubnetRequest(subnet_id="sn-1"))


# ── Firewall rules ────────────────────────────────────────────────────────────

def _firewall(**overrides):
    firewall = {
        "name": "web",
        "network": NETWORK_URL,
        "direction": "INGRESS",
        "priority": 1000,
        "allowed": [{"IPProtocol": "tcp", "ports": ["80"]}],
        "sourceRanges": ["0.0.0.0/0"],
    }
    firewall.update(overrides)
    return firewall


def test_add_rule_merges_into_existing_block(handlers, compute, session):
    firewalls = compute.firewalls.return_value
    firewalls.get.return_value.execute.return_value = _firewall()
    firewalls.update.return_value.execute.return_value = DONE

    handlers.security_groups.add_rule(
        session,
        AddSecurityGroupRuleRequest(
            security_group_id="web",
            rule=SecurityGroupRuleInfo(protocol="tcp", from_port=443, to_port=443, cidr_blocks=["10.0.0.0/8"]),
        ),
    )

    body = firewalls.update.call_args.kwargs["body"]
    assert body["allowed"] == [{"IPProtocol": "tcp", "ports": ["80", "443"]}]
    assert body["sourceRanges"] == ["0.0.0.0/0", "10.0.0.0/8"]


def test_rule_direction_must_match_firewall(handlers, compute, session):
    compute.firewalls.return_value.get.return_value.execute.return_value = _firewall()
    with pytest.raises(ValidationFailedError):
        handlers.security_groups.add_rule(
            session,
            AddSecurityGroupRuleRequest(
                security_group_id="web",
                rule=SecurityGroupRuleInfo(type=RuleDirection.EGRESS, protocol="tcp", from_port=53),
            ),
        )


def test_removing_last_rule_is_rejected(handlers, compute, session):
    compute.firewalls.return_value.get.return_value.execute.return_value = _firewall()
    with pytest.raises(ValidationFailedError, match="last rule"):
        handlers.security_groups.remove_rule(
            session,
            RemoveSecurityGroupRuleRequest(
                security_group_id="web",
                rule=SecurityGroupRuleInfo(protocol="tcp", from_port=80, to_port=80),
            ),
        )
    compute.firewalls.return_value.update.assert_not_called()


def test_replace_rules_is_a_single_update(handlers, compute, session):
    firewalls = compute.firewalls.return_value
    firewalls.get.return_value.execute.return_value = _firewall()
    firewalls.update.return_value.execute.return_value = DONE

    handlers.security_groups.replace_rules(
        session,
        UpdateSecurityGroupRulesRequest(
            security_group_id="web",
            ingress_rules=[
                SecurityGroupRuleInfo(protocol="tcp", from_port=22, to_port=22, cidr_blocks=["10.0.0.0/8"]),
                SecurityGroupRuleInfo(protocol="udp", from_port=53, to_port=53, cidr_blocks=["10.0.0.0/8"]),
            ],
        ),
    )

    assert handlers.security_groups.atomic_rule_replacement is True
    firewalls.update.assert_called_once()
    body = firewalls.update.call_args.kwargs["body"]
    assert body["allowed"] == [
        {"IPProtocol": "tcp", "ports": ["22"]},
        {"IPProtocol": "udp", "ports": ["53"]},
    ]
    assert body["sourceRanges"] == ["10.0.0.0/8"]


def test_firewall_rules_take_direction_from_firewall(handlers, compute, session):
    compute.firewalls.return_value.get.return_value.execute.return_value = _firewall(
        name="block-dns",
        direction="EGRESS",
        allowed=[],
        denied=[{"IPProtocol": "udp", "ports": ["53"]}],
        destinationRanges=["8.8.8.8/32"],
    )

    group = handlers.security_groups.get(session, GetSecurityGroupRequest(security_group_id="block-dns"))

    assert group.tags["action"] == "deny"
    assert [(r.type, r.protocol, r.from_port, r.cidr_blocks) for r in group.rules] == [
        (RuleDirection.EGRESS, "udp", 53, ["8.8.8.8/32"])
    ]
