import sys
from collections import Counter
from pathlib import Path

import pytest
from cryptography.fernet import Fernet
from fastapi.testclient import TestClient

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from cloudnet.cache.backends import InMemoryCacheBackend
from cloudnet.cache.layer import NetworkCache
from cloudnet.cloud.base import (
    ProviderHandlers,
    SecurityGroupHandler,
    SubnetHandler,
    VPCHandler,
)
from cloudnet.cloud.ncp import build_ncp_handlers
from cloudnet.cloud.registry import ProviderRegistry
from cloudnet.dao.base import AuditLogRepository, CredentialRepository
from cloudnet.dependencies.dao import get_credential_repository, get_dispatcher
from cloudnet.errors import NotFoundError
from cloudnet.main import app
from cloudnet.schemas.credential import Credential
from cloudnet.schemas.security_group import SecurityGroupInfo
from cloudnet.schemas.subnet import SubnetInfo
from cloudnet.schemas.vpc import VPCInfo
from cloudnet.services.credentials import FernetCredentialDecryptor
from cloudnet.services.dispatcher import NetworkDispatcher
from cloudnet.services.side_effects import EventPublisher, SideEffectEmitter

AWS_SECRETS = {"access_key": "AKIDEXAMPLE", "secret_key": "secret"}


# ── In-memory provider handlers ───────────────────────────────────────────────

class FakeVPCHandler(VPCHandler):
    provider = "aws"

    def __init__(self):
        self.store: dict[str, VPCInfo] = {}
        self.calls = Counter()
        self.sessions = []

    def list_all(self, session, request):
        self.calls["list"] += 1
        self.sessions.append(session)
        return [v for v in self.store.values() if not request.region or v.region == request.region]

    def get(self, session, request):
        self.calls["get"] += 1
        if request.vpc_id not in self.store:
            raise NotFoundError(f"VPC '{request.vpc_id}' not found")
        return self.store[request.vpc_id]

    def create(self, session, request):
        self.calls["create"] += 1
        vpc = VPCInfo(
            id=f"vpc-{len(self.store) + 1:04d}",
            name=request.name,
            region=request.region,
            cidr=request.cidr_block,
            description=request.description,
            tags=request.tags,
        )
        self.store[vpc.id] = vpc
        return vpc

    def update(self, session, request):
        self.calls["update"] += 1
        vpc = self.get(session, request)
        changes = {k: v for k, v in {"name": request.name, "tags": request.tags}.items() if v is not None}
        self.store[vpc.id] = vpc.model_copy(update=changes)
        return self.store[vpc.id]

    def delete(self, session, request):
        self.calls["delete"] += 1
        if self.store.pop(request.vpc_id, None) is None:
            raise NotFoundError(f"VPC '{request.vpc_id}' not found")


class FakeSubnetHandler(SubnetHandler):
    provider = "aws"

    def __init__(self):
        self.store: dict[str, SubnetInfo] = {}
        self.calls = Counter()

    def list_all(self, session, request):
        self.calls["list"] += 1
        return [s for s in self.store.values() if not request.vpc_id or s.vpc_id == request.vpc_id]

    def create(self, session, request):
        self.calls["create"] += 1
        subnet = SubnetInfo(
            id=f"subnet-{len(self.store) + 1:04d}",
            name=request.name,
            vpc_id=request.vpc_id,
            cidr_block=request.cidr_block,
            region=request.region,
        )
        self.store[subnet.id] = subnet
        return subnet


class FakeSecurityGroupHandler(SecurityGroupHandler):
    provider = "aws"

    def __init__(self):
        self.store: dict[str, SecurityGroupInfo] = {}
        self.calls = Counter()

    def list_all(self, session, request):
        self.calls["list"] += 1
        return list(self.store.values())

    def create(self, session, request):
        self.calls["create"] += 1
        group = SecurityGroupInfo(
            id=f"sg-{len(self.store) + 1:04d}",
            name=request.name,
            vpc_id=request.vpc_id,
            region=request.region,
            rules=request.rules,
        )
        self.store[group.id] = group
        return group

    def add_rule(self, session, request):
        self.calls["add_rule"] += 1
        group = self.store[request.security_group_id]
        self.store[group.id] = group.model_copy(update={"rules": group.rules + [request.rule]})
        return self.store[group.id]

    def replace_rules(self, session, request):
        self.calls["replace_rules"] += 1
        group = self.store[request.security_group_id]
        rules = list(request.ingress_rules) + list(request.egress_rules)
        self.store[group.id] = group.model_copy(update={"rules": rules})
        return self.store[group.id]


class FakeProvider:
    def __init__(self):
        self.vpcs = FakeVPCHandler()
        self.subnets = FakeSubnetHandler()
        self.security_groups = FakeSecurityGroupHandler()

    @property
    def handlers(self) -> ProviderHandlers:
        return ProviderHandlers(
            vpcs=self.vpcs, subnets=self.subnets, security_groups=self.security_groups
        )


# ── Side-effect recorders ─────────────────────────────────────────────────────

class RecordingAuditLog(AuditLogRepository):
    def __init__(self):
        self.entries = []

    def log_action(self, actor, action, resource_path, details):
        self.entries.append(
            {"actor": actor, "action": action, "resource_path": resource_path, "details": details}
        )


class RecordingPublisher(EventPublisher):
    def __init__(self):
        self.events = []

    def publish(self, event_type, payload):
        self.events.append((event_type, payload))


class InMemoryCredentialRepository(CredentialRepository):
    def __init__(self):
        self.store: dict[str, Credential] = {}

    def get(self, credential_id):
        return self.store.get(credential_id)

    def save(self, credential):
        self.store[credential.id] = credential


# ── Fixtures ──────────────────────────────────────────────────────────────────

@pytest.fixture()
def decryptor():
    return FernetCredentialDecryptor(Fernet.generate_key().decode())


@pytest.fixture()
def make_credential(decryptor):
    def _make(provider="aws", secrets=None, credential_id="cred-1"):
        return Credential(
            id=credential_id,
            provider=provider,
            encrypted_data=decryptor.encrypt(secrets if secrets is not None else AWS_SECRETS),
        )

    return _make


@pytest.fixture()
def fake_aws():
    return FakeProvider()


@pytest.fixture()
def cache_backend():
    return InMemoryCacheBackend()


@pytest.fixture()
def audit_log():
    return RecordingAuditLog()


@pytest.fixture()
def publisher():
    return RecordingPublisher()


@pytest.fixture()
def dispatcher(fake_aws, decryptor, cache_backend, audit_log, publisher):
    registry = ProviderRegistry()
    registry.register("aws", fake_aws.handlers)
    registry.register("ncp", build_ncp_handlers())
    return NetworkDispatcher(
        registry=registry,
        decryptor=decryptor,
        cache=NetworkCache(cache_backend, ttl_seconds=60),
        emitter=SideEffectEmitter(audit_log, publisher),
    )


@pytest.fixture()
def credential_repository(make_credential):
    repo = InMemoryCredentialRepository()
    repo.save(make_credential("aws"))
    repo.save(make_credential("ncp", secrets={}, credential_id="cred-ncp"))
    return repo


@pytest.fixture()
def client(dispatcher, credential_repository):
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    app.dependency_overrides[get_credential_repository] = lambda: credential_repository
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
