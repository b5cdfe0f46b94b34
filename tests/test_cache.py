from unittest.mock import MagicMock

from cloudnet.cache.backends import InMemoryCacheBackend, RedisCacheBackend
from cloudnet.cache.layer import (
    NetworkCache,
    compose_scope,
    item_key,
    item_prefix,
    list_key,
    list_prefix,
)
from cloudnet.schemas.common import ResourceKind
from cloudnet.schemas.vpc import VPCInfo


class _Clock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_key_layout():
    key = list_key(ResourceKind.SUBNET, "aws", "cred-1", compose_scope("vpc-1", None, ""))
    assert key == "list:subnet:aws:cred-1:vpc-1"
    assert key.startswith(list_prefix(ResourceKind.SUBNET, "aws", "cred-1"))
    assert list_key(ResourceKind.VPC, "gcp", "c", compose_scope(None, None)) == "list:vpc:gcp:c:global"
    assert item_key(ResourceKind.VPC, "aws", "c", "vpc-9").startswith(
        item_prefix(ResourceKind.VPC, "aws", "c")
    )


def test_compose_scope_joins_present_parts():
    assert compose_scope("us-east-1", "rg-a") == "us-east-1|rg-a"
    assert compose_scope(None, "", None) == "global"


def test_in_memory_backend_expires_entries():
    clock = _Clock()
    backend = InMemoryCacheBackend(clock=clock)
    backend.set("k", "v", 30)
    assert backend.get("k") == "v"
    clock.now += 31
    assert backend.get("k") is None
    assert backend.keys() == []


def test_in_memory_backend_delete_prefix():
    backend = InMemoryCacheBackend()
    backend.set("list:vpc:aws:c:us-east-1", "[]", 60)
    backend.set("list:vpc:aws:c:eu-west-1", "[]", 60)
    backend.set("list:vpc:gcp:c:global", "[]", 60)
    assert backend.delete_prefix("list:vpc:aws:c:") == 2
    assert backend.keys() == ["list:vpc:gcp:c:global"]


def test_list_round_trip_and_miss():
    cache = NetworkCache(InMemoryCacheBackend(), ttl_seconds=60)
    items, hit = cache.get_list("list:vpc:aws:c:global", VPCInfo)
    assert (items, hit) == ([], False)

    cache.set_list("list:vpc:aws:c:global", [VPCInfo(id="vpc-1", name="a")])
    items, hit = cache.get_list("list:vpc:aws:c:global", VPCInfo)
    assert hit is True
    assert items[0].id == "vpc-1"


def test_cached_empty_list_is_a_hit():
    cache = NetworkCache(InMemoryCacheBackend())
    cache.set_list("list:vpc:ncp:c:global", [])
    assert cache.get_list("list:vpc:ncp:c:global", VPCInfo) == ([], True)


def test_cache_without_backend_is_a_no_op():
    cache = NetworkCache(None)
    assert cache.enabled is False
    cache.set_item("item:vpc:aws:c:vpc-1", VPCInfo(id="vpc-1", name="a"))
    assert cache.get_item("item:vpc:aws:c:vpc-1", VPCInfo) == (None, False)
    cache.invalidate_prefix("item:")


def test_backend_failures_are_treated_as_misses():
    backend = MagicMock()
    backend.get.side_effect = ConnectionError("redis down")
    backend.set.side_effect = ConnectionError("redis down")
    backend.delete_prefix.side_effect = ConnectionError("redis down")
    cache = NetworkCache(backend)

    assert cache.get_list("list:vpc:aws:c:global", VPCInfo) == ([], False)
    cache.set_list("list:vpc:aws:c:global", [VPCInfo(id="vpc-1", name="a")])
    cache.invalidate_prefix("list:vpc:aws:c:")


def test_unreadable_entry_is_discarded():
    backend = InMemoryCacheBackend()
    backend.set("item:vpc:aws:c:vpc-1", "{not json", 60)
    cache = NetworkCache(backend)
    assert cache.get_item("item:vpc:aws:c:vpc-1", VPCInfo) == (None, False)
    assert backend.get("item:vpc:aws:c:vpc-1") is None


def test_redis_backend_prefixes_keys_and_scans_for_invalidation(monkeypatch):
    client = MagicMock()
    client.scan_iter.return_value = iter(["cloudnet:list:vpc:aws:c:a", "cloudnet:list:vpc:aws:c:b"])
    client.delete.return_value = 2
    from_url = MagicMock(return_value=client)
    monkeypatch.setattr("cloudnet.cache.backends.redis.from_url", from_url)

    backend = RedisCacheBackend("redis://localhost:6379/0")
    backend.set("list:vpc:aws:c:a", "[]", 120)
    assert backend.delete_prefix("list:vpc:aws:c:") == 2

    from_url.assert_called_once_with("redis://localhost:6379/0", decode_responses=True)
    client.set.assert_called_once_with("cloudnet:list:vpc:aws:c:a", "[]", ex=120)
    client.scan_iter.assert_called_once_with(match="cloudnet:list:vpc:aws:c:*", count=500)
    client.delete.assert_called_once_with("cloudnet:list:vpc:aws:c:a", "cloudnet:list:vpc:aws:c:b")
