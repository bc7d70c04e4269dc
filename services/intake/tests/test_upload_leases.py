from __future__ import annotations

from unittest.mock import MagicMock

from services.intake.infrastructure.locks import InMemoryUploadLease, RedisUploadLease


def test_in_memory_lease_is_exclusive_until_expiry():
    now = [0.0]
    lease = InMemoryUploadLease(clock=lambda: now[0])

    assert lease.acquire("k", "a", 10)
    assert not lease.acquire("k", "b", 10)
    assert lease.acquire("k", "a", 10)

    now[0] = 11.0
    assert lease.acquire("k", "b", 10)


def test_in_memory_lease_release_only_by_owner():
    lease = InMemoryUploadLease()
    lease.acquire("k", "a", 60)

    lease.release("k", "b")
    assert not lease.acquire("k", "b", 60)

    lease.release("k", "a")
    assert lease.acquire("k", "b", 60)


def test_redis_lease_uses_set_nx_and_renews_for_owner():
    client = MagicMock()
    client.set.return_value = None
    client.get.return_value = b"node-a"
    lease = RedisUploadLease(client)

    assert lease.acquire("upload-assembly:u1", "node-a", 300)
    client.set.assert_called_once_with("upload-assembly:u1", "node-a", nx=True, ex=300)
    client.expire.assert_called_once_with("upload-assembly:u1", 300)

    assert not lease.acquire("upload-assembly:u1", "node-b", 300)
