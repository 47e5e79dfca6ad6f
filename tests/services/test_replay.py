"""Tests for the expiring nonce store."""

import pytest

from pixelsynth.services.replay import ReplayProtectionService

T0 = 1_000_000


def test_second_use_of_nonce_is_rejected() -> None:
    service = ReplayProtectionService()
    assert service.check_and_register("abc123", T0) is True
    assert service.check_and_register("abc123", T0 + 1) is False
    assert service.is_replay("abc123", T0 + 2) is True


def test_nonce_expires_after_ttl() -> None:
    service = ReplayProtectionService(ttl_ms=100)
    service.register("n1", T0)
    assert service.is_replay("n1", T0 + 99) is True
    assert service.is_replay("n1", T0 + 100) is False
    assert service.check_and_register("n1", T0 + 100) is True


def test_overflow_evicts_oldest_instead_of_clearing() -> None:
    service = ReplayProtectionService(ttl_ms=10_000, capacity=3)
    for index, nonce in enumerate(["a", "b", "c", "d"]):
        service.register(nonce, T0 + index)

    assert len(service) == 3
    assert service.is_replay("a", T0 + 10) is False
    for nonce in ("b", "c", "d"):
        assert service.is_replay(nonce, T0 + 10) is True


def test_overflow_prunes_expired_nonces_first() -> None:
    service = ReplayProtectionService(ttl_ms=100, capacity=3)
    service.register("a", T0)
    service.register("b", T0 + 90)
    service.register("c", T0 + 90)
    service.register("d", T0 + 150)

    assert len(service) == 3
    for nonce in ("b", "c", "d"):
        assert service.is_replay(nonce, T0 + 150) is True


def test_clear_forgets_everything() -> None:
    service = ReplayProtectionService()
    service.register("x", T0)
    service.clear()
    assert len(service) == 0
    assert service.check_and_register("x", T0) is True


@pytest.mark.parametrize(("ttl_ms", "capacity"), [(0, 10), (10, 0), (-1, -1)])
def test_rejects_non_positive_limits(ttl_ms: int, capacity: int) -> None:
    with pytest.raises(ValueError):
        ReplayProtectionService(ttl_ms=ttl_ms, capacity=capacity)
