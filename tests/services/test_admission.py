"""Tests for the admission controller decision flow."""

from __future__ import annotations

import threading
import time
import uuid
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor

import pytest
from pytest_mock import MockerFixture

from pixelsynth.core.security import sign_request
from pixelsynth.core.settings import DAY_MS, HOUR_MS, RateLimitConfig
from pixelsynth.models import ClientRecord
from pixelsynth.services.admission import (
    AdmissionController,
    AdmissionRequest,
    RejectionReason,
    get_admission_controller,
)
from pixelsynth.services.replay import ReplayProtectionService
from tests.conftest import BROWSER_HEADERS, START_MS, TEST_SECRET, FakeClock

MakeRequest = Callable[..., AdmissionRequest]

# Spacing between attempts that keeps the burst detector quiet.
CALM_GAP_MS = 61_000
MONTH_MS = 30 * DAY_MS
FREE_GENERATIONS = 3
SINGLETON_CALLERS = 8


def _record(controller: AdmissionController, headers: dict[str, str]) -> ClientRecord:
    record = controller.store.get(controller.client_key(headers))
    assert record is not None
    return record


def test_fresh_identity_consume_is_allowed(
    controller: AdmissionController, make_request: MakeRequest
) -> None:
    result = controller.evaluate(
        make_request(), "consume", "A beautiful sunset over mountains"
    )
    assert result.allowed is True
    assert result.reason is None
    assert result.generations_left == 2
    assert result.message == "2 free generations remaining this month."
    assert result.reset_time == START_MS + MONTH_MS


def test_third_consume_is_last_and_fourth_hits_monthly_limit(
    controller: AdmissionController, clock: FakeClock, make_request: MakeRequest
) -> None:
    results = []
    for _ in range(4):
        results.append(controller.evaluate(make_request(), "consume", "A castle at dawn"))
        clock.advance(CALM_GAP_MS)

    third, fourth = results[2], results[3]
    assert third.allowed is True
    assert third.generations_left == 0
    assert third.message == "This was your last free generation this month."
    assert fourth.allowed is False
    assert fourth.reason is RejectionReason.MONTHLY_LIMIT
    assert fourth.generations_left == 0


@pytest.mark.parametrize("consumes", [1, 2, 3, 4, 5])
def test_generations_used_caps_at_free_quota(
    controller: AdmissionController,
    clock: FakeClock,
    make_request: MakeRequest,
    browser_headers: dict[str, str],
    consumes: int,
) -> None:
    for _ in range(consumes):
        controller.evaluate(make_request(), "consume")
        clock.advance(CALM_GAP_MS)

    assert _record(controller, browser_headers).generations_used == min(
        consumes, FREE_GENERATIONS
    )
    next_result = controller.evaluate(make_request(), "consume")
    assert next_result.allowed is (consumes < FREE_GENERATIONS)


def test_check_never_consumes(
    controller: AdmissionController,
    clock: FakeClock,
    make_request: MakeRequest,
    browser_headers: dict[str, str],
) -> None:
    for _ in range(6):
        result = controller.evaluate(make_request(), "check")
        assert result.allowed is True
        assert result.generations_left == FREE_GENERATIONS
        clock.advance(CALM_GAP_MS)

    assert _record(controller, browser_headers).generations_used == 0


def test_replayed_nonce_is_rejected(
    controller: AdmissionController, make_request: MakeRequest
) -> None:
    first = controller.evaluate(make_request(nonce="abc123"), "consume", "A quiet harbor")
    assert first.allowed is True

    second = controller.evaluate(make_request(nonce="abc123"), "consume", "A quiet harbor")
    assert second.allowed is False
    assert second.reason is RejectionReason.REPLAY_ATTACK
    assert second.suspicious is True
    assert second.generations_left == 0


def test_replay_is_rejected_regardless_of_other_fields(
    controller: AdmissionController, make_request: MakeRequest
) -> None:
    controller.evaluate(make_request(nonce="shared"), "check")
    other_client = {**BROWSER_HEADERS, "cf-connecting-ip": "1.1.1.1"}
    result = controller.evaluate(make_request(other_client, nonce="shared"), "check")
    assert result.reason is RejectionReason.REPLAY_ATTACK


@pytest.mark.parametrize("skew_ms", [-31_000, 31_000, -START_MS])
def test_clock_skew_is_rejected_without_touching_ledger(
    controller: AdmissionController, make_request: MakeRequest, skew_ms: int
) -> None:
    result = controller.evaluate(make_request(timestamp=START_MS + skew_ms), "consume")
    assert result.allowed is False
    assert result.reason is RejectionReason.INVALID_TIMESTAMP
    assert result.suspicious is True
    assert result.reset_time == START_MS + MONTH_MS
    assert len(controller.store) == 0


def test_skew_at_the_boundary_is_accepted(
    controller: AdmissionController, make_request: MakeRequest
) -> None:
    result = controller.evaluate(make_request(timestamp=START_MS - 30_000), "check")
    assert result.allowed is True


def test_unlisted_origin_is_rejected(
    controller: AdmissionController, make_request: MakeRequest
) -> None:
    rejected = controller.evaluate(make_request(origin="https://evil.example"), "check")
    assert rejected.reason is RejectionReason.INVALID_ORIGIN
    assert len(controller.store) == 0

    allowed = controller.evaluate(make_request(origin="http://localhost:3000"), "check")
    assert allowed.allowed is True


def test_invalid_prompt_costs_an_attempt_not_a_generation(
    controller: AdmissionController,
    make_request: MakeRequest,
    browser_headers: dict[str, str],
) -> None:
    result = controller.evaluate(make_request(), "consume", "aaaaaaaaaaaaaaa")
    assert result.allowed is False
    assert result.reason is RejectionReason.INVALID_PROMPT
    assert result.generations_left == FREE_GENERATIONS

    record = _record(controller, browser_headers)
    assert record.generations_used == 0
    assert record.attempt_count == 1
    assert record.suspicion_score == 1


def test_eleventh_attempt_within_an_hour_is_rate_limited(
    controller: AdmissionController,
    clock: FakeClock,
    make_request: MakeRequest,
    browser_headers: dict[str, str],
) -> None:
    for _ in range(10):
        assert controller.evaluate(make_request(), "check").allowed is True
        clock.advance(CALM_GAP_MS)

    eleventh_at = clock.now
    result = controller.evaluate(make_request(), "check")
    assert result.allowed is False
    assert result.reason is RejectionReason.RATE_LIMITED
    assert result.message == "Too many generation attempts. Please try again in 1 hour."

    record = _record(controller, browser_headers)
    assert record.blocked is True
    assert record.blocked_until == eleventh_at + HOUR_MS
    assert result.reset_time == record.blocked_until


def test_active_block_reports_remaining_minutes_then_expires(
    controller: AdmissionController,
    clock: FakeClock,
    make_request: MakeRequest,
    browser_headers: dict[str, str],
) -> None:
    for _ in range(11):
        controller.evaluate(make_request(), "check")
        clock.advance(CALM_GAP_MS)

    blocked = controller.evaluate(make_request(), "consume")
    assert blocked.reason is RejectionReason.RATE_LIMITED
    assert blocked.message == "Account blocked. Please try again in 59 minutes."
    assert _record(controller, browser_headers).generations_used == 0

    clock.advance(HOUR_MS)
    after = controller.evaluate(make_request(), "consume")
    assert after.allowed is True
    assert after.generations_left == 2

    record = _record(controller, browser_headers)
    assert record.blocked is False
    assert record.blocked_until == 0
    assert record.attempt_count == 1


def test_repeated_anomalies_escalate_to_suspicious_block(
    controller: AdmissionController,
    clock: FakeClock,
    make_request: MakeRequest,
) -> None:
    scripted = {"user-agent": "curl/8.4.0", "cf-connecting-ip": "8.8.4.4"}
    for _ in range(4):
        assert controller.evaluate(make_request(scripted), "check").allowed is True
        clock.advance(CALM_GAP_MS)

    result = controller.evaluate(make_request(scripted), "check")
    assert result.allowed is False
    assert result.reason is RejectionReason.SUSPICIOUS_ACTIVITY
    assert result.suspicious is True
    assert result.reset_time == clock.now + DAY_MS

    record = _record(controller, scripted)
    assert record.blocked is True
    assert record.suspicion_score == 5


def test_monthly_rollover_resets_usage_and_decays_suspicion(
    controller: AdmissionController,
    clock: FakeClock,
    make_request: MakeRequest,
    browser_headers: dict[str, str],
) -> None:
    for _ in range(3):
        controller.evaluate(make_request(), "consume")
        clock.advance(CALM_GAP_MS)
    key = controller.client_key(browser_headers)
    record = _record(controller, browser_headers)
    record.suspicion_score = 2
    controller.store.put(key, record)

    assert controller.evaluate(make_request(), "consume").reason is RejectionReason.MONTHLY_LIMIT

    clock.advance(MONTH_MS)
    result = controller.evaluate(make_request(), "consume")
    assert result.allowed is True
    assert result.generations_left == 2

    rolled = _record(controller, browser_headers)
    assert rolled.window_start == clock.now
    assert rolled.suspicion_score == 1
    assert result.reset_time == clock.now + MONTH_MS


def test_distinct_identities_do_not_share_state(
    controller: AdmissionController, clock: FakeClock, make_request: MakeRequest
) -> None:
    alice = {**BROWSER_HEADERS, "cf-connecting-ip": "8.8.8.8"}
    bob = {**BROWSER_HEADERS, "cf-connecting-ip": "1.1.1.1"}
    for _ in range(3):
        controller.evaluate(make_request(alice), "consume")
        clock.advance(CALM_GAP_MS)

    assert controller.evaluate(make_request(alice), "consume").allowed is False
    bob_result = controller.evaluate(make_request(bob), "consume")
    assert bob_result.allowed is True
    assert bob_result.generations_left == 2
    assert len(controller.store) == 2


def test_signature_is_only_enforced_when_enabled(clock: FakeClock) -> None:
    controller = AdmissionController(
        secret=TEST_SECRET,
        limits=RateLimitConfig(require_request_signature=True),
        clock=clock,
    )
    headers = {**BROWSER_HEADERS, "cf-connecting-ip": "8.8.8.8"}
    origin = "http://localhost:3000"

    unsigned = AdmissionRequest(headers=headers, timestamp=clock.now, nonce="n-1", origin=origin)
    assert controller.evaluate(unsigned, "check").reason is RejectionReason.INVALID_SIGNATURE

    signature = sign_request(TEST_SECRET, clock.now, "n-2", headers["user-agent"], origin)
    signed = AdmissionRequest(
        headers=headers, timestamp=clock.now, nonce="n-2", origin=origin, signature=signature
    )
    assert controller.evaluate(signed, "check").allowed is True


def test_unknown_action_is_a_programming_error(
    controller: AdmissionController, make_request: MakeRequest
) -> None:
    with pytest.raises(ValueError):
        controller.evaluate(make_request(), "refund")  # type: ignore[arg-type]


def test_stats_summarize_ledger_and_replay_store(
    controller: AdmissionController, clock: FakeClock, make_request: MakeRequest
) -> None:
    controller.evaluate(make_request(), "consume")
    controller.evaluate(make_request(), "consume", "aaaaaaaaaaaaaaa")
    blocked = {**BROWSER_HEADERS, "cf-connecting-ip": "9.9.9.9"}
    controller.store.put(
        controller.client_key(blocked),
        ClientRecord(blocked=True, blocked_until=clock.now + HOUR_MS),
    )

    stats = controller.stats()
    assert stats["totalUsers"] == 2
    assert stats["limits"]["FREE_GENERATIONS_PER_MONTH"] == FREE_GENERATIONS
    assert stats["security"] == {
        "nonceStoreSize": 2,
        "suspiciousBlocks": 1,
        "activeBlocks": 1,
    }


def test_concurrent_consumes_never_exceed_quota(
    controller: AdmissionController, browser_headers: dict[str, str], clock: FakeClock
) -> None:
    def consume() -> bool:
        request = AdmissionRequest(
            headers=browser_headers, timestamp=clock.now, nonce=uuid.uuid4().hex
        )
        return controller.evaluate(request, "consume").allowed

    with ThreadPoolExecutor(max_workers=8) as pool:
        outcomes = list(pool.map(lambda _: consume(), range(8)))

    assert outcomes.count(True) == FREE_GENERATIONS
    assert _record(controller, browser_headers).generations_used == FREE_GENERATIONS


def test_concurrent_first_use_builds_a_single_controller(mocker: MockerFixture) -> None:
    def slow_replay_service() -> ReplayProtectionService:
        time.sleep(0.05)
        return ReplayProtectionService()

    build = mocker.patch(
        "pixelsynth.services.admission.build_replay_service", side_effect=slow_replay_service
    )
    start = threading.Barrier(SINGLETON_CALLERS)

    def first_use() -> AdmissionController:
        start.wait()
        return get_admission_controller()

    with ThreadPoolExecutor(max_workers=SINGLETON_CALLERS) as pool:
        controllers = list(pool.map(lambda _: first_use(), range(SINGLETON_CALLERS)))

    assert build.call_count == 1
    assert all(candidate is controllers[0] for candidate in controllers)
