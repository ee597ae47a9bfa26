from __future__ import annotations

from showcapture.console import PendingCueResolution, PendingCueSlot, ReconnectPolicy


def test_inactive_policy_has_no_elapsed_time() -> None:
    policy = ReconnectPolicy()
    assert not policy.active
    assert policy.elapsed(500.0) == 0.0


def test_delays_switch_tier_at_elapsed_threshold() -> None:
    policy = ReconnectPolicy(fast_seconds=10, slow_seconds=30, tier_seconds=120)
    assert policy.begin(1000.0)

    assert policy.next_delay(1000.0) == 10
    assert policy.next_delay(1119.9) == 10
    assert policy.next_delay(1120.0) == 30
    assert policy.next_delay(1500.0) == 30


def test_simulated_attempt_schedule() -> None:
    policy = ReconnectPolicy()
    now = 0.0
    policy.begin(now)

    attempts = []
    for _ in range(15):
        now += policy.next_delay(now)
        attempts.append(now)

    assert attempts == [10.0 * i for i in range(1, 13)] + [150.0, 180.0, 210.0]


def test_begin_keeps_original_start_until_reset() -> None:
    policy = ReconnectPolicy()
    assert policy.begin(5.0)
    assert not policy.begin(50.0)
    assert policy.started_at == 5.0

    policy.reset()
    assert not policy.active
    assert policy.begin(50.0)
    assert policy.started_at == 50.0


def test_pending_slot_offer_supersedes_and_take_clears() -> None:
    slot = PendingCueSlot()
    first = PendingCueResolution(cue_list="1", cue_number="5")
    second = PendingCueResolution(cue_list="1", cue_number="7")

    assert slot.offer(first) is None
    assert slot.offer(second) == first
    assert slot.current == second

    assert slot.take() == second
    assert slot.take() is None

    slot.offer(first)
    slot.clear()
    assert slot.current is None
