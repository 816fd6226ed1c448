from datetime import datetime, timedelta
from types import SimpleNamespace

from subscriptions import days_remaining, is_blocked, subscription_state, trial_window


NOW = datetime(2026, 10, 19, 12, 0)


def sub(status, **dates):
    fields = {"trial_ends_at": None, "current_period_end": None, "grace_period_ends_at": None}
    fields.update(dates)
    return SimpleNamespace(status=status, to_dict=lambda: {"status": status}, **fields)


def test_days_remaining_rounds_up():
    trial = sub("trialing", trial_ends_at=NOW + timedelta(days=2, hours=1))
    assert days_remaining(trial, NOW) == 3


def test_days_remaining_never_negative():
    active = sub("active", current_period_end=NOW - timedelta(days=4))
    assert days_remaining(active, NOW) == 0
    assert days_remaining(sub("canceled"), NOW) == 0


def test_blocking_rules():
    assert is_blocked(sub("expired"), NOW)
    assert is_blocked(sub("canceled"), NOW)
    assert is_blocked(sub("trialing", trial_ends_at=NOW - timedelta(minutes=1)), NOW)
    assert not is_blocked(sub("trialing", trial_ends_at=NOW + timedelta(days=1)), NOW)
    assert not is_blocked(sub("past_due", grace_period_ends_at=NOW + timedelta(days=1)), NOW)
    assert is_blocked(sub("past_due", grace_period_ends_at=NOW - timedelta(days=1)), NOW)


def test_state_without_subscription():
    state = subscription_state(None)
    assert state["is_blocked"] is False
    assert state["can_access_dashboard"] is True


def test_state_with_subscription():
    state = subscription_state(sub("expired"), now=NOW)
    assert state["subscription"] == {"status": "expired"}
    assert state["plan"] is None
    assert state["can_access_dashboard"] is False


def test_trial_window():
    start, end = trial_window(7, NOW)
    assert start == NOW
    assert end - start == timedelta(days=7)
