# subscriptions.py
import math
from datetime import timedelta

from database import now_utc, SubscriptionStatus


def _target_date(sub):
    if sub.status == SubscriptionStatus.TRIALING.value:
        return sub.trial_ends_at
    if sub.status == SubscriptionStatus.ACTIVE.value:
        return sub.current_period_end
    if sub.status == SubscriptionStatus.PAST_DUE.value:
        return sub.grace_period_ends_at
    return None


def days_remaining(sub, now=None) -> int:
    now = now or now_utc()
    target = _target_date(sub)
    if not target:
        return 0
    days = math.ceil((target - now).total_seconds() / 86400)
    return max(0, days)


def is_blocked(sub, now=None) -> bool:
    now = now or now_utc()
    if sub.status in (SubscriptionStatus.EXPIRED.value, SubscriptionStatus.CANCELED.value):
        return True
    if sub.status == SubscriptionStatus.TRIALING.value and sub.trial_ends_at and now > sub.trial_ends_at:
        return True
    if sub.status == SubscriptionStatus.PAST_DUE.value and sub.grace_period_ends_at and now > sub.grace_period_ends_at:
        return True
    return False


def subscription_state(sub, plan=None, now=None):
    """Subscription row plus the derived access flags.

    A missing subscription row does not lock the dashboard.
    """
    if not sub:
        return {"subscription": None, "plan": None, "days_remaining": 0,
                "is_blocked": False, "can_access_dashboard": True}
    blocked = is_blocked(sub, now)
    return {
        "subscription": sub.to_dict(),
        "plan": plan.to_dict() if plan else None,
        "days_remaining": days_remaining(sub, now),
        "is_blocked": blocked,
        "can_access_dashboard": not blocked,
    }


def trial_window(days, now=None):
    start = now or now_utc()
    return start, start + timedelta(days=int(days))
