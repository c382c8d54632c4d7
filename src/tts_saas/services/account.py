"""
Account Summary.

What the caller sees about their balance: the active subscription with
derived credit figures, plus generation counts.
"""
from __future__ import annotations

import math
from datetime import datetime
from typing import Any, Dict, Optional

from tts_saas.ledger import LedgerStore, Subscription, utcnow


def credits_percentage(credits_used: int, credits_purchased: int) -> float:
    """
    Share of purchased credits already used, in percent.

    Rounded to one decimal and capped at 100. Any usage at all shows as at
    least 1%, so a tiny spend is never displayed as 0.

    Examples:
        >>> credits_percentage(1, 100_000)
        1
        >>> credits_percentage(333, 1000)
        33.3
    """
    if credits_purchased <= 0:
        return 0
    raw = round(credits_used / credits_purchased * 100, 1)
    floor = 1 if credits_used > 0 else 0
    return min(100, max(floor, raw))


def days_remaining(expires_at: datetime, now: datetime) -> int:
    """Whole days left, rounded up, never negative."""
    seconds = (expires_at - now).total_seconds()
    return max(0, math.ceil(seconds / 86400))


def start_of_month(now: datetime) -> datetime:
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def _subscription_view(sub: Subscription, now: datetime) -> Dict[str, Any]:
    return {
        "id": sub.id,
        "planName": sub.plan_name,
        "status": sub.status,
        "startDate": sub.start_date,
        "expiresAt": sub.expires_at,
        "endDate": sub.end_date,
        "purchasedAt": sub.purchased_at,
        "creditsPurchased": sub.credits_purchased,
        "creditsUsed": sub.credits_used,
        "creditsRemaining": max(0, sub.credits_purchased - sub.credits_used),
        "creditsPercentage": credits_percentage(sub.credits_used, sub.credits_purchased),
        "daysRemaining": days_remaining(sub.expires_at, now),
    }


async def account_summary(ledger: LedgerStore, user_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Expire the caller's overdue subscriptions, then summarize the account.

    Returns:
        {"userId", "subscription": {...} | None,
         "stats": {"generationsThisMonth", "totalGenerations"}}
    """
    now = now or utcnow()
    await ledger.expire_overdue(user_id, now=now)
    sub = await ledger.get_active_subscription(user_id, now=now)

    this_month = await ledger.count_generations(user_id, since=start_of_month(now))
    total = await ledger.count_generations(user_id)

    return {
        "userId": user_id,
        "subscription": _subscription_view(sub, now) if sub is not None else None,
        "stats": {
            "generationsThisMonth": this_month,
            "totalGenerations": total,
        },
    }
