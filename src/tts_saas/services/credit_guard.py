"""
Credit Guard: Authorize, Reserve and Release Character Credits.

One credit is one input character, counted on the text the caller sent
(for translate-tts that is the untranslated text).

Flow:
    decision = await guard.authorize(user_id, len(text))
    if isinstance(decision, Denial):
        raise decision.to_error()
    handle = await guard.reserve(decision)   # credits are gone now
    ...
    await handle.release()                   # upstream failed: exact refund
    handle.commit()                          # or: the deduction stands

authorize() is advisory; reserve() is the atomic check-and-deduct and may
still refuse when a concurrent request spent the balance in between.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union

from tts_saas.core.logging import get_logger, info, verbose, warn
from tts_saas.core.metrics import TTSSaaSMetrics, metrics as default_metrics
from tts_saas.ledger import LedgerStore, utcnow

from .errors import AuthorizationError, ErrorCode

_LOG = get_logger("tts-saas.credits")


@dataclass(frozen=True)
class Authorization:
    """The caller may spend ``amount`` credits on this subscription."""
    subscription_id: int
    user_id: str
    credits_used: int
    credits_purchased: int
    amount: int

    @property
    def credits_remaining(self) -> int:
        return self.credits_purchased - self.credits_used


@dataclass(frozen=True)
class Denial:
    """Why the caller may not generate."""
    reason: str
    needed: Optional[int] = None
    remaining: Optional[int] = None

    @property
    def shortfall(self) -> Optional[int]:
        if self.needed is None or self.remaining is None:
            return None
        return self.needed - self.remaining

    def to_error(self) -> AuthorizationError:
        if self.reason == ErrorCode.NO_SUBSCRIPTION:
            return AuthorizationError("No active subscription", self.reason)
        if self.reason == ErrorCode.EXPIRED:
            return AuthorizationError("Subscription has expired", self.reason)
        return AuthorizationError(
            "Insufficient credits",
            self.reason,
            {
                "creditsNeeded": self.needed,
                "creditsRemaining": self.remaining,
                "shortfall": self.shortfall,
            },
        )


class ReservationHandle:
    """
    Credits deducted for one generation.

    State moves from held to either committed (the deduction stands) or
    released (the deduction was reversed). Both transitions are
    idempotent; release after commit is refused.
    """

    HELD = "held"
    COMMITTED = "committed"
    RELEASED = "released"

    def __init__(
        self,
        ledger: LedgerStore,
        authorization: Authorization,
        credits_used: int,
        metrics: TTSSaaSMetrics,
    ):
        self._ledger = ledger
        self._metrics = metrics
        self.authorization = authorization
        # As written by this deduction, concurrent spends included
        self.credits_used = credits_used
        self.state = self.HELD

    @property
    def subscription_id(self) -> int:
        return self.authorization.subscription_id

    @property
    def amount(self) -> int:
        return self.authorization.amount

    @property
    def credits_purchased(self) -> int:
        return self.authorization.credits_purchased

    @property
    def credits_remaining(self) -> int:
        """Balance right after this deduction."""
        return self.credits_purchased - self.credits_used

    def commit(self) -> None:
        if self.state == self.HELD:
            self.state = self.COMMITTED
            verbose(_LOG, "credits_committed", subscription_id=self.subscription_id, amount=self.amount)

    async def release(self) -> bool:
        """
        Reverse the deduction exactly once.

        Returns:
            True if credits were given back by this call
        """
        if self.state == self.RELEASED:
            return False
        if self.state == self.COMMITTED:
            warn(_LOG, "release_refused", subscription_id=self.subscription_id, reason="committed")
            return False
        self.state = self.RELEASED
        applied = await self._ledger.refund(self.subscription_id, self.amount)
        if applied:
            self._metrics.record_released(self.amount)
            info(_LOG, "credits_released", subscription_id=self.subscription_id, amount=self.amount)
        else:
            warn(_LOG, "credits_release_missed", subscription_id=self.subscription_id, amount=self.amount)
        return applied


class CreditGuard:
    """
    Check and move a user's credits.

    Args:
        ledger: Ledger store holding the subscriptions
        metrics: Metrics collector (global one by default)
    """

    def __init__(self, ledger: LedgerStore, metrics: Optional[TTSSaaSMetrics] = None):
        self._ledger = ledger
        self._metrics = metrics or default_metrics

    async def authorize(
        self, user_id: str, input_length: int, now: Optional[datetime] = None
    ) -> Union[Authorization, Denial]:
        """
        Decide whether ``user_id`` may spend ``input_length`` credits.

        A subscription still marked active after its expiry is flipped to
        expired here, and the caller is told EXPIRED.
        """
        now = now or utcnow()
        sub = await self._ledger.get_active_subscription(user_id, now=now)

        if sub is None:
            expired = await self._ledger.expire_overdue(user_id, now=now)
            reason = ErrorCode.EXPIRED if expired else ErrorCode.NO_SUBSCRIPTION
            verbose(_LOG, "authorize_denied", user_id=user_id, reason=reason)
            return Denial(reason)

        remaining = sub.credits_purchased - sub.credits_used
        if remaining < input_length:
            verbose(_LOG, "authorize_denied", user_id=user_id, reason=ErrorCode.INSUFFICIENT_CREDITS,
                    needed=input_length, remaining=remaining)
            return Denial(ErrorCode.INSUFFICIENT_CREDITS, needed=input_length, remaining=remaining)

        return Authorization(
            subscription_id=sub.id,
            user_id=user_id,
            credits_used=sub.credits_used,
            credits_purchased=sub.credits_purchased,
            amount=input_length,
        )

    async def reserve(self, authorization: Authorization) -> ReservationHandle:
        """
        Deduct the authorized amount.

        Raises:
            AuthorizationError: INSUFFICIENT_CREDITS if the balance no longer
                covers the amount (nothing was deducted)
        """
        used = await self._ledger.deduct(authorization.subscription_id, authorization.amount)
        if used is None:
            fresh = await self._ledger.get_subscription(authorization.subscription_id)
            remaining = fresh.credits_remaining if fresh is not None else 0
            warn(_LOG, "reserve_rejected", subscription_id=authorization.subscription_id,
                 amount=authorization.amount, remaining=remaining)
            raise Denial(
                ErrorCode.INSUFFICIENT_CREDITS,
                needed=authorization.amount,
                remaining=remaining,
            ).to_error()

        self._metrics.record_reserved(authorization.amount)
        info(_LOG, "credits_reserved", subscription_id=authorization.subscription_id,
             amount=authorization.amount, credits_remaining=authorization.credits_purchased - used)
        return ReservationHandle(self._ledger, authorization, used, self._metrics)
