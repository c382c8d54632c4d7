"""
Ledger Store.

Durable state for subscriptions, generation records and voice clones.

Every public method is a coroutine: the synchronous SQLModel session runs
in a worker thread (anyio.to_thread.run_sync), so each ledger call is a
suspension point for the event loop and never blocks other requests.

Credit Arithmetic:
    Deduction is one conditional UPDATE:

        UPDATE subscriptions
           SET credits_used = credits_used + :n
         WHERE id = :id AND status = 'active'
           AND credits_used + :n <= credits_purchased

    One affected row means the credits were taken; zero means the balance
    (or the subscription) no longer allows it. Two concurrent deductions
    can therefore never jointly overdraw a balance.

    Refund is the relative reversal ``credits_used = credits_used - :n``,
    never a write-back of a previously read value.

Record Status:
    Generation records leave ``processing`` exactly once; the terminal
    update is conditional on the current status, so a late second
    transition affects no rows.
"""
from __future__ import annotations

import functools
from datetime import datetime, timedelta
from typing import Any, Callable, List, Optional, Tuple, TypeVar

import anyio
from sqlalchemy import func, update
from sqlalchemy.engine import Engine
from sqlmodel import col, select

from tts_saas.core.logging import debug, get_logger, info, verbose

from .database import build_engine, init_db, session_scope, sqlite_retry
from .models import (
    GenerationRecord,
    GenerationStatus,
    Subscription,
    SubscriptionStatus,
    VoiceClone,
    utcnow,
)

_LOG = get_logger("tts-saas.ledger")

T = TypeVar("T")


class LedgerStore:
    """
    Async facade over the ledger database.

    Args:
        engine: SQLAlchemy engine (see database.build_engine)

    Example:
        >>> store = LedgerStore.from_url("sqlite:///./data/tts-saas.db")
        >>> await store.grant_subscription("user-1", credits=10_000, days=30)
    """

    def __init__(self, engine: Engine):
        self._engine = engine

    @classmethod
    def from_url(cls, url: str, create: bool = True) -> "LedgerStore":
        engine = build_engine(url)
        if create:
            init_db(engine)
        return cls(engine)

    @property
    def engine(self) -> Engine:
        return self._engine

    def create_tables(self) -> None:
        init_db(self._engine)

    def dispose(self) -> None:
        self._engine.dispose()

    async def _run(self, fn: Callable[..., T], *args: Any) -> T:
        call = functools.partial(fn, *args)
        return await anyio.to_thread.run_sync(functools.partial(sqlite_retry, call))

    # ─── Subscriptions ─────────────────────────────────────────────────────

    def _grant_subscription(
        self, user_id: str, credits: int, days: int, plan_name: str, now: datetime
    ) -> Subscription:
        with session_scope(self._engine) as session:
            session.exec(
                update(Subscription)
                .where(col(Subscription.user_id) == user_id)
                .where(col(Subscription.status) == SubscriptionStatus.ACTIVE)
                .values(status=SubscriptionStatus.EXPIRED, end_date=now)
            )
            sub = Subscription(
                user_id=user_id,
                plan_name=plan_name,
                status=SubscriptionStatus.ACTIVE,
                credits_purchased=credits,
                credits_used=0,
                start_date=now,
                purchased_at=now,
                expires_at=now + timedelta(days=days),
            )
            session.add(sub)
            session.flush()
            session.refresh(sub)
            return sub

    async def grant_subscription(
        self,
        user_id: str,
        credits: int,
        days: int,
        plan_name: str = "default",
        now: Optional[datetime] = None,
    ) -> Subscription:
        """
        Create an active subscription, expiring any previous active one.

        Raises:
            ValueError: If credits or days are not positive
        """
        if credits <= 0 or days <= 0:
            raise ValueError("credits and days must be positive")
        sub = await self._run(self._grant_subscription, user_id, credits, days, plan_name, now or utcnow())
        info(_LOG, "subscription_granted", user_id=user_id, subscription_id=sub.id, credits=credits, days=days)
        return sub

    def _get_active_subscription(self, user_id: str, now: Optional[datetime]) -> Optional[Subscription]:
        with session_scope(self._engine) as session:
            stmt = (
                select(Subscription)
                .where(Subscription.user_id == user_id)
                .where(Subscription.status == SubscriptionStatus.ACTIVE)
            )
            if now is not None:
                stmt = stmt.where(Subscription.expires_at > now)
            stmt = stmt.order_by(col(Subscription.purchased_at).desc(), col(Subscription.id).desc())
            return session.exec(stmt).first()

    async def get_active_subscription(
        self, user_id: str, now: Optional[datetime] = None
    ) -> Optional[Subscription]:
        """
        The user's active subscription.

        When ``now`` is given, subscriptions whose expiry has passed are
        ignored even if their status still says active.
        """
        return await self._run(self._get_active_subscription, user_id, now)

    def _get_subscription(self, subscription_id: int) -> Optional[Subscription]:
        with session_scope(self._engine) as session:
            return session.get(Subscription, subscription_id)

    async def get_subscription(self, subscription_id: int) -> Optional[Subscription]:
        return await self._run(self._get_subscription, subscription_id)

    def _expire_overdue(self, user_id: Optional[str], now: datetime) -> int:
        with self._engine.begin() as conn:
            stmt = (
                update(Subscription)
                .where(col(Subscription.status) == SubscriptionStatus.ACTIVE)
                .where(col(Subscription.expires_at) <= now)
            )
            if user_id is not None:
                stmt = stmt.where(col(Subscription.user_id) == user_id)
            result = conn.execute(stmt.values(status=SubscriptionStatus.EXPIRED, end_date=now))
            return result.rowcount

    async def expire_overdue(self, user_id: Optional[str] = None, now: Optional[datetime] = None) -> int:
        """
        Flip active subscriptions past their expiry to expired.

        Args:
            user_id: Limit the sweep to one user (None sweeps everyone)

        Returns:
            Number of subscriptions expired
        """
        count = await self._run(self._expire_overdue, user_id, now or utcnow())
        if count:
            info(_LOG, "subscriptions_expired", count=count, user_id=user_id or "*")
        return count

    def _deduct(self, subscription_id: int, amount: int) -> Optional[int]:
        with self._engine.begin() as conn:
            result = conn.execute(
                update(Subscription)
                .where(col(Subscription.id) == subscription_id)
                .where(col(Subscription.status) == SubscriptionStatus.ACTIVE)
                .where(col(Subscription.credits_used) + amount <= col(Subscription.credits_purchased))
                .values(credits_used=col(Subscription.credits_used) + amount)
            )
            if result.rowcount != 1:
                return None
            # Read back inside the deducting transaction
            return conn.execute(
                select(Subscription.credits_used).where(col(Subscription.id) == subscription_id)
            ).scalar_one()

    async def deduct(self, subscription_id: int, amount: int) -> Optional[int]:
        """
        Atomically take ``amount`` credits if the balance allows it.

        Returns:
            ``credits_used`` as written by this deduction, or None if
            nothing changed
        """
        used = await self._run(self._deduct, subscription_id, amount)
        debug(_LOG, "deduct", subscription_id=subscription_id, amount=amount,
              applied=used is not None, credits_used=used)
        return used

    async def try_deduct(self, subscription_id: int, amount: int) -> bool:
        """Like deduct(), reporting only whether the credits were taken."""
        return await self.deduct(subscription_id, amount) is not None

    def _refund(self, subscription_id: int, amount: int) -> bool:
        with self._engine.begin() as conn:
            result = conn.execute(
                update(Subscription)
                .where(col(Subscription.id) == subscription_id)
                .where(col(Subscription.credits_used) >= amount)
                .values(credits_used=col(Subscription.credits_used) - amount)
            )
            return result.rowcount == 1

    async def refund(self, subscription_id: int, amount: int) -> bool:
        """Give back exactly ``amount`` credits previously deducted."""
        ok = await self._run(self._refund, subscription_id, amount)
        debug(_LOG, "refund", subscription_id=subscription_id, amount=amount, applied=ok)
        return ok

    # ─── Generation records ────────────────────────────────────────────────

    def _create_generation(self, record: GenerationRecord) -> GenerationRecord:
        with session_scope(self._engine) as session:
            session.add(record)
            session.flush()
            session.refresh(record)
            return record

    async def create_generation(self, record: GenerationRecord) -> GenerationRecord:
        created = await self._run(self._create_generation, record)
        verbose(_LOG, "generation_record_created", generation_id=created.id, status=created.status)
        return created

    def _finish_generation(self, generation_id: str, status: str, now: datetime) -> bool:
        with self._engine.begin() as conn:
            result = conn.execute(
                update(GenerationRecord)
                .where(col(GenerationRecord.id) == generation_id)
                .where(col(GenerationRecord.status) == GenerationStatus.PROCESSING)
                .values(status=status, completed_at=now)
            )
            return result.rowcount == 1

    async def finish_generation(self, generation_id: str, status: str) -> bool:
        """
        Move a record from processing to a terminal status.

        Returns:
            False if the record had already left processing (no change)
        """
        if status not in GenerationStatus.TERMINAL:
            raise ValueError(f"not a terminal status: {status}")
        applied = await self._run(self._finish_generation, generation_id, status, utcnow())
        verbose(_LOG, "generation_record_finished", generation_id=generation_id, status=status, applied=applied)
        return applied

    def _get_generation(self, generation_id: str) -> Optional[GenerationRecord]:
        with session_scope(self._engine) as session:
            return session.get(GenerationRecord, generation_id)

    async def get_generation(self, generation_id: str) -> Optional[GenerationRecord]:
        return await self._run(self._get_generation, generation_id)

    def _list_generations(self, user_id: str, limit: int, offset: int) -> Tuple[List[GenerationRecord], int]:
        with session_scope(self._engine) as session:
            rows = session.exec(
                select(GenerationRecord)
                .where(GenerationRecord.user_id == user_id)
                .order_by(col(GenerationRecord.created_at).desc(), col(GenerationRecord.id).desc())
                .offset(offset)
                .limit(limit)
            ).all()
            total = session.exec(
                select(func.count()).select_from(GenerationRecord).where(GenerationRecord.user_id == user_id)
            ).one()
            return list(rows), int(total)

    async def list_generations(
        self, user_id: str, limit: int = 20, offset: int = 0
    ) -> Tuple[List[GenerationRecord], int]:
        """Newest-first page of a user's records plus the total count."""
        return await self._run(self._list_generations, user_id, limit, offset)

    def _count_generations(self, user_id: str, since: Optional[datetime]) -> int:
        with session_scope(self._engine) as session:
            stmt = select(func.count()).select_from(GenerationRecord).where(GenerationRecord.user_id == user_id)
            if since is not None:
                stmt = stmt.where(GenerationRecord.created_at >= since)
            return int(session.exec(stmt).one())

    async def count_generations(self, user_id: str, since: Optional[datetime] = None) -> int:
        return await self._run(self._count_generations, user_id, since)

    # ─── Voice clones ──────────────────────────────────────────────────────

    def _find_voice_clone(self, user_id: str, voice_id: str) -> Optional[VoiceClone]:
        with session_scope(self._engine) as session:
            return session.exec(
                select(VoiceClone)
                .where(VoiceClone.user_id == user_id)
                .where(VoiceClone.voice_id == voice_id)
                .where(VoiceClone.active == True)  # noqa: E712
            ).first()

    async def find_voice_clone(self, user_id: str, voice_id: str) -> Optional[VoiceClone]:
        """The user's active voice clone with this upstream handle, if any."""
        return await self._run(self._find_voice_clone, user_id, voice_id)

    def _register_voice_clone(self, user_id: str, voice_id: str, name: str) -> VoiceClone:
        with session_scope(self._engine) as session:
            clone = VoiceClone(user_id=user_id, voice_id=voice_id, name=name, active=True)
            session.add(clone)
            session.flush()
            session.refresh(clone)
            return clone

    async def register_voice_clone(self, user_id: str, voice_id: str, name: str) -> VoiceClone:
        clone = await self._run(self._register_voice_clone, user_id, voice_id, name)
        info(_LOG, "voice_clone_registered", user_id=user_id, voice_id=voice_id)
        return clone
