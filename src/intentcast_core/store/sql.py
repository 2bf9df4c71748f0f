"""Durable relational record store (SQLAlchemy asyncio).

Each record is kept as its JSON document plus the scalar columns that
queries and compare-and-set updates need. Status transitions are expressed
as ``UPDATE ... WHERE id = :id AND status = :current`` inside one
transaction; a zero row count means another request won the race.
"""
from __future__ import annotations

import logging
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    delete,
    func,
    select,
    text,
    update,
)
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from ..exceptions import ConflictError, NotFoundError
from ..models import Intent, IntentStatus, Offer, OfferStatus, Provider, utc_now
from .base import (
    AcceptedOffer,
    ProviderRegistration,
    RecordStore,
    ensure_offer_acceptable,
    ensure_offer_admissible,
    filter_providers,
    refreshed_registration,
)

logger = logging.getLogger(__name__)

Base = declarative_base()


class DBIntent(Base):
    __tablename__ = "intents"

    pk = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(32), unique=True, nullable=False, index=True)
    status = Column(String(20), nullable=False, index=True)
    category = Column(String(255), nullable=False, index=True)
    requester_wallet = Column(String(64), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    data = Column(JSON, nullable=False)


class DBOffer(Base):
    __tablename__ = "offers"

    pk = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(32), unique=True, nullable=False, index=True)
    intent_id = Column(String(32), nullable=False, index=True)
    provider_id = Column(String(32), nullable=False, index=True)
    status = Column(String(20), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    data = Column(JSON, nullable=False)

    __table_args__ = (
        # At most one pending offer per (intent, provider).
        Index(
            "uq_offers_pending_per_provider",
            "intent_id",
            "provider_id",
            unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
    )


class DBProvider(Base):
    __tablename__ = "providers"

    pk = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(32), unique=True, nullable=False, index=True)
    agent_id = Column(String(255), unique=True, nullable=False, index=True)
    status = Column(String(20), nullable=False, index=True)
    registered_at = Column(DateTime(timezone=True), nullable=False)
    data = Column(JSON, nullable=False)


def _intent_columns(intent: Intent) -> dict[str, Any]:
    return {
        "status": intent.status.value,
        "category": intent.category,
        "requester_wallet": intent.requester_wallet,
        "data": intent.to_dict(),
    }


def _offer_columns(offer: Offer) -> dict[str, Any]:
    return {"status": offer.status.value, "data": offer.to_dict()}


def _provider_columns(provider: Provider) -> dict[str, Any]:
    return {
        "agent_id": provider.agent_id,
        "status": provider.status.value,
        "data": provider.to_dict(),
    }


class SqlRecordStore(RecordStore):
    """Record store on any SQLAlchemy async driver (aiosqlite, asyncpg)."""

    backend = "sql"

    def __init__(self, database_url: str, echo: bool = False) -> None:
        engine_kwargs: dict[str, Any] = {"echo": echo}
        if not database_url.startswith("sqlite"):
            engine_kwargs["pool_pre_ping"] = True
        self.database_url = database_url
        self._engine = create_async_engine(database_url, **engine_kwargs)
        self._session_factory = async_sessionmaker(self._engine, expire_on_commit=False)

    async def initialize(self) -> None:
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Record store schema ready (%s)", self._engine.url.get_backend_name())

    async def close(self) -> None:
        await self._engine.dispose()

    async def _intent_row(self, session: AsyncSession, intent_id: str, lock: bool = False):
        stmt = select(DBIntent).where(DBIntent.id == intent_id)
        if lock:
            stmt = stmt.with_for_update()
        return (await session.execute(stmt)).scalar_one_or_none()

    async def _offer_row(self, session: AsyncSession, offer_id: str, lock: bool = False):
        stmt = select(DBOffer).where(DBOffer.id == offer_id)
        if lock:
            stmt = stmt.with_for_update()
        return (await session.execute(stmt)).scalar_one_or_none()

    # -- intents ------------------------------------------------------------

    async def create_intent(self, intent: Intent) -> Intent:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    session.add(DBIntent(id=intent.id, created_at=intent.created_at, **_intent_columns(intent)))
        except IntegrityError as e:
            raise ConflictError(f"Intent '{intent.id}' already exists") from e
        return intent

    async def get_intent(self, intent_id: str) -> Optional[Intent]:
        async with self._session_factory() as session:
            row = await self._intent_row(session, intent_id)
            return Intent.model_validate(row.data) if row else None

    async def list_intents(
        self,
        status: Optional[str] = None,
        category: Optional[str] = None,
        requester_wallet: Optional[str] = None,
    ) -> list[Intent]:
        stmt = select(DBIntent)
        if status:
            stmt = stmt.where(DBIntent.status == getattr(status, "value", status))
        if category:
            stmt = stmt.where(func.lower(DBIntent.category) == category.lower())
        if requester_wallet:
            stmt = stmt.where(func.lower(DBIntent.requester_wallet) == requester_wallet.lower())
        stmt = stmt.order_by(DBIntent.created_at.desc(), DBIntent.pk.desc())
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [Intent.model_validate(row.data) for row in rows]

    async def update_intent(self, intent: Intent) -> Intent:
        async with self._session_factory() as session:
            async with session.begin():
                row = await self._intent_row(session, intent.id, lock=True)
                if row is None:
                    raise NotFoundError("Intent", intent.id)
                current = Intent.model_validate(row.data)
                merged = intent.with_changes(
                    status=current.status,
                    accepted_offer_id=current.accepted_offer_id,
                )
                await session.execute(
                    update(DBIntent).where(DBIntent.id == intent.id).values(**_intent_columns(merged))
                )
        return merged

    async def transition_intent(
        self,
        intent_id: str,
        expected: set[IntentStatus],
        new_status: IntentStatus,
        **changes: Any,
    ) -> Intent:
        async with self._session_factory() as session:
            async with session.begin():
                row = await self._intent_row(session, intent_id, lock=True)
                if row is None:
                    raise NotFoundError("Intent", intent_id)
                current = Intent.model_validate(row.data)
                if current.status not in expected:
                    raise ConflictError(
                        f"Intent is {current.status.value}",
                        current_state=current.status.value,
                    )
                updated = current.with_changes(status=new_status, **changes)
                await self._swap_intent(session, current, updated)
        return updated

    async def _swap_intent(self, session: AsyncSession, current: Intent, updated: Intent) -> None:
        result = await session.execute(
            update(DBIntent)
            .where(DBIntent.id == current.id, DBIntent.status == current.status.value)
            .values(**_intent_columns(updated))
        )
        if result.rowcount != 1:
            latest = await session.scalar(select(DBIntent.status).where(DBIntent.id == current.id))
            raise ConflictError(f"Intent is {latest}", current_state=latest)

    async def _swap_offer(self, session: AsyncSession, current: Offer, updated: Offer) -> None:
        result = await session.execute(
            update(DBOffer)
            .where(DBOffer.id == current.id, DBOffer.status == current.status.value)
            .values(**_offer_columns(updated))
        )
        if result.rowcount != 1:
            latest = await session.scalar(select(DBOffer.status).where(DBOffer.id == current.id))
            raise ConflictError(f"Offer is {latest}", current_state=latest)

    async def delete_intent(self, intent_id: str) -> bool:
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(delete(DBIntent).where(DBIntent.id == intent_id))
        return result.rowcount > 0

    # -- offers -------------------------------------------------------------

    async def create_offer(self, offer: Offer) -> Offer:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    row = await self._intent_row(session, offer.intent_id, lock=True)
                    if row is None:
                        raise NotFoundError("Intent", offer.intent_id)
                    siblings = (
                        await session.execute(select(DBOffer).where(DBOffer.intent_id == offer.intent_id))
                    ).scalars().all()
                    ensure_offer_admissible(
                        Intent.model_validate(row.data),
                        offer,
                        [Offer.model_validate(s.data) for s in siblings],
                    )
                    session.add(
                        DBOffer(
                            id=offer.id,
                            intent_id=offer.intent_id,
                            provider_id=offer.provider_id,
                            created_at=offer.created_at,
                            **_offer_columns(offer),
                        )
                    )
        except IntegrityError as e:
            raise ConflictError(
                "Provider already has a pending offer on this intent",
                current_state=OfferStatus.PENDING.value,
            ) from e
        return offer

    async def get_offer(self, offer_id: str) -> Optional[Offer]:
        async with self._session_factory() as session:
            row = await self._offer_row(session, offer_id)
            return Offer.model_validate(row.data) if row else None

    async def list_offers_by_intent(self, intent_id: str) -> list[Offer]:
        stmt = (
            select(DBOffer)
            .where(DBOffer.intent_id == intent_id)
            .order_by(DBOffer.created_at.asc(), DBOffer.pk.asc())
        )
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [Offer.model_validate(row.data) for row in rows]

    async def list_offers_by_provider(self, provider_id: str) -> list[Offer]:
        stmt = (
            select(DBOffer)
            .where(DBOffer.provider_id == provider_id)
            .order_by(DBOffer.created_at.desc(), DBOffer.pk.desc())
        )
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [Offer.model_validate(row.data) for row in rows]

    async def transition_offer(
        self,
        offer_id: str,
        expected: set[OfferStatus],
        new_status: OfferStatus,
    ) -> Offer:
        async with self._session_factory() as session:
            async with session.begin():
                row = await self._offer_row(session, offer_id, lock=True)
                if row is None:
                    raise NotFoundError("Offer", offer_id)
                current = Offer.model_validate(row.data)
                if current.status not in expected:
                    raise ConflictError(
                        f"Offer is {current.status.value}",
                        current_state=current.status.value,
                    )
                updated = current.with_changes(status=new_status)
                await self._swap_offer(session, current, updated)
        return updated

    async def accept_offer(self, intent_id: str, offer_id: str) -> AcceptedOffer:
        async with self._session_factory() as session:
            async with session.begin():
                intent_row = await self._intent_row(session, intent_id, lock=True)
                offer_row = await self._offer_row(session, offer_id, lock=True)
                intent = Intent.model_validate(intent_row.data) if intent_row else None
                offer = Offer.model_validate(offer_row.data) if offer_row else None
                ensure_offer_acceptable(intent_id, offer_id, intent, offer)

                now = utc_now()
                matched = intent.with_changes(
                    status=IntentStatus.MATCHED,
                    accepted_offer_id=offer_id,
                    updated_at=now,
                )
                accepted = offer.with_changes(status=OfferStatus.ACCEPTED, updated_at=now)
                await self._swap_intent(session, intent, matched)
                await self._swap_offer(session, offer, accepted)

                pending = (
                    await session.execute(
                        select(DBOffer).where(
                            DBOffer.intent_id == intent_id,
                            DBOffer.id != offer_id,
                            DBOffer.status == OfferStatus.PENDING.value,
                        ).order_by(DBOffer.pk)
                    )
                ).scalars().all()
                rejected = []
                for row in pending:
                    sibling = Offer.model_validate(row.data)
                    loser = sibling.with_changes(status=OfferStatus.REJECTED, updated_at=now)
                    await self._swap_offer(session, sibling, loser)
                    rejected.append(loser)
        return AcceptedOffer(intent=matched, offer=accepted, rejected=rejected)

    async def delete_offer(self, offer_id: str) -> bool:
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(delete(DBOffer).where(DBOffer.id == offer_id))
        return result.rowcount > 0

    # -- providers ----------------------------------------------------------

    async def register_provider(self, provider: Provider) -> ProviderRegistration:
        try:
            return await self._upsert_provider(provider)
        except IntegrityError:
            # A concurrent registration inserted the same agent_id first.
            return await self._upsert_provider(provider)

    async def _upsert_provider(self, provider: Provider) -> ProviderRegistration:
        async with self._session_factory() as session:
            async with session.begin():
                stmt = select(DBProvider).where(DBProvider.agent_id == provider.agent_id).with_for_update()
                row = (await session.execute(stmt)).scalar_one_or_none()
                if row is None:
                    session.add(
                        DBProvider(
                            id=provider.id,
                            registered_at=provider.registered_at,
                            **_provider_columns(provider),
                        )
                    )
                    return ProviderRegistration(provider=provider, created=True)
                refreshed = refreshed_registration(Provider.model_validate(row.data), provider)
                await session.execute(
                    update(DBProvider).where(DBProvider.id == refreshed.id).values(**_provider_columns(refreshed))
                )
                return ProviderRegistration(provider=refreshed, created=False)

    async def get_provider(self, provider_id: str) -> Optional[Provider]:
        async with self._session_factory() as session:
            row = await session.scalar(select(DBProvider).where(DBProvider.id == provider_id))
            return Provider.model_validate(row.data) if row else None

    async def get_provider_by_agent_id(self, agent_id: str) -> Optional[Provider]:
        async with self._session_factory() as session:
            row = await session.scalar(select(DBProvider).where(DBProvider.agent_id == agent_id))
            return Provider.model_validate(row.data) if row else None

    async def list_providers(
        self,
        status: Optional[str] = None,
        category: Optional[str] = None,
    ) -> list[Provider]:
        stmt = select(DBProvider)
        if status:
            stmt = stmt.where(DBProvider.status == getattr(status, "value", status))
        stmt = stmt.order_by(DBProvider.registered_at.desc(), DBProvider.pk.desc())
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
            providers = [Provider.model_validate(row.data) for row in rows]
        # Categories live inside the profile document.
        return filter_providers(providers, category=category)

    async def update_provider(self, provider: Provider) -> Provider:
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(DBProvider).where(DBProvider.id == provider.id).values(**_provider_columns(provider))
                )
                if result.rowcount != 1:
                    raise NotFoundError("Provider", provider.id)
        return provider

    async def delete_provider(self, provider_id: str) -> bool:
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(delete(DBProvider).where(DBProvider.id == provider_id))
        return result.rowcount > 0

    # -- monitoring ---------------------------------------------------------

    async def stats(self) -> dict[str, Any]:
        async with self._session_factory() as session:
            by_status = dict(
                (await session.execute(select(DBIntent.status, func.count()).group_by(DBIntent.status))).all()
            )
            offers = await session.scalar(select(func.count()).select_from(DBOffer))
            providers = await session.scalar(select(func.count()).select_from(DBProvider))
            online = await session.scalar(
                select(func.count()).select_from(DBProvider).where(DBProvider.status == "online")
            )
        return {
            "backend": self.backend,
            "intents": sum(by_status.values()),
            "offers": offers or 0,
            "providers": providers or 0,
            "onlineProviders": online or 0,
            "intentsByStatus": by_status,
        }
