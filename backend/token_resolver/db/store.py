from __future__ import annotations

from typing import AsyncIterator, Iterable

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from token_resolver.db.models import TokenIdentity
from token_resolver.schemas.token import IdentityRecord


class DurableStoreUnavailable(Exception):
    """The identity database could not be reached or refused the operation."""


def _to_record(row: TokenIdentity) -> IdentityRecord:
    return IdentityRecord(
        address=row.address,
        symbol=row.symbol,
        name=row.name,
        image_url=row.image_url,
        source=row.source,
        last_updated=row.last_updated,
    )


class IdentityStore:
    """L3: durable, unexpiring identity records."""

    def __init__(self, session_factory: async_sessionmaker) -> None:
        self._session_factory = session_factory

    async def find(self, address: str) -> IdentityRecord | None:
        try:
            async with self._session_factory() as session:
                row = await session.get(TokenIdentity, address)
                return _to_record(row) if row is not None else None
        except (SQLAlchemyError, OSError) as exc:
            raise DurableStoreUnavailable(str(exc)) from exc

    async def upsert(self, record: IdentityRecord) -> None:
        values = record.model_dump()
        stmt = insert(TokenIdentity).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["address"],
            set_={key: stmt.excluded[key] for key in values if key != "address"},
        )
        try:
            async with self._session_factory() as session:
                await session.execute(stmt)
                await session.commit()
        except (SQLAlchemyError, OSError) as exc:
            raise DurableStoreUnavailable(str(exc)) from exc

    async def iter_records(self, batch_size: int = 500) -> AsyncIterator[IdentityRecord]:
        last_address = ""
        while True:
            try:
                async with self._session_factory() as session:
                    result = await session.execute(
                        select(TokenIdentity)
                        .where(TokenIdentity.address > last_address)
                        .order_by(TokenIdentity.address)
                        .limit(batch_size)
                    )
                    rows = result.scalars().all()
            except (SQLAlchemyError, OSError) as exc:
                raise DurableStoreUnavailable(str(exc)) from exc
            if not rows:
                return
            for row in rows:
                yield _to_record(row)
            last_address = rows[-1].address

    async def delete(self, addresses: Iterable[str]) -> int:
        targets = list(addresses)
        if not targets:
            return 0
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    delete(TokenIdentity).where(TokenIdentity.address.in_(targets))
                )
                await session.commit()
        except (SQLAlchemyError, OSError) as exc:
            raise DurableStoreUnavailable(str(exc)) from exc
        return int(result.rowcount or 0)
