"""Business data store adapter used by the action executor.

Collections are addressed by code; a resolver maps each code to a physical
table. All statements are built with SQLAlchemy Core so values are always
bound parameters, and table and column names are checked against a strict
identifier pattern before they reach SQL.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Protocol
from uuid import uuid4

import sqlalchemy as sa
from fastapi.encoders import jsonable_encoder

from action_governance.core.config import settings
from action_governance.core.logging import get_logger
from action_governance.core.targets import normalize_collection

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession

logger = get_logger(__name__)

_IDENTIFIER = re.compile(r"^[a-z_][a-z0-9_]*$")
ID_COLUMN = "id"


class DataStoreError(Exception):
    """A business data operation could not be carried out."""

    code = "DATA_STORE_ERROR"


class UnknownCollection(DataStoreError):
    code = "UNKNOWN_COLLECTION"


class RecordNotFound(DataStoreError):
    code = "RECORD_NOT_FOUND"


class BusinessDataStore(Protocol):
    async def read_row(self, collection: str, record_id: str) -> dict[str, Any] | None: ...

    async def insert_row(self, collection: str, values: Mapping[str, Any]) -> dict[str, Any]: ...

    async def update_row(
        self,
        collection: str,
        record_id: str,
        changes: Mapping[str, Any],
    ) -> dict[str, Any]: ...

    async def delete_row(self, collection: str, record_id: str) -> bool: ...


def _check_identifier(name: str, *, kind: str) -> str:
    if not _IDENTIFIER.match(name):
        raise DataStoreError(f"Invalid {kind} name: {name!r}")
    return name


class CollectionTableResolver:
    """Maps normalized collection codes to table names."""

    def __init__(self, overrides: Mapping[str, str] | None = None) -> None:
        source = settings.collection_table_map if overrides is None else overrides
        self.overrides = {normalize_collection(code): table for code, table in source.items()}

    def resolve(self, collection: str) -> str:
        code = normalize_collection(collection)
        if not code:
            raise UnknownCollection("Action target does not name a collection")
        table_name = self.overrides.get(code, code)
        return _check_identifier(table_name, kind="table")


def _row_to_dict(row: Mapping[str, Any]) -> dict[str, Any]:
    # Decimals are kept as exact strings, not floats.
    return jsonable_encoder(dict(row), custom_encoder={Decimal: str})


class SqlBusinessDataStore:
    """Reads and writes business rows on the caller's session.

    Nothing is committed here: the executor owns the transaction so that the
    write and its audit finalization land together.
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        resolver: CollectionTableResolver | None = None,
    ) -> None:
        self.session = session
        self.resolver = resolver or CollectionTableResolver()

    def _table(self, collection: str, columns: list[str] | None = None) -> sa.TableClause:
        name = self.resolver.resolve(collection)
        names = [ID_COLUMN, *(c for c in (columns or []) if c != ID_COLUMN)]
        return sa.table(name, *(sa.column(_check_identifier(c, kind="column")) for c in names))

    async def read_row(self, collection: str, record_id: str) -> dict[str, Any] | None:
        table = self._table(collection)
        statement = (
            sa.select(sa.literal_column("*"))
            .select_from(table)
            .where(table.c.id == record_id)
        )
        result = await self.session.exec(statement)  # type: ignore[call-overload]
        row = result.mappings().first()
        return _row_to_dict(row) if row is not None else None

    async def insert_row(self, collection: str, values: Mapping[str, Any]) -> dict[str, Any]:
        data = dict(values)
        data.setdefault(ID_COLUMN, str(uuid4()))
        record_id = str(data[ID_COLUMN])
        table = self._table(collection, list(data))
        await self.session.exec(sa.insert(table).values(**data))  # type: ignore[call-overload]
        inserted = await self.read_row(collection, record_id)
        if inserted is None:
            raise DataStoreError(f"Inserted row {collection}/{record_id} could not be read back")
        logger.debug("data_store.inserted", extra={"collection": collection, "record_id": record_id})
        return inserted

    async def update_row(
        self,
        collection: str,
        record_id: str,
        changes: Mapping[str, Any],
    ) -> dict[str, Any]:
        data = {key: value for key, value in changes.items() if key != ID_COLUMN}
        if data:
            table = self._table(collection, list(data))
            result = await self.session.exec(  # type: ignore[call-overload]
                sa.update(table).where(table.c.id == record_id).values(**data),
            )
            if result.rowcount == 0:
                raise RecordNotFound(f"Record {collection}/{record_id} does not exist")
        updated = await self.read_row(collection, record_id)
        if updated is None:
            raise RecordNotFound(f"Record {collection}/{record_id} does not exist")
        logger.debug("data_store.updated", extra={"collection": collection, "record_id": record_id})
        return updated

    async def delete_row(self, collection: str, record_id: str) -> bool:
        table = self._table(collection)
        result = await self.session.exec(  # type: ignore[call-overload]
            sa.delete(table).where(table.c.id == record_id),
        )
        deleted = bool(result.rowcount)
        logger.debug(
            "data_store.deleted",
            extra={"collection": collection, "record_id": record_id, "deleted": deleted},
        )
        return deleted
