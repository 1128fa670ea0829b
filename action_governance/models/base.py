"""Shared SQLModel base with a small chainable query manager."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, ClassVar, Generic, TypeVar

from sqlalchemy import func
from sqlmodel import SQLModel, col, select

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession
    from sqlmodel.sql.expression import SelectOfScalar

ModelT = TypeVar("ModelT", bound="QueryModel")


class ModelQuery(Generic[ModelT]):
    """Immutable wrapper around a `select(Model)` statement."""

    def __init__(self, model: type[ModelT], statement: SelectOfScalar[ModelT] | None = None) -> None:
        self.model = model
        self.statement = statement if statement is not None else select(model)

    def _with(self, statement: SelectOfScalar[ModelT]) -> ModelQuery[ModelT]:
        return ModelQuery(self.model, statement)

    def filter_by(self, **kwargs: Any) -> ModelQuery[ModelT]:
        return self._with(self.statement.filter_by(**kwargs))

    def filter(self, *criteria: Any) -> ModelQuery[ModelT]:
        return self._with(self.statement.where(*criteria))

    def order_by(self, *clauses: Any) -> ModelQuery[ModelT]:
        return self._with(self.statement.order_by(*clauses))

    def offset(self, value: int) -> ModelQuery[ModelT]:
        return self._with(self.statement.offset(value))

    def limit(self, value: int) -> ModelQuery[ModelT]:
        return self._with(self.statement.limit(value))

    def for_update(self) -> ModelQuery[ModelT]:
        return self._with(self.statement.with_for_update())

    async def all(self, session: AsyncSession) -> list[ModelT]:
        return list(await session.exec(self.statement))

    async def first(self, session: AsyncSession) -> ModelT | None:
        return (await session.exec(self.statement)).first()

    async def count(self, session: AsyncSession) -> int:
        subquery = self.statement.order_by(None).limit(None).offset(None).subquery()
        statement = select(func.count()).select_from(subquery)
        return int((await session.exec(statement)).one())


class _ObjectsDescriptor:
    def __get__(self, _instance: object, owner: type[ModelT]) -> ModelManager[ModelT]:
        return ModelManager(owner)


class ModelManager(Generic[ModelT]):
    """Entry point for queries: `Model.objects.filter_by(...).all(session)`."""

    def __init__(self, model: type[ModelT]) -> None:
        self.model = model

    def all(self) -> ModelQuery[ModelT]:
        return ModelQuery(self.model)

    def by_id(self, value: object) -> ModelQuery[ModelT]:
        return ModelQuery(self.model).filter(col(self.model.id) == value)  # type: ignore[attr-defined]

    def filter_by(self, **kwargs: Any) -> ModelQuery[ModelT]:
        return ModelQuery(self.model).filter_by(**kwargs)

    def filter(self, *criteria: Any) -> ModelQuery[ModelT]:
        return ModelQuery(self.model).filter(*criteria)


class QueryModel(SQLModel):
    """Base class for table models exposing the `objects` query manager."""

    objects: ClassVar[_ObjectsDescriptor] = _ObjectsDescriptor()
