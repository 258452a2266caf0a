from __future__ import annotations

from dataclasses import dataclass
import math
from typing import Any, Generic, Sequence, TypeVar

from pydantic import BaseModel
from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from pawnbroker.errors import NotFoundError, ValidationError


TModel = TypeVar("TModel")

MAX_PAGE_SIZE = 100


def _to_dict(obj: Any, *, exclude_unset: bool = True) -> dict[str, Any]:
    """Best-effort conversion for Pydantic models / plain dict payloads."""

    if obj is None:
        return {}
    if isinstance(obj, dict):
        return obj
    if isinstance(obj, BaseModel):
        return obj.model_dump(exclude_unset=exclude_unset)
    return dict(vars(obj))


@dataclass(frozen=True)
class Page(Generic[TModel]):
    items: list[TModel]
    page: int
    limit: int
    total: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.total else 0

    def pagination(self) -> dict[str, int]:
        return {"page": self.page, "limit": self.limit, "total": self.total, "pages": self.pages}


def check_page(page: int, limit: int) -> None:
    if page < 1:
        raise ValidationError("page must be >= 1", field="page")
    if limit < 1 or limit > MAX_PAGE_SIZE:
        raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}", field="limit")


async def paginate(session: AsyncSession, stmt: Select, *, page: int = 1, limit: int = 20) -> Page:
    """Run ``stmt`` for one page and count the unpaginated result."""

    check_page(page, limit)

    count_q = select(func.count()).select_from(stmt.order_by(None).subquery())
    total = int((await session.execute(count_q)).scalar_one())

    res = await session.execute(stmt.offset((page - 1) * limit).limit(limit))
    return Page(items=list(res.scalars().all()), page=page, limit=limit, total=total)


class BaseCRUD(Generic[TModel]):
    """Generic lookups for SQLAlchemy (async).

    Methods never commit; the calling service owns the transaction.
    """

    def __init__(self, model: type[TModel], *, label: str | None = None) -> None:
        self.model = model
        self.label = label or model.__name__

    async def get(self, session: AsyncSession, *, id: Any) -> TModel | None:
        r = await session.execute(select(self.model).where(getattr(self.model, "id") == id))
        return r.scalar_one_or_none()

    async def get_or_404(self, session: AsyncSession, *, id: Any, for_update: bool = False) -> TModel:
        q = select(self.model).where(getattr(self.model, "id") == id)
        if for_update:
            q = q.with_for_update()
        r = await session.execute(q)
        obj = r.scalar_one_or_none()
        if obj is None:
            raise NotFoundError.for_entity(self.label, id)
        return obj

    async def get_by(self, session: AsyncSession, **filters: Any) -> TModel | None:
        q = select(self.model)
        for key, value in filters.items():
            q = q.where(getattr(self.model, key) == value)
        r = await session.execute(q.limit(1))
        return r.scalar_one_or_none()

    async def list_where(self, session: AsyncSession, *clauses, order_by: Sequence[Any] = ()) -> list[TModel]:
        q = select(self.model).where(*clauses)
        if order_by:
            q = q.order_by(*order_by)
        r = await session.execute(q)
        return list(r.scalars().all())

    async def create(self, session: AsyncSession, *, obj_in: Any) -> TModel:
        db_obj = self.model(**_to_dict(obj_in))  # type: ignore[call-arg]
        session.add(db_obj)
        await session.flush()
        return db_obj

    def apply(self, db_obj: TModel, obj_in: Any) -> dict[str, Any]:
        """Copy set fields onto ``db_obj``; returns what changed."""

        changed: dict[str, Any] = {}
        for field, value in _to_dict(obj_in).items():
            if hasattr(db_obj, field) and getattr(db_obj, field) != value:
                setattr(db_obj, field, value)
                changed[field] = value
        return changed

    async def count_by(self, session: AsyncSession, column, *clauses) -> dict[str, int]:
        q = select(column, func.count()).select_from(self.model).where(*clauses).group_by(column)
        r = await session.execute(q)
        return {str(k): int(v) for k, v in r.all()}
