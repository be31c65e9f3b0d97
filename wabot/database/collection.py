"""
wabot/database/collection.py
Async collection handle over motor; timestamps go in and come back as aware UTC
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence, Tuple, Union

from pymongo.errors import ConnectionFailure

from ..errors import InvalidInput, StoreUnavailable

if TYPE_CHECKING:
    from .database_service import DatabaseService

SortSpec = Union[None, Sequence[Tuple[str, int]], Dict[str, int]]


@dataclass
class UpdateResult:
    matched_count: int = 0
    modified_count: int = 0
    upserted_id: Any = None


def to_bson(value: Any) -> Any:
    """Aware datetimes become naive UTC (how BSON stores them); tuples become arrays."""
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
    if isinstance(value, dict):
        return {k: to_bson(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_bson(v) for v in value]
    return value


def from_bson(value: Any) -> Any:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, dict):
        return {k: from_bson(v) for k, v in value.items()}
    if isinstance(value, list):
        return [from_bson(v) for v in value]
    return value


def _sort(sort: SortSpec) -> Optional[List[Tuple[str, int]]]:
    if not sort:
        return None
    if isinstance(sort, dict):
        return list(sort.items())
    return [(key, direction) for key, direction in sort]


def _require_operators(update: Dict[str, Any]) -> None:
    if not update or not all(str(k).startswith("$") for k in update):
        raise InvalidInput(f"Update documents must only contain operators, got {sorted(update)}")


class Collection:
    """Document operations on one named collection."""

    def __init__(self, service: "DatabaseService", name: str, raw):
        self._service = service
        self._raw = raw
        self.name = name

    @contextmanager
    def _guard(self):
        if self._service.closed:
            raise StoreUnavailable(f"Store closed (collection {self.name})")
        try:
            yield
        except ConnectionFailure as e:
            self._service.connection_stats["queries_failed"] += 1
            raise StoreUnavailable(f"{self.name}: {e}") from e
        self._service.connection_stats["queries_executed"] += 1

    # ---------- reads ----------

    async def find_one(self, flt=None, *, sort: SortSpec = None, projection=None) -> Optional[Dict[str, Any]]:
        kwargs = {"sort": _sort(sort)} if sort else {}
        with self._guard():
            doc = await self._raw.find_one(to_bson(flt or {}), projection, **kwargs)
        return from_bson(doc)

    async def find(
        self,
        flt=None,
        *,
        sort: SortSpec = None,
        limit: int = 0,
        skip: int = 0,
        projection=None,
    ) -> List[Dict[str, Any]]:
        with self._guard():
            cursor = self._raw.find(to_bson(flt or {}), projection, sort=_sort(sort), skip=skip, limit=limit)
            docs = await cursor.to_list(length=None)
        return from_bson(docs)

    async def count_documents(self, flt=None) -> int:
        with self._guard():
            return await self._raw.count_documents(to_bson(flt or {}))

    async def distinct(self, field_name: str, flt=None) -> List[Any]:
        with self._guard():
            values = await self._raw.distinct(field_name, to_bson(flt or {}))
        return from_bson(values)

    async def aggregate(self, pipeline: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
        with self._guard():
            cursor = self._raw.aggregate(to_bson(list(pipeline)))
            rows = await cursor.to_list(length=None)
        return from_bson(rows)

    # ---------- writes ----------

    async def insert_one(self, doc: Dict[str, Any]):
        """Insert a copy of `doc`; the generated `_id` is written back onto `doc`."""
        with self._guard():
            result = await self._raw.insert_one(to_bson(doc))
        doc.setdefault("_id", result.inserted_id)
        return result.inserted_id

    async def insert_many(self, docs: Sequence[Dict[str, Any]]) -> list:
        return [await self.insert_one(d) for d in docs]

    async def update_one(self, flt: Dict[str, Any], update: Dict[str, Any], *, upsert: bool = False) -> UpdateResult:
        _require_operators(update)
        with self._guard():
            result = await self._raw.update_one(to_bson(flt), to_bson(update), upsert=upsert)
        return UpdateResult(result.matched_count, result.modified_count, result.upserted_id)

    async def update_many(self, flt: Dict[str, Any], update: Dict[str, Any]) -> UpdateResult:
        _require_operators(update)
        with self._guard():
            result = await self._raw.update_many(to_bson(flt), to_bson(update))
        return UpdateResult(result.matched_count, result.modified_count, result.upserted_id)

    async def replace_one(self, flt: Dict[str, Any], doc: Dict[str, Any], *, upsert: bool = False) -> UpdateResult:
        replacement = {k: v for k, v in to_bson(doc).items() if k != "_id"}
        with self._guard():
            result = await self._raw.replace_one(to_bson(flt), replacement, upsert=upsert)
        return UpdateResult(result.matched_count, result.modified_count, result.upserted_id)

    async def delete_one(self, flt: Dict[str, Any]) -> int:
        with self._guard():
            result = await self._raw.delete_one(to_bson(flt))
        return result.deleted_count

    async def delete_many(self, flt: Dict[str, Any]) -> int:
        with self._guard():
            result = await self._raw.delete_many(to_bson(flt))
        return result.deleted_count
