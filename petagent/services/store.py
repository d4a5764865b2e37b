"""Row store contract consumed by the agent core, plus an in-memory backend."""
from __future__ import annotations

import asyncio
import copy
import uuid
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Any, Dict, List, Optional

Row = Dict[str, Any]


class RowStore(ABC):
    """Single-row-atomic CRUD keyed by generated string ids, grouped by table."""

    @abstractmethod
    async def insert(self, table: str, row: Row) -> str:
        """Insert ``row`` and return its id (generated when ``row`` has none)."""

    @abstractmethod
    async def get(self, table: str, row_id: str) -> Optional[Row]:
        pass

    @abstractmethod
    async def update(self, table: str, row_id: str, changes: Row) -> bool:
        pass

    @abstractmethod
    async def delete(self, table: str, row_id: str) -> bool:
        pass

    @abstractmethod
    async def list(self, table: str) -> List[Row]:
        pass


class InMemoryRowStore(RowStore):
    """Process-local store; rows are deep-copied in and out."""

    def __init__(self) -> None:
        self._tables: Dict[str, Dict[str, Row]] = defaultdict(dict)
        self._lock = asyncio.Lock()

    async def insert(self, table: str, row: Row) -> str:
        row_id = row.get("id") or str(uuid.uuid4())
        async with self._lock:
            self._tables[table][row_id] = {**copy.deepcopy(row), "id": row_id}
        return row_id

    async def get(self, table: str, row_id: str) -> Optional[Row]:
        row = self._tables[table].get(row_id)
        return copy.deepcopy(row) if row is not None else None

    async def update(self, table: str, row_id: str, changes: Row) -> bool:
        async with self._lock:
            row = self._tables[table].get(row_id)
            if row is None:
                return False
            row.update(copy.deepcopy(changes))
        return True

    async def delete(self, table: str, row_id: str) -> bool:
        async with self._lock:
            return self._tables[table].pop(row_id, None) is not None

    async def list(self, table: str) -> List[Row]:
        return [copy.deepcopy(row) for row in self._tables[table].values()]
