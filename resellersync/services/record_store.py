"""
Record Store
Abstract persistence for mirrored resources, cached prices and audit logs,
with an in-memory and a JSON-file implementation
"""

import copy
import json
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from resellersync.utils.logger import get_logger

logger = get_logger(__name__)

Record = Dict[str, Any]
Filter = Optional[Dict[str, Any]]
ConflictKey = Union[str, Sequence[str]]


class RecordStoreError(Exception):
    """Raised on invalid store arguments or an unreadable backing file"""
    pass


def parse_conflict_key(conflict_key: ConflictKey) -> Tuple[str, ...]:
    """'resource_key,pricing_tier' or ['resource_key', 'pricing_tier'] -> tuple of fields"""
    if isinstance(conflict_key, str):
        fields = [part.strip() for part in conflict_key.split(",")]
    else:
        fields = [str(part).strip() for part in conflict_key]
    fields = [field for field in fields if field]
    if not fields:
        raise RecordStoreError("Conflict key must name at least one field")
    return tuple(fields)


def matches(record: Record, filters: Filter) -> bool:
    return all(record.get(field) == value for field, value in (filters or {}).items())


class RecordStore(ABC):
    """
    Persistence collaborator used by the pricing cache and the reconciliation
    engine. Records are plain dicts grouped into named collections.
    """

    @abstractmethod
    async def get(self, collection: str, filters: Filter) -> Optional[Record]:
        """Return the first record matching every filter field, or None."""
        pass

    @abstractmethod
    async def upsert(self, collection: str, record: Record, conflict_key: ConflictKey) -> Record:
        """
        Insert a record, or merge it into the existing record whose conflict
        key fields are equal. Returns the stored record.
        """
        pass

    @abstractmethod
    async def update(self, collection: str, filters: Filter, patch: Record) -> None:
        """Apply a partial update to every matching record."""
        pass

    @abstractmethod
    async def list(self, collection: str, filters: Filter = None) -> List[Record]:
        pass


class InMemoryRecordStore(RecordStore):
    """Dict-of-lists store. Returns copies so callers cannot mutate stored state."""

    def __init__(self, data: Optional[Dict[str, List[Record]]] = None):
        self._collections: Dict[str, List[Record]] = copy.deepcopy(data) if data else {}

    def _rows(self, collection: str) -> List[Record]:
        if not collection:
            raise RecordStoreError("Collection name is required")
        return self._collections.setdefault(collection, [])

    async def get(self, collection: str, filters: Filter) -> Optional[Record]:
        for row in self._rows(collection):
            if matches(row, filters):
                return copy.deepcopy(row)
        return None

    async def upsert(self, collection: str, record: Record, conflict_key: ConflictKey) -> Record:
        fields = parse_conflict_key(conflict_key)
        missing = [field for field in fields if field not in record]
        if missing:
            raise RecordStoreError(
                f"Record for {collection} is missing conflict key field(s): {', '.join(missing)}"
            )

        key_filter = {field: record[field] for field in fields}
        rows = self._rows(collection)

        for row in rows:
            if matches(row, key_filter):
                row.update(copy.deepcopy(record))
                stored = row
                break
        else:
            stored = copy.deepcopy(record)
            rows.append(stored)

        self._persist()
        return copy.deepcopy(stored)

    async def update(self, collection: str, filters: Filter, patch: Record) -> None:
        if not filters:
            raise RecordStoreError("Refusing an update without a filter")
        changed = False
        for row in self._rows(collection):
            if matches(row, filters):
                row.update(copy.deepcopy(patch))
                changed = True
        if changed:
            self._persist()

    async def list(self, collection: str, filters: Filter = None) -> List[Record]:
        return [copy.deepcopy(row) for row in self._rows(collection) if matches(row, filters)]

    def _persist(self) -> None:
        """Hook for durable subclasses"""
        pass


class JsonFileRecordStore(InMemoryRecordStore):
    """
    In-memory semantics, persisted to a single JSON file after every write.
    Used by the command-line entry point.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        super().__init__(self._load())

    def _load(self) -> Dict[str, List[Record]]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise RecordStoreError(f"Cannot read record store {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise RecordStoreError(f"Record store {self.path} does not contain an object")
        logger.debug(f"Loaded record store from {self.path}")
        return data

    def _persist(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(self._collections, f, indent=2, default=str)
        os.replace(tmp_path, self.path)
