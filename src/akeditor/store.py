from __future__ import annotations

import dataclasses
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Generic, List, Optional, Sequence, Type, TypeVar, Union

from .models import StoredRecord, new_id, now_iso


logger = logging.getLogger(__name__)

T = TypeVar("T", bound=StoredRecord)

_RESERVED_FIELDS = ("id", "created_at")


class StorageUnavailableError(RuntimeError):
    """Exception raised when a collection cannot be written to durable storage."""

    pass


class MemoryStorage:
    """In-process storage backend; contents vanish with the object."""

    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._data: Dict[str, str] = dict(initial or {})

    def read(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def write(self, key: str, text: str) -> None:
        self._data[key] = text


class JsonFileStorage:
    """
    Storage backend keeping each collection in "<directory>/<key>.json".

    Writes go to a temporary file in the same directory which then replaces the
    target, so a crash never leaves a half-written collection behind.
    """

    def __init__(self, directory: Union[str, os.PathLike]) -> None:
        self.directory = Path(directory).expanduser()

    def path_for(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def read(self, key: str) -> Optional[str]:
        """
        Read the raw text stored under key.

        Returns:
            The stored text, or None if nothing has been stored yet.

        Raises:
            StorageUnavailableError: If the file exists but cannot be read.
        """
        p = self.path_for(key)
        try:
            return p.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            raise StorageUnavailableError(f"Failed to read {p}: {e}") from e

    def write(self, key: str, text: str) -> None:
        """
        Atomically replace the text stored under key.

        Raises:
            StorageUnavailableError: If the directory or file cannot be written.
        """
        p = self.path_for(key)
        tmp_name: Optional[str] = None
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{key}.", dir=str(self.directory))
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(text)
            os.replace(tmp_name, p)
            tmp_name = None
        except OSError as e:
            raise StorageUnavailableError(f"Failed to write {p}: {e}") from e
        finally:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)


class PersistedCollection(Generic[T]):
    """
    Ordered collection of records mirrored to a storage backend as a JSON array.

    Every mutation updates the in-memory list first and then persists the whole
    collection. A failed write does not undo the mutation: the failure is kept
    in ``error`` for the caller to report, and the next successful write clears
    it. Reads are forgiving: missing, unreadable or corrupt storage loads as an
    empty collection.

    If ``defaults`` are given they are written to storage the first time the
    collection is found without a valid array. A stored empty array is a
    collection the operator emptied and is left alone. When the read itself
    fails the defaults are only used in memory and ``error`` keeps the failure.

    Attributes:
        storage_key: Name of the collection in the backend.
        entity_name: Human-readable plural used in messages (e.g. "key pairs").
        error: Last persistence failure, or None.
    """

    def __init__(
        self,
        storage: Any,
        storage_key: str,
        record_type: Type[T],
        *,
        entity_name: str,
        defaults: Sequence[T] = (),
    ) -> None:
        self._storage = storage
        self.storage_key = storage_key
        self.record_type = record_type
        self.entity_name = entity_name
        self._defaults = list(defaults)
        self._items: List[T] = []
        self.error: Optional[StorageUnavailableError] = None
        self.load()

    @property
    def items(self) -> List[T]:
        """Snapshot of the records in insertion order."""
        return list(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def load(self) -> List[T]:
        """
        Re-read the collection from storage, replacing the in-memory records.

        Returns:
            The loaded records in insertion order.
        """
        read_failed = False
        try:
            raw = self._storage.read(self.storage_key)
        except StorageUnavailableError as e:
            logger.warning("Failed to load %s from storage: %s", self.entity_name, e)
            self.error = e
            read_failed = True
            raw = None

        records = self._parse(raw)
        if records is None:
            records = []
            if self._defaults:
                logger.info(
                    "Seeding %s with %d default record(s)",
                    self.entity_name,
                    len(self._defaults),
                )
                records = list(self._defaults)
                self._items = records
                # Unreadable storage is left as is.
                if not read_failed:
                    self._persist()
                return self.items

        self._items = records
        return self.items

    def _parse(self, raw: Optional[str]) -> Optional[List[T]]:
        if raw is None:
            return None
        try:
            data = json.loads(raw)
        except ValueError:
            logger.warning("Stored %s are not valid JSON; starting empty", self.entity_name)
            return None
        if not isinstance(data, list):
            logger.warning("Stored %s are not a JSON array; starting empty", self.entity_name)
            return None

        records: List[T] = []
        for i, item in enumerate(data):
            if not isinstance(item, dict):
                logger.warning("Skipping stored %s entry %d: not an object", self.entity_name, i)
                continue
            try:
                records.append(self.record_type.from_dict(item))
            except (TypeError, ValueError) as e:
                logger.warning("Skipping stored %s entry %d: %s", self.entity_name, i, e)
        return records

    def _persist(self) -> None:
        text = json.dumps([r.to_dict() for r in self._items], indent=2, ensure_ascii=False)
        try:
            self._storage.write(self.storage_key, text)
        except StorageUnavailableError as e:
            logger.warning("Failed to save %s to storage: %s", self.entity_name, e)
            self.error = e
        else:
            self.error = None

    def _check_fields(self, fields: Dict[str, Any]) -> None:
        for name in _RESERVED_FIELDS:
            if name in fields:
                raise ValueError(f"{name!r} is assigned by the collection and cannot be set")
        unknown = set(fields) - self.record_type.field_names()
        if unknown:
            raise ValueError(
                f"Unknown {self.record_type.__name__} field(s): {', '.join(sorted(unknown))}"
            )

    def add(self, **fields: Any) -> T:
        """
        Append a new record with a fresh id and creation timestamp.

        Args:
            **fields: Record fields other than id and created_at.

        Returns:
            The stored record.

        Raises:
            ValueError: If id/created_at or an unknown field is supplied.
        """
        self._check_fields(fields)
        record = self.record_type(id=new_id(), created_at=now_iso(), **fields)
        self._items.append(record)
        self._persist()
        return record

    def update(self, record_id: str, **changes: Any) -> None:
        """
        Replace fields of an existing record. Unknown ids are ignored.

        Raises:
            ValueError: If id/created_at or an unknown field is supplied.
        """
        self._check_fields(changes)
        for i, record in enumerate(self._items):
            if record.id == record_id:
                self._items[i] = dataclasses.replace(record, **changes)
                self._persist()
                return

    def remove(self, record_id: str) -> None:
        """Delete the record with record_id. Unknown ids are ignored."""
        remaining = [r for r in self._items if r.id != record_id]
        if len(remaining) == len(self._items):
            return
        self._items = remaining
        self._persist()

    def find_by_id(self, record_id: Optional[str]) -> Optional[T]:
        if not record_id:
            return None
        for record in self._items:
            if record.id == record_id:
                return record
        return None
