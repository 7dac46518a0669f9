"""Local JSON document store for transactions, customers and fiscal configuration.

One JSON file per collection under the data dir. Every read-modify-write
holds an exclusive file lock, and files are replaced atomically. Status
fields are only ever written through :meth:`Store.compare_and_set`.
"""

from __future__ import annotations

import json
import logging
import os
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from filelock import FileLock

from faturador import config as _config

logger = logging.getLogger(__name__)

TRANSACTIONS = "transactions"
CUSTOMERS = "customers"
FISCAL_CONFIG = "fiscal_config"
CATEGORIES = "categories"

COLLECTIONS = (TRANSACTIONS, CUSTOMERS, FISCAL_CONFIG, CATEGORIES)


def now_iso() -> str:
    return datetime.now(UTC).isoformat(timespec="seconds")


def _backup_corrupt(path: Path) -> Path:
    """Rename a corrupt file to a timestamped backup before it gets overwritten."""
    ts = datetime.now(UTC).strftime("%Y%m%dT%H%M%S")
    backup = path.with_name(f"{path.name}.corrupt.{ts}")
    path.rename(backup)
    logger.warning("Corrupt file backed up: %s → %s", path, backup)
    return backup


def _matches(record: dict[str, Any], criteria: dict[str, Any]) -> bool:
    return all(record.get(k) == v for k, v in criteria.items())


class Store:
    def __init__(self, data_dir: Path | None = None) -> None:
        self._data_dir = data_dir

    @property
    def data_dir(self) -> Path:
        return self._data_dir if self._data_dir is not None else _config.get_data_dir()

    def _path(self, collection: str) -> Path:
        if collection not in COLLECTIONS:
            raise ValueError(f"Unknown collection: {collection}")
        return self.data_dir / f"{collection}.json"

    @contextmanager
    def _locked(self, collection: str) -> Iterator[None]:
        """Hold an exclusive file lock during read-modify-write of one collection."""
        path = self._path(collection)
        path.parent.mkdir(parents=True, exist_ok=True)
        with FileLock(path.with_suffix(".lock")):
            yield

    def _load(self, collection: str) -> list[dict[str, Any]]:
        path = self._path(collection)
        if not path.exists():
            return []
        try:
            return json.loads(path.read_text())
        except (json.JSONDecodeError, ValueError):
            _backup_corrupt(path)
            return []

    def _save(self, collection: str, records: list[dict[str, Any]]) -> None:
        path = self._path(collection)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".tmp")
        tmp.write_text(json.dumps(records, indent=2, ensure_ascii=False) + "\n")
        os.replace(tmp, path)

    # --- reads ---

    def get(self, collection: str, record_id: str) -> dict[str, Any] | None:
        with self._locked(collection):
            records = self._load(collection)
        return next((r for r in records if r.get("id") == record_id), None)

    def find(self, collection: str, **criteria: Any) -> list[dict[str, Any]]:
        """Return all records whose fields equal every given criterion."""
        with self._locked(collection):
            records = self._load(collection)
        return [r for r in records if _matches(r, criteria)]

    def find_one(self, collection: str, **criteria: Any) -> dict[str, Any] | None:
        found = self.find(collection, **criteria)
        return found[0] if found else None

    # --- writes ---

    def insert(self, collection: str, record: dict[str, Any]) -> dict[str, Any]:
        """Insert a new record, assigning an id and timestamps."""
        entry = dict(record)
        entry.setdefault("id", str(uuid.uuid4()))
        ts = now_iso()
        entry.setdefault("created_at", ts)
        entry["updated_at"] = ts
        with self._locked(collection):
            records = self._load(collection)
            if any(r.get("id") == entry["id"] for r in records):
                raise ValueError(f"Duplicate id in {collection}: {entry['id']}")
            records.append(entry)
            self._save(collection, records)
        return entry

    def update(
        self, collection: str, record_id: str, changes: dict[str, Any]
    ) -> dict[str, Any] | None:
        """Merge *changes* into a record unconditionally. Returns None if not found."""
        with self._locked(collection):
            records = self._load(collection)
            target = next((r for r in records if r.get("id") == record_id), None)
            if target is None:
                return None
            target.update(changes)
            target["updated_at"] = now_iso()
            self._save(collection, records)
            return dict(target)

    def compare_and_set(
        self,
        collection: str,
        record_id: str,
        field_name: str,
        expected: Any,
        changes: dict[str, Any],
    ) -> dict[str, Any] | None:
        """Apply *changes* only if ``record[field_name] == expected``.

        *expected* may be a tuple of accepted values. A missing field compares
        as None. Returns the updated record, or None when the record is absent
        or the current value does not match.
        """
        accepted = expected if isinstance(expected, tuple) else (expected,)
        with self._locked(collection):
            records = self._load(collection)
            target = next((r for r in records if r.get("id") == record_id), None)
            if target is None or target.get(field_name) not in accepted:
                return None
            target.update(changes)
            target["updated_at"] = now_iso()
            self._save(collection, records)
            return dict(target)

    def upsert(
        self,
        collection: str,
        criteria: dict[str, Any],
        changes: dict[str, Any],
        defaults: dict[str, Any] | None = None,
    ) -> tuple[dict[str, Any], bool]:
        """Update the record matching *criteria*, or insert one.

        A new record is built from criteria + defaults + changes.
        Returns (record, created).
        """
        with self._locked(collection):
            records = self._load(collection)
            target = next((r for r in records if _matches(r, criteria)), None)
            ts = now_iso()
            if target is not None:
                target.update(changes)
                target["updated_at"] = ts
                created = False
            else:
                target = {"id": str(uuid.uuid4()), **criteria, **(defaults or {}), **changes}
                target["created_at"] = ts
                target["updated_at"] = ts
                records.append(target)
                created = True
            self._save(collection, records)
            return dict(target), created


# --- Health check (read-only, no locks) ---


@dataclass
class StoreHealth:
    ok: bool
    counts: dict[str, int] = field(default_factory=dict)
    corrupt_backups: list[str] = field(default_factory=list)


def check_store_health(store: Store) -> StoreHealth:
    """Probe every collection file for corruption (read-only)."""
    ok = True
    counts: dict[str, int] = {}
    for collection in COLLECTIONS:
        path = store.data_dir / f"{collection}.json"
        counts[collection] = 0
        if path.exists():
            try:
                counts[collection] = len(json.loads(path.read_text()))
            except (json.JSONDecodeError, ValueError):
                ok = False
    backups: list[str] = []
    if store.data_dir.exists():
        backups = sorted(str(p) for p in store.data_dir.glob("*.json.corrupt.*"))
    return StoreHealth(ok=ok, counts=counts, corrupt_backups=backups)
