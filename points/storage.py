"""
In-memory document store.

Collections hold plain dict documents keyed by UUID. The store offers the
subset of document-database behaviour the services rely on: filtered finds,
atomic ``$inc``-style updates that report how many documents matched, unique
indexes (sparse: ``None`` never clashes), named sequences and an
all-or-nothing ``transaction()`` block.
"""

import copy
import threading
from collections import defaultdict
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Iterator, Optional
from uuid import UUID, uuid4


UNIQUE_INDEXES: dict[str, list[tuple[str, ...]]] = {
    "users": [("member_id",), ("referral_code",), ("email",)],
    "donations": [("donation_id",)],
    "quizzes": [("quiz_ref",)],
    "quiz_participations": [("quiz_id", "user_id"), ("enrollment_number",)],
    "social_tasks": [("task_id",)],
    "task_completions": [("user_id", "task_id")],
    "membership_fees": [("txn_id",)],
    "sessions": [("token",)],
}

_MISSING = object()


class DuplicateKeyError(Exception):
    def __init__(self, collection: str, keys: tuple[str, ...]):
        self.collection = collection
        self.keys = keys
        super().__init__(f"Duplicate key on {collection}({', '.join(keys)})")


def get_path(document: dict, path: str) -> Any:
    value: Any = document
    for part in path.split("."):
        if isinstance(value, dict) and part in value:
            value = value[part]
        else:
            return _MISSING
    return value


def set_path(document: dict, path: str, value: Any) -> None:
    parts = path.split(".")
    target = document
    for part in parts[:-1]:
        target = target.setdefault(part, {})
    target[parts[-1]] = value


def _compare(op: str, value: Any, operand: Any) -> bool:
    if op == "$ne":
        return (None if value is _MISSING else value) != operand
    if op == "$in":
        return (None if value is _MISSING else value) in operand
    if op == "$exists":
        return (value is not _MISSING) == bool(operand)
    if value is _MISSING or value is None:
        return False
    if op == "$gt":
        return value > operand
    if op == "$gte":
        return value >= operand
    if op == "$lt":
        return value < operand
    if op == "$lte":
        return value <= operand
    raise ValueError(f"Unsupported filter operator: {op}")


def matches(document: dict, query: Optional[dict]) -> bool:
    for path, expected in (query or {}).items():
        value = get_path(document, path)
        if isinstance(expected, dict) and expected and all(k.startswith("$") for k in expected):
            if not all(_compare(op, value, operand) for op, operand in expected.items()):
                return False
        elif (None if value is _MISSING else value) != expected:
            return False
    return True


def _sort_value(value: Any) -> tuple:
    if value is _MISSING or value is None:
        return (0,)
    return (1, value)


def _public(document: dict) -> dict:
    doc = copy.deepcopy(document)
    doc.pop("_seq", None)
    return doc


class InMemoryStorage:
    def __init__(self):
        self.collections: dict[str, dict[UUID, dict]] = defaultdict(dict)
        self.sequences: dict[str, int] = defaultdict(int)
        self._lock = threading.RLock()
        self._depth = 0
        self._counter = 0
        # prior state of everything touched by the open transaction
        self._undo_docs: Optional[dict[tuple[str, UUID], Any]] = None
        self._undo_sequences: Optional[dict[str, int]] = None

    @contextmanager
    def transaction(self) -> Iterator["InMemoryStorage"]:
        """Apply every write in the block together, or none of them."""
        with self._lock:
            outermost = self._depth == 0
            if outermost:
                self._undo_docs, self._undo_sequences = {}, {}
            self._depth += 1
            try:
                yield self
            except BaseException:
                if outermost:
                    self._rollback()
                raise
            finally:
                self._depth -= 1
                if outermost:
                    self._undo_docs = self._undo_sequences = None

    def _remember(self, collection: str, doc_id: UUID) -> None:
        if self._undo_docs is not None and (collection, doc_id) not in self._undo_docs:
            self._undo_docs[(collection, doc_id)] = self.collections[collection].get(doc_id, _MISSING)

    def _rollback(self) -> None:
        for (collection, doc_id), prior in self._undo_docs.items():
            if prior is _MISSING:
                self.collections[collection].pop(doc_id, None)
            else:
                self.collections[collection][doc_id] = prior
        self.sequences.update(self._undo_sequences)

    def insert(self, collection: str, document: dict) -> dict:
        with self._lock:
            doc = copy.deepcopy(document)
            doc.setdefault("id", uuid4())
            doc.setdefault("created_at", datetime.now(timezone.utc))
            self._check_unique(collection, doc)
            self._counter += 1
            doc["_seq"] = self._counter
            self._remember(collection, doc["id"])
            self.collections[collection][doc["id"]] = doc
            return _public(doc)

    def find_one(self, collection: str, query: Optional[dict] = None,
                 sort: Optional[list[tuple[str, int]]] = None) -> Optional[dict]:
        found = self.find(collection, query, sort=sort, limit=1)
        return found[0] if found else None

    def find(self, collection: str, query: Optional[dict] = None,
             sort: Optional[list[tuple[str, int]]] = None,
             limit: Optional[int] = None, offset: int = 0) -> list[dict]:
        with self._lock:
            docs = [d for d in self.collections[collection].values() if matches(d, query)]
            if sort:
                docs.sort(key=lambda d: d["_seq"], reverse=sort[0][1] < 0)
                for path, direction in reversed(sort):
                    docs.sort(key=lambda d, p=path: _sort_value(get_path(d, p)), reverse=direction < 0)
            end = offset + limit if limit is not None else None
            return [_public(d) for d in docs[offset:end]]

    def count(self, collection: str, query: Optional[dict] = None) -> int:
        with self._lock:
            return sum(1 for d in self.collections[collection].values() if matches(d, query))

    def update_one(self, collection: str, query: dict, set: Optional[dict] = None,
                   inc: Optional[dict] = None, push: Optional[dict] = None) -> int:
        """Update the first matching document; returns the matched count (0 or 1)."""
        return 0 if self.find_one_and_update(collection, query, set=set, inc=inc, push=push) is None else 1

    def find_one_and_update(self, collection: str, query: dict, set: Optional[dict] = None,
                            inc: Optional[dict] = None, push: Optional[dict] = None) -> Optional[dict]:
        with self._lock:
            target = next(
                (d for d in self.collections[collection].values() if matches(d, query)),
                None,
            )
            if target is None:
                return None
            updated = copy.deepcopy(target)
            for path, value in (set or {}).items():
                set_path(updated, path, value)
            for path, amount in (inc or {}).items():
                current = get_path(updated, path)
                base = Decimal("0") if current is _MISSING or current is None else current
                set_path(updated, path, base + amount)
            for path, value in (push or {}).items():
                current = get_path(updated, path)
                items = [] if current is _MISSING or current is None else list(current)
                items.append(value)
                set_path(updated, path, items)
            self._check_unique(collection, updated, exclude=updated["id"])
            self._remember(collection, updated["id"])
            self.collections[collection][updated["id"]] = updated
            return _public(updated)

    def update_many(self, collection: str, query: dict, set: Optional[dict] = None,
                    inc: Optional[dict] = None) -> int:
        with self._lock:
            ids = [d["id"] for d in self.collections[collection].values() if matches(d, query)]
            for doc_id in ids:
                self.find_one_and_update(collection, {"id": doc_id}, set=set, inc=inc)
            return len(ids)

    def delete_one(self, collection: str, query: dict) -> int:
        with self._lock:
            for doc_id, doc in self.collections[collection].items():
                if matches(doc, query):
                    self._remember(collection, doc_id)
                    del self.collections[collection][doc_id]
                    return 1
            return 0

    def delete_many(self, collection: str, query: Optional[dict] = None) -> int:
        with self._lock:
            doomed = [i for i, d in self.collections[collection].items() if matches(d, query)]
            for doc_id in doomed:
                self._remember(collection, doc_id)
                del self.collections[collection][doc_id]
            return len(doomed)

    def next_sequence(self, name: str) -> int:
        with self._lock:
            if self._undo_sequences is not None:
                self._undo_sequences.setdefault(name, self.sequences[name])
            self.sequences[name] += 1
            return self.sequences[name]

    def _check_unique(self, collection: str, doc: dict, exclude: Optional[UUID] = None) -> None:
        for keys in UNIQUE_INDEXES.get(collection, []):
            values = tuple(get_path(doc, k) for k in keys)
            if any(v is _MISSING or v is None for v in values):
                continue
            for other_id, other in self.collections[collection].items():
                if other_id == exclude:
                    continue
                if tuple(get_path(other, k) for k in keys) == values:
                    raise DuplicateKeyError(collection, keys)
