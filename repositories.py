"""
Storage behind the services.

Services only talk to the `Repository` interface. `InMemoryRepository` keeps
documents in a per-process list, `MongoRepository` maps the same calls onto a
pymongo collection. Filters use the pymongo query shape: a plain value is an
equality match, an operator dict (`$in`, `$ne`, `$gte`, `$lte`, `$regex`) a
condition, and `$or` a list of alternative filters.
"""
import copy
import re
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from database import create_document, ensure_indexes, get_documents
from errors import ConflictError

Document = Dict[str, Any]
Sort = List[Tuple[str, int]]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Repository(ABC):
    @abstractmethod
    def find(self, filters: Optional[Document] = None) -> List[Document]:
        ...

    @abstractmethod
    def query(self, filters: Optional[Document] = None, sort: Optional[Sort] = None, skip: int = 0,
              limit: Optional[int] = None) -> List[Document]:
        ...

    @abstractmethod
    def count(self, filters: Optional[Document] = None) -> int:
        ...

    @abstractmethod
    def insert(self, doc: Document) -> Document:
        ...

    @abstractmethod
    def update(self, doc_id: str, fields: Document) -> Optional[Document]:
        ...

    @abstractmethod
    def delete_many(self, filters: Document) -> int:
        ...

    def find_one(self, filters: Document) -> Optional[Document]:
        found = self.find(filters)
        return found[0] if found else None

    def get(self, doc_id: str) -> Optional[Document]:
        return self.find_one({"id": doc_id})

    def delete(self, doc_id: str) -> bool:
        return self.delete_many({"id": doc_id}) > 0


def _is_operator(cond: Any) -> bool:
    return isinstance(cond, dict) and bool(cond) and all(k.startswith("$") for k in cond)


def _check(value: Any, ops: Document) -> bool:
    flags = re.IGNORECASE if "i" in ops.get("$options", "") else 0
    for op, arg in ops.items():
        if op == "$options":
            continue
        if op == "$in":
            ok = value in arg
        elif op == "$ne":
            ok = value != arg
        elif op == "$gte":
            ok = value is not None and value >= arg
        elif op == "$lte":
            ok = value is not None and value <= arg
        elif op == "$regex":
            ok = isinstance(value, str) and re.search(arg, value, flags) is not None
        else:
            raise ValueError(f"Unsupported query operator {op}")
        if not ok:
            return False
    return True


def _matches(doc: Document, filters: Optional[Document]) -> bool:
    for key, cond in (filters or {}).items():
        if key == "$or":
            if not any(_matches(doc, alt) for alt in cond):
                return False
        elif _is_operator(cond):
            if not _check(doc.get(key), cond):
                return False
        elif doc.get(key) != cond:
            return False
    return True


def _sort_key(field: str):
    def key(doc: Document):
        value = doc.get(field)
        return value is not None, value
    return key


class InMemoryRepository(Repository):
    """List-backed collection. Documents go in and out as deep copies."""

    def __init__(self, name: str, unique: Sequence[Tuple[str, ...]] = ()):
        self.name = name
        self.unique = list(unique)
        self._docs: List[Document] = []
        self._lock = threading.RLock()

    def _check_unique(self, doc: Document, ignore_id: Optional[str] = None) -> None:
        for keys in self.unique:
            for other in self._docs:
                if other["id"] == ignore_id:
                    continue
                if all(other.get(k) == doc.get(k) for k in keys):
                    raise ConflictError(f"Duplicate {self.name}: {', '.join(keys)} already exists")

    def find(self, filters: Optional[Document] = None) -> List[Document]:
        return self.query(filters)

    def query(self, filters: Optional[Document] = None, sort: Optional[Sort] = None, skip: int = 0,
              limit: Optional[int] = None) -> List[Document]:
        with self._lock:
            docs = [d for d in self._docs if _matches(d, filters)]
            # stable sorts applied last key first give a multi-key order
            for field, direction in reversed(sort or []):
                docs.sort(key=_sort_key(field), reverse=direction < 0)
            docs = docs[skip:skip + limit] if limit else docs[skip:]
            return [copy.deepcopy(d) for d in docs]

    def count(self, filters: Optional[Document] = None) -> int:
        with self._lock:
            return sum(1 for d in self._docs if _matches(d, filters))

    def insert(self, doc: Document) -> Document:
        now = utcnow()
        doc = copy.deepcopy(doc)
        doc["id"] = doc.get("id") or str(ObjectId())
        doc.setdefault("created_at", now)
        doc["updated_at"] = now
        with self._lock:
            self._check_unique(doc)
            self._docs.append(doc)
        return copy.deepcopy(doc)

    def update(self, doc_id: str, fields: Document) -> Optional[Document]:
        with self._lock:
            for doc in self._docs:
                if doc["id"] == doc_id:
                    candidate = {**doc, **copy.deepcopy(fields), "updated_at": utcnow()}
                    self._check_unique(candidate, ignore_id=doc_id)
                    doc.update(candidate)
                    return copy.deepcopy(doc)
        return None

    def delete_many(self, filters: Document) -> int:
        with self._lock:
            kept = [d for d in self._docs if not _matches(d, filters)]
            removed = len(self._docs) - len(kept)
            self._docs = kept
        return removed


def _to_mongo(filters: Optional[Document]) -> Document:
    filters = dict(filters or {})
    if "id" in filters:
        filters["_id"] = filters.pop("id")
    return filters


def _from_mongo(doc: Optional[Document]) -> Optional[Document]:
    if doc is None:
        return None
    doc = dict(doc)
    doc["id"] = str(doc.pop("_id"))
    return doc


class MongoRepository(Repository):
    """Collection-backed repository. Ids are stored as string `_id` values."""

    def __init__(self, database, name: str):
        self.database = database
        self.name = name
        self.collection = database[name]

    def find(self, filters: Optional[Document] = None) -> List[Document]:
        return [_from_mongo(d) for d in get_documents(self.database, self.name, _to_mongo(filters))]

    def query(self, filters: Optional[Document] = None, sort: Optional[Sort] = None, skip: int = 0,
              limit: Optional[int] = None) -> List[Document]:
        cursor = self.collection.find(_to_mongo(filters))
        if sort:
            cursor = cursor.sort(sort)
        if skip:
            cursor = cursor.skip(skip)
        if limit:
            cursor = cursor.limit(limit)
        return [_from_mongo(d) for d in cursor]

    def count(self, filters: Optional[Document] = None) -> int:
        return self.collection.count_documents(_to_mongo(filters))

    def find_one(self, filters: Document) -> Optional[Document]:
        return _from_mongo(self.collection.find_one(_to_mongo(filters)))

    def insert(self, doc: Document) -> Document:
        try:
            inserted_id = create_document(self.database, self.name, doc)
        except DuplicateKeyError as exc:
            raise ConflictError(f"Duplicate {self.name}") from exc
        return self.get(inserted_id)

    def update(self, doc_id: str, fields: Document) -> Optional[Document]:
        fields = {k: v for k, v in fields.items() if k != "id"}
        fields["updated_at"] = utcnow()
        try:
            updated = self.collection.find_one_and_update(
                {"_id": doc_id}, {"$set": fields}, return_document=ReturnDocument.AFTER
            )
        except DuplicateKeyError as exc:
            raise ConflictError(f"Duplicate {self.name}") from exc
        return _from_mongo(updated)

    def delete_many(self, filters: Document) -> int:
        return self.collection.delete_many(_to_mongo(filters)).deleted_count


@dataclass
class Repositories:
    users: Repository
    products: Repository
    carts: Repository
    reviews: Repository
    orders: Repository

    @classmethod
    def in_memory(cls) -> "Repositories":
        return cls(
            users=InMemoryRepository("user", unique=[("email",)]),
            products=InMemoryRepository("product"),
            carts=InMemoryRepository("cart", unique=[("user_id",)]),
            reviews=InMemoryRepository("review", unique=[("user_id", "product_id")]),
            orders=InMemoryRepository("order"),
        )

    @classmethod
    def mongo(cls, database) -> "Repositories":
        ensure_indexes(database)
        return cls(
            users=MongoRepository(database, "user"),
            products=MongoRepository(database, "product"),
            carts=MongoRepository(database, "cart"),
            reviews=MongoRepository(database, "review"),
            orders=MongoRepository(database, "order"),
        )
