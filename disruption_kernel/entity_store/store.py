"""
Entity Store: versioned object storage with optimistic concurrency.

Behavioral Contract:
- Objects are keyed by (kind, namespace, name).
- The store assigns metadata.version on every successful write.
- An update carrying a version other than the stored one is rejected with
  ConflictError; the stored object is left untouched.
- Reads return copies. Callers never alias stored state.
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Dict, Generic, List, Optional, Type, TypeVar
from uuid import uuid4

from pydantic import BaseModel

from disruption_kernel.models.meta import ObjectKey

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


class StoreError(Exception):
    """Base class for entity store failures."""

    def __init__(self, kind: str, key: ObjectKey, message: str = ""):
        self.kind = kind
        self.key = key
        super().__init__(message or f"{kind} {key}")


class NotFoundError(StoreError):
    """The requested object does not exist."""

    def __init__(self, kind: str, key: ObjectKey):
        super().__init__(kind, key, f"{kind} {key} not found")


class AlreadyExistsError(StoreError):
    """Create was called for a key that is already taken."""

    def __init__(self, kind: str, key: ObjectKey):
        super().__init__(kind, key, f"{kind} {key} already exists")


class ConflictError(StoreError):
    """An update lost an optimistic-concurrency race."""

    def __init__(self, kind: str, key: ObjectKey, expected: Optional[int], actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(
            kind, key,
            f"{kind} {key} was modified: update carried version {expected}, "
            f"stored version is {actual}",
        )


class StoreUnavailableError(StoreError):
    """Transient infrastructure failure talking to the store."""


class EntityStore(ABC, Generic[T]):
    """Get/Create/Update capability over one object kind."""

    def __init__(self, model_cls: Type[T], kind: Optional[str] = None):
        self.model_cls = model_cls
        self.kind = kind or model_cls.__name__

    @abstractmethod
    def get(self, key: ObjectKey) -> T:
        """Return the stored object or raise NotFoundError."""

    @abstractmethod
    def create(self, obj: T) -> T:
        """Store a new object. Returns it with its assigned version."""

    @abstractmethod
    def update(self, obj: T) -> T:
        """Replace an object, guarded by obj.metadata.version."""

    @abstractmethod
    def delete(self, key: ObjectKey) -> None:
        """Remove an object or raise NotFoundError."""

    @abstractmethod
    def list(self, namespace: Optional[str] = None) -> List[T]:
        """All objects of this kind, optionally filtered by namespace."""


class InMemoryEntityStore(EntityStore[T]):
    """
    Dict-backed entity store.
    Safe to share between reconciler worker threads.
    """

    def __init__(self, model_cls: Type[T], kind: Optional[str] = None):
        super().__init__(model_cls, kind)
        self._objects: Dict[ObjectKey, T] = {}
        self._lock = threading.Lock()

    def get(self, key: ObjectKey) -> T:
        with self._lock:
            obj = self._objects.get(key)
            if obj is None:
                raise NotFoundError(self.kind, key)
            return obj.model_copy(deep=True)

    def create(self, obj: T) -> T:
        key = obj.metadata.key
        with self._lock:
            if key in self._objects:
                raise AlreadyExistsError(self.kind, key)
            stored = obj.model_copy(deep=True)
            stored.metadata.version = 1
            if not stored.metadata.uid:
                stored.metadata.uid = uuid4().hex
            self._objects[key] = stored
            logger.debug("created %s %s", self.kind, key)
            return stored.model_copy(deep=True)

    def update(self, obj: T) -> T:
        key = obj.metadata.key
        with self._lock:
            current = self._objects.get(key)
            if current is None:
                raise NotFoundError(self.kind, key)
            if obj.metadata.version != current.metadata.version:
                raise ConflictError(
                    self.kind, key, obj.metadata.version, current.metadata.version
                )
            stored = obj.model_copy(deep=True)
            stored.metadata.version = current.metadata.version + 1
            stored.metadata.uid = current.metadata.uid
            self._objects[key] = stored
            logger.debug(
                "updated %s %s to version %d", self.kind, key, stored.metadata.version
            )
            return stored.model_copy(deep=True)

    def delete(self, key: ObjectKey) -> None:
        with self._lock:
            if self._objects.pop(key, None) is None:
                raise NotFoundError(self.kind, key)

    def list(self, namespace: Optional[str] = None) -> List[T]:
        with self._lock:
            return [
                obj.model_copy(deep=True)
                for key, obj in sorted(self._objects.items(), key=lambda kv: str(kv[0]))
                if namespace is None or key.namespace == namespace
            ]

    def count(self) -> int:
        with self._lock:
            return len(self._objects)
