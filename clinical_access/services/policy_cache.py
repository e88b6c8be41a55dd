"""Per-patient policy cache.

Read-through over a PolicyRepository. Every read and every
write-then-invalidate for a patient runs under that patient's lock, so a
read never observes a half-invalidated entry and an acknowledged write is
never followed by a read of the old policy set. Patients do not share
locks, so a slow store read for one patient does not stall another.

The cache is an optimization only: backend failures are logged and the
store is read directly. Store failures are raised as InternalError and
never turn into an empty policy set.
"""

import asyncio
import logging
import time
import weakref
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass

from clinical_access.core.config import settings
from clinical_access.core.exceptions import InternalError
from clinical_access.core.logging import mask_ci
from clinical_access.policies.models import Policy
from clinical_access.repositories.base import PolicyRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    policies: tuple[Policy, ...]
    loaded_at: float


class CacheBackend(ABC):
    """Key-value storage for cache entries."""

    @abstractmethod
    def get(self, key: str) -> CacheEntry | None:
        pass

    @abstractmethod
    def set(self, key: str, entry: CacheEntry) -> None:
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        pass

    @abstractmethod
    def clear(self) -> None:
        pass


class InMemoryCacheBackend(CacheBackend):
    """Process-local dict backend."""

    def __init__(self) -> None:
        self._entries: dict[str, CacheEntry] = {}

    def get(self, key: str) -> CacheEntry | None:
        return self._entries.get(key)

    def set(self, key: str, entry: CacheEntry) -> None:
        self._entries[key] = entry

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class PolicyCache:
    """Per-patient cache of the full policy set."""

    def __init__(
        self,
        backend: CacheBackend | None = None,
        ttl_seconds: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.backend = backend or InMemoryCacheBackend()
        self.ttl_seconds = settings.policy_cache_ttl_seconds if ttl_seconds is None else ttl_seconds
        self._clock = clock
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()
        # Patients whose invalidation failed; read from the store until repopulated
        self._bypass: set[str] = set()
        self.hits = 0
        self.misses = 0

    def _lock_for(self, patient_id: str) -> asyncio.Lock:
        lock = self._locks.get(patient_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[patient_id] = lock
        return lock

    def _is_fresh(self, entry: CacheEntry) -> bool:
        if self.ttl_seconds <= 0:
            return True
        return self._clock() - entry.loaded_at < self.ttl_seconds

    def _lookup(self, patient_id: str) -> CacheEntry | None:
        if patient_id in self._bypass:
            return None
        try:
            entry = self.backend.get(patient_id)
        except Exception:
            logger.warning(
                "Policy cache read failed for patient %s; reading store",
                mask_ci(patient_id),
                exc_info=True,
            )
            return None
        if entry is not None and not self._is_fresh(entry):
            return None
        return entry

    def _remember(self, patient_id: str, policies: list[Policy]) -> None:
        try:
            self.backend.set(patient_id, CacheEntry(tuple(policies), self._clock()))
        except Exception:
            logger.warning(
                "Policy cache write failed for patient %s",
                mask_ci(patient_id),
                exc_info=True,
            )
            return
        self._bypass.discard(patient_id)

    def _drop(self, patient_id: str) -> None:
        try:
            self.backend.delete(patient_id)
        except Exception:
            # Entry may still be there; stop trusting it
            self._bypass.add(patient_id)
            logger.error(
                "Policy cache invalidation failed for patient %s; bypassing cache",
                mask_ci(patient_id),
                exc_info=True,
            )

    async def get(self, patient_id: str, store: PolicyRepository) -> list[Policy]:
        """Return the patient's policies, loading them from ``store`` on a miss.

        Raises:
            InternalError: If the store read fails
        """
        async with self._lock_for(patient_id):
            entry = self._lookup(patient_id)
            if entry is not None:
                self.hits += 1
                return list(entry.policies)

            self.misses += 1
            try:
                policies = await store.find_by_patient(patient_id)
            except Exception as e:
                logger.error(
                    "Policy store read failed for patient %s",
                    mask_ci(patient_id),
                    exc_info=True,
                )
                raise InternalError("Unable to load the patient's policies") from e

            self._remember(patient_id, policies)
            return list(policies)

    def invalidate(self, patient_id: str) -> None:
        """Drop the patient's entry; the next read repopulates it."""
        self._drop(patient_id)
        logger.debug("Policy cache invalidated for patient %s", mask_ci(patient_id))

    @asynccontextmanager
    async def writing(self, patient_id: str) -> AsyncIterator[None]:
        """Serialize a policy write for a patient and invalidate afterwards.

        The entry is dropped before the lock is released whether or not the
        write succeeded, since a failed write may still have reached the
        store.
        """
        async with self._lock_for(patient_id):
            try:
                yield
            finally:
                self.invalidate(patient_id)

    def clear(self) -> None:
        """Drop every entry (tests and admin tooling)."""
        try:
            self.backend.clear()
        finally:
            self._bypass.clear()
            self.hits = 0
            self.misses = 0


policy_cache = PolicyCache()
