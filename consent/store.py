"""
Per-subject consent grants.

Invariants:
    - at most one effective grant per (subject, requester, scope): a grant
      replaces every earlier grant to the same requester that shares a scope
      with it; only revoke narrows a grant to its remaining scopes
    - a grant past expires_at is treated exactly like a missing one; nothing
      has to delete it first

Writes are optimistic: read the subject's versioned grant tuple, compute the
replacement, compare-and-swap, retry on conflict. Readers always see one
complete version of the tuple.
"""
from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Tuple, TypeVar
from uuid import uuid4

import structlog

from codec.timestamps import to_millis, utc_now

logger = structlog.get_logger(__name__)

DEFAULT_TTL = timedelta(days=30)
MAX_WRITE_ATTEMPTS = 16

T = TypeVar("T")


@dataclass(frozen=True)
class ConsentGrant:
    consent_id: str
    subject_id: str
    granted_to: str
    scopes: FrozenSet[str]
    granted_at: datetime
    expires_at: datetime

    def is_active(self, now: datetime) -> bool:
        return self.expires_at > now

    def covers(self, scope: str, now: datetime) -> bool:
        return scope in self.scopes and self.is_active(now)

    def without(self, scopes: Iterable[str]) -> Optional["ConsentGrant"]:
        remaining = self.scopes - frozenset(scopes)
        return replace(self, scopes=remaining) if remaining else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "consentId": self.consent_id,
            "userId": self.subject_id,
            "grantedTo": self.granted_to,
            "scopes": sorted(self.scopes),
            "grantedAt": to_millis(self.granted_at),
            "expiresAt": to_millis(self.expires_at),
        }


Grants = Tuple[ConsentGrant, ...]


class GrantRepository(ABC):
    """Versioned store of each subject's grants."""

    @abstractmethod
    async def load(self, subject_id: str) -> Tuple[int, Grants]:
        """Current (version, grants); (0, ()) for an unknown subject."""

    @abstractmethod
    async def compare_and_swap(self, subject_id: str, expected_version: int, grants: Grants) -> bool:
        """Replace the subject's grants iff the stored version still equals expected_version."""

    @abstractmethod
    async def subjects(self) -> List[str]:
        ...


class InMemoryGrantRepository(GrantRepository):
    def __init__(self) -> None:
        self._records: Dict[str, Tuple[int, Grants]] = {}
        self._lock = threading.Lock()

    async def load(self, subject_id: str) -> Tuple[int, Grants]:
        with self._lock:
            return self._records.get(subject_id, (0, ()))

    async def compare_and_swap(self, subject_id: str, expected_version: int, grants: Grants) -> bool:
        with self._lock:
            version, _ = self._records.get(subject_id, (0, ()))
            if version != expected_version:
                return False
            self._records[subject_id] = (version + 1, tuple(grants))
            return True

    async def subjects(self) -> List[str]:
        with self._lock:
            return list(self._records)


class ConsentConflict(RuntimeError):
    pass


def _live(grants: Grants, now: datetime) -> Grants:
    return tuple(g for g in grants if g.is_active(now))


class ConsentStore:
    def __init__(
        self,
        repository: Optional[GrantRepository] = None,
        clock: Callable[[], datetime] = utc_now,
        default_ttl: timedelta = DEFAULT_TTL,
    ) -> None:
        self.repository = repository or InMemoryGrantRepository()
        self.clock = clock
        self.default_ttl = default_ttl

    async def _update(self, subject_id: str, mutate: Callable[[Grants, datetime], Tuple[Grants, T]]) -> T:
        for attempt in range(MAX_WRITE_ATTEMPTS):
            version, grants = await self.repository.load(subject_id)
            updated, outcome = mutate(grants, self.clock())
            if await self.repository.compare_and_swap(subject_id, version, updated):
                return outcome
            logger.debug("consent_write_conflict", subject_id=subject_id, attempt=attempt + 1)
        raise ConsentConflict(f"consent update for {subject_id} lost {MAX_WRITE_ATTEMPTS} races in a row")

    async def grant(
        self,
        subject_id: str,
        requester: str,
        scopes: Iterable[str],
        ttl: Optional[timedelta] = None,
    ) -> ConsentGrant:
        scope_set = frozenset(scopes)
        if not scope_set:
            raise ValueError("at least one scope is required")
        ttl = self.default_ttl if ttl is None else ttl
        if ttl <= timedelta(0):
            raise ValueError("ttl must be positive")

        def mutate(grants: Grants, now: datetime) -> Tuple[Grants, ConsentGrant]:
            new_grant = ConsentGrant(
                consent_id=str(uuid4()),
                subject_id=subject_id,
                granted_to=requester,
                scopes=scope_set,
                granted_at=now,
                expires_at=now + ttl,
            )
            # an overlapping earlier grant to this requester is replaced whole
            kept = [g for g in _live(grants, now) if g.granted_to != requester or not g.scopes & scope_set]
            kept.append(new_grant)
            return tuple(kept), new_grant

        granted = await self._update(subject_id, mutate)
        logger.info(
            "consent_granted",
            subject_id=subject_id,
            requester=requester,
            scopes=sorted(scope_set),
            expires_at=granted.expires_at.isoformat(),
        )
        return granted

    async def revoke(self, subject_id: str, requester: str, scopes: Optional[Iterable[str]] = None) -> int:
        """
        Without scopes: drop every grant to requester. With scopes: subtract
        them, keeping whatever else each grant covered. Returns how many
        grants were removed or narrowed.
        """
        scope_set = frozenset(scopes) if scopes is not None else None

        def mutate(grants: Grants, now: datetime) -> Tuple[Grants, int]:
            kept: List[ConsentGrant] = []
            touched = 0
            for g in _live(grants, now):
                if g.granted_to != requester:
                    kept.append(g)
                    continue
                if scope_set is None:
                    touched += 1
                    continue
                if g.scopes & scope_set:
                    touched += 1
                    rest = g.without(scope_set)
                    if rest is not None:
                        kept.append(rest)
                else:
                    kept.append(g)
            return tuple(kept), touched

        touched = await self._update(subject_id, mutate)
        logger.info(
            "consent_revoked",
            subject_id=subject_id,
            requester=requester,
            scopes=sorted(scope_set) if scope_set is not None else "all",
            grants_touched=touched,
        )
        return touched

    async def has_consent(self, subject_id: str, requester: str, scope: str) -> bool:
        _, grants = await self.repository.load(subject_id)
        now = self.clock()
        return any(g.granted_to == requester and g.covers(scope, now) for g in grants)

    async def active_grants(self, subject_id: str, requester: Optional[str] = None) -> List[ConsentGrant]:
        _, grants = await self.repository.load(subject_id)
        now = self.clock()
        return [g for g in grants if g.is_active(now) and (requester is None or g.granted_to == requester)]

    async def purge_expired(self) -> int:
        """Physically drop expired grants. Never required for correctness."""

        def mutate(grants: Grants, now: datetime) -> Tuple[Grants, int]:
            live = _live(grants, now)
            return live, len(grants) - len(live)

        removed = 0
        for subject_id in await self.repository.subjects():
            removed += await self._update(subject_id, mutate)
        if removed:
            logger.info("consent_purged", grants_removed=removed)
        return removed
