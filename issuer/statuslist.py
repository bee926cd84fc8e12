from __future__ import annotations

import asyncio
import json
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

import structlog
from Crypto.PublicKey import ECC

from codec.signing import sign_canonical, verify_canonical
from codec.timestamps import to_iso, utc_now
from providers.base import ProviderPolicy

logger = structlog.get_logger(__name__)

PROVIDER = "revocation"
REVOKED_PATH = Path("issuer_data/revoked.json")
STATUS_TYPE = "SiloBridgeRevocationList2024"


class RevocationRegistry(ABC):
    """
    Revoked/not-revoked lookup keyed by a credential's status pointer
    (credentialStatus.id). Revocation is explicit and permanent.
    """

    def __init__(self, policy: Optional[ProviderPolicy] = None) -> None:
        self.policy = policy or ProviderPolicy()

    async def is_revoked(self, status_id: str) -> bool:
        return await self.policy.run(PROVIDER, lambda: self._contains(status_id))

    async def revoke(self, status_id: str) -> bool:
        """Returns False when the pointer was already revoked."""
        added = await self.policy.run(PROVIDER, lambda: self._add(status_id))
        if added:
            logger.info("credential_revoked", status_id=status_id)
        return added

    async def revoked_ids(self) -> List[str]:
        return sorted(await self.policy.run(PROVIDER, self._all))

    @abstractmethod
    async def _contains(self, status_id: str) -> bool:
        ...

    @abstractmethod
    async def _add(self, status_id: str) -> bool:
        """Atomic insert; True if the id was not present before."""

    @abstractmethod
    async def _all(self) -> List[str]:
        ...


class InMemoryRevocationRegistry(RevocationRegistry):
    def __init__(self, policy: Optional[ProviderPolicy] = None) -> None:
        super().__init__(policy)
        self._revoked: Set[str] = set()
        self._lock = threading.Lock()

    async def _contains(self, status_id: str) -> bool:
        return status_id in self._revoked

    async def _add(self, status_id: str) -> bool:
        with self._lock:
            if status_id in self._revoked:
                return False
            self._revoked.add(status_id)
            return True

    async def _all(self) -> List[str]:
        return list(self._revoked)


class FileRevocationRegistry(RevocationRegistry):
    def __init__(self, path: Path = REVOKED_PATH, policy: Optional[ProviderPolicy] = None) -> None:
        super().__init__(policy)
        self.path = Path(path)
        self._lock = threading.Lock()

    def load_revoked(self) -> List[str]:
        if not self.path.exists():
            return []
        return json.loads(self.path.read_text())

    def save_revoked(self, lst: List[str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(lst, indent=2, sort_keys=True))

    def _add_sync(self, status_id: str) -> bool:
        with self._lock:
            revoked = self.load_revoked()
            if status_id in revoked:
                return False
            revoked.append(status_id)
            self.save_revoked(revoked)
            return True

    async def _contains(self, status_id: str) -> bool:
        return status_id in await asyncio.to_thread(self.load_revoked)

    async def _add(self, status_id: str) -> bool:
        return await asyncio.to_thread(self._add_sync, status_id)

    async def _all(self) -> List[str]:
        return await asyncio.to_thread(self.load_revoked)


def build_statuslist(revoked: List[str], issuer_id: str, service_sk: ECC.EccKey) -> Dict[str, Any]:
    status = {
        "version": "v1",
        "type": STATUS_TYPE,
        "issuer_id": issuer_id,
        "updated": to_iso(utc_now()),
        "revoked": sorted(revoked),
    }
    return {**status, "sig": sign_canonical(status, service_sk)}


def verify_statuslist(statuslist: Dict[str, Any], service_pk: ECC.EccKey) -> bool:
    status = {k: v for k, v in statuslist.items() if k != "sig"}
    return verify_canonical(status, statuslist.get("sig"), service_pk)
