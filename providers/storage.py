"""
Content-addressed credential storage.

A credential document is stored under cas://sha256/<hex>, the SHA-256 of its
canonical JSON. Identical documents share a URI; any edit yields a new one.
"""
from __future__ import annotations

import asyncio
import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from codec.canonical import canonicalize
from codec.hashing import sha256_hex
from providers.base import NotFound, ProviderPolicy

PROVIDER = "storage"
URI_PREFIX = "cas://sha256/"
DEFAULT_STORE_DIR = Path("issuer_data") / "credentials"


def content_uri(vc: Dict[str, Any]) -> str:
    return URI_PREFIX + sha256_hex(canonicalize(vc))


def _digest_of(uri: str) -> str:
    if not uri.startswith(URI_PREFIX):
        raise NotFound(PROVIDER, f"{uri} (unsupported credential URI scheme)")
    return uri[len(URI_PREFIX):]


def matches(vc: Dict[str, Any], subject_id: Optional[str], credential_type: Optional[str]) -> bool:
    if subject_id is not None and (vc.get("credentialSubject") or {}).get("id") != subject_id:
        return False
    if credential_type is not None and credential_type not in (vc.get("type") or []):
        return False
    return True


class CredentialRepository(ABC):
    def __init__(self, policy: Optional[ProviderPolicy] = None) -> None:
        self.policy = policy or ProviderPolicy()

    async def store(self, vc: Dict[str, Any]) -> str:
        uri = content_uri(vc)
        await self.policy.run(PROVIDER, lambda: self._put(_digest_of(uri), vc))
        return uri

    async def retrieve(self, uri: str) -> Dict[str, Any]:
        digest = _digest_of(uri)
        vc = await self.policy.run(PROVIDER, lambda: self._get(digest))
        if vc is None:
            raise NotFound(PROVIDER, uri)
        return vc

    async def scan(self, subject_id: Optional[str] = None, credential_type: Optional[str] = None) -> List[Tuple[str, Dict[str, Any]]]:
        """All stored (uri, credential) pairs for a subject and/or credential type."""
        entries = await self.policy.run(PROVIDER, self._all)
        return [(URI_PREFIX + d, vc) for d, vc in entries if matches(vc, subject_id, credential_type)]

    @abstractmethod
    async def _put(self, digest: str, vc: Dict[str, Any]) -> None:
        ...

    @abstractmethod
    async def _get(self, digest: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    async def _all(self) -> Iterable[Tuple[str, Dict[str, Any]]]:
        ...


class InMemoryCredentialRepository(CredentialRepository):
    def __init__(self, policy: Optional[ProviderPolicy] = None) -> None:
        super().__init__(policy)
        self._docs: Dict[str, Dict[str, Any]] = {}

    async def _put(self, digest: str, vc: Dict[str, Any]) -> None:
        # stored as canonical JSON so later mutation of the caller's dict cannot leak in
        self._docs[digest] = json.loads(canonicalize(vc))

    async def _get(self, digest: str) -> Optional[Dict[str, Any]]:
        doc = self._docs.get(digest)
        return json.loads(canonicalize(doc)) if doc is not None else None

    async def _all(self) -> Iterable[Tuple[str, Dict[str, Any]]]:
        return list(self._docs.items())


class FileCredentialRepository(CredentialRepository):
    """One pretty-printed JSON file per credential: <dir>/<sha256>.json"""

    def __init__(self, directory: Path = DEFAULT_STORE_DIR, policy: Optional[ProviderPolicy] = None) -> None:
        super().__init__(policy)
        self.directory = Path(directory)

    def _path(self, digest: str) -> Path:
        return self.directory / f"{digest}.json"

    def _write(self, digest: str, vc: Dict[str, Any]) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        self._path(digest).write_text(json.dumps(vc, indent=2, sort_keys=True), encoding="utf-8")

    def _read(self, digest: str) -> Optional[Dict[str, Any]]:
        path = self._path(digest)
        if not path.exists():
            return None
        return json.loads(path.read_text(encoding="utf-8"))

    def _read_all(self) -> List[Tuple[str, Dict[str, Any]]]:
        if not self.directory.exists():
            return []
        return [(p.stem, json.loads(p.read_text(encoding="utf-8"))) for p in sorted(self.directory.glob("*.json"))]

    async def _put(self, digest: str, vc: Dict[str, Any]) -> None:
        await asyncio.to_thread(self._write, digest, vc)

    async def _get(self, digest: str) -> Optional[Dict[str, Any]]:
        return await asyncio.to_thread(self._read, digest)

    async def _all(self) -> Iterable[Tuple[str, Dict[str, Any]]]:
        return await asyncio.to_thread(self._read_all)
