"""Sanctions screening adapter: cleared / not cleared for an address."""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional

import requests

from providers.base import ProviderPolicy, http_get_json

PROVIDER = "sanctions"


@dataclass(frozen=True)
class SanctionsVerdict:
    address: str
    cleared: bool
    list_version: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SanctionsVerdict":
        return cls(address=data["address"], cleared=bool(data["cleared"]), list_version=str(data.get("listVersion", "")))


class SanctionsScreening(ABC):
    def __init__(self, policy: Optional[ProviderPolicy] = None) -> None:
        self.policy = policy or ProviderPolicy()

    async def screen(self, address: str) -> SanctionsVerdict:
        return await self.policy.run(PROVIDER, lambda: self._screen(address))

    @abstractmethod
    async def _screen(self, address: str) -> SanctionsVerdict:
        ...


class InMemorySanctionsScreening(SanctionsScreening):
    """Blocklist screening. Addresses compare case-insensitively."""

    def __init__(self, blocked: Iterable[str] = (), list_version: str = "local", policy: Optional[ProviderPolicy] = None) -> None:
        super().__init__(policy)
        self._blocked = {a.lower() for a in blocked}
        self.list_version = list_version

    def block(self, address: str) -> None:
        self._blocked.add(address.lower())

    async def _screen(self, address: str) -> SanctionsVerdict:
        return SanctionsVerdict(address=address, cleared=address.lower() not in self._blocked, list_version=self.list_version)


class HttpSanctionsScreening(SanctionsScreening):
    """GET {base_url}/screen?address={addr} -> SanctionsVerdict JSON"""

    def __init__(self, base_url: str, policy: Optional[ProviderPolicy] = None, session: Optional[requests.Session] = None) -> None:
        super().__init__(policy)
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()

    async def _screen(self, address: str) -> SanctionsVerdict:
        data = await http_get_json(
            self.session, PROVIDER, f"{self.base_url}/screen", self.policy.timeout, params={"address": address}
        )
        return SanctionsVerdict.from_dict(data)
