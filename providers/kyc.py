"""KYC provider adapter: a verdict plus metadata for a subject."""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests

from providers.base import NotFound, ProviderPolicy, http_get_json

PROVIDER = "kyc"


@dataclass(frozen=True)
class KycVerdict:
    subject_id: str
    approved: bool
    level: str
    provider: str
    verified_at: int  # unix seconds
    reference: str  # provider-side record the verdict can be re-checked against

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "KycVerdict":
        return cls(
            subject_id=data["subjectId"],
            approved=bool(data["approved"]),
            level=data.get("level", "standard"),
            provider=data["provider"],
            verified_at=int(data["verifiedAt"]),
            reference=data["reference"],
        )


class KycProvider(ABC):
    def __init__(self, policy: Optional[ProviderPolicy] = None) -> None:
        self.policy = policy or ProviderPolicy()

    async def check(self, subject_id: str) -> KycVerdict:
        return await self.policy.run(PROVIDER, lambda: self._check(subject_id))

    @abstractmethod
    async def _check(self, subject_id: str) -> KycVerdict:
        ...


class InMemoryKycProvider(KycProvider):
    def __init__(self, verdicts: Optional[Dict[str, KycVerdict]] = None, policy: Optional[ProviderPolicy] = None) -> None:
        super().__init__(policy)
        self._verdicts = dict(verdicts or {})

    def put(self, verdict: KycVerdict) -> None:
        self._verdicts[verdict.subject_id] = verdict

    async def _check(self, subject_id: str) -> KycVerdict:
        verdict = self._verdicts.get(subject_id)
        if verdict is None:
            raise NotFound(PROVIDER, subject_id)
        return verdict


class HttpKycProvider(KycProvider):
    """GET {base_url}/subjects/{id}/kyc -> KycVerdict JSON"""

    def __init__(self, base_url: str, policy: Optional[ProviderPolicy] = None, session: Optional[requests.Session] = None) -> None:
        super().__init__(policy)
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()

    async def _check(self, subject_id: str) -> KycVerdict:
        data = await http_get_json(self.session, PROVIDER, f"{self.base_url}/subjects/{subject_id}/kyc", self.policy.timeout)
        return KycVerdict.from_dict(data)
