"""Token registry (ledger rail). The core only reads token records."""
from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

import requests

from providers.base import NotFound, ProviderPolicy, http_get_json

PROVIDER = "ledger"


@dataclass(frozen=True)
class ComplianceFlags:
    kyc: bool
    sanctions: bool


@dataclass(frozen=True)
class TokenRecord:
    id: str
    asset_type: str
    amount: str
    holder_address: str
    expiry: int
    compliance: ComplianceFlags
    custodian: Optional[str] = None
    audit_hash: Optional[str] = None
    valid: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TokenRecord":
        # accepts both the registry wire shape and the flat demo-seed shape
        flags = data.get("complianceFlags") or {}
        return cls(
            id=str(data.get("id", data.get("tokenId"))),
            asset_type=data.get("assetType", data.get("asset")),
            amount=str(data["amount"]),
            holder_address=data["holderAddress"],
            expiry=int(data["expiry"]),
            compliance=ComplianceFlags(
                kyc=bool(flags.get("kyc", data.get("kycCompliant", False))),
                sanctions=bool(flags.get("sanctions", data.get("sanctionsCleared", False))),
            ),
            custodian=data.get("custodian"),
            audit_hash=data.get("auditHash"),
            valid=bool(data.get("valid", True)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "assetType": self.asset_type,
            "amount": self.amount,
            "holderAddress": self.holder_address,
            "expiry": self.expiry,
            "complianceFlags": {"kyc": self.compliance.kyc, "sanctions": self.compliance.sanctions},
            "custodian": self.custodian,
            "auditHash": self.audit_hash,
            "valid": self.valid,
        }


class LedgerRegistry(ABC):
    """Authoritative token lookup. Implementations raise NotFound for unknown ids."""

    def __init__(self, policy: Optional[ProviderPolicy] = None) -> None:
        self.policy = policy or ProviderPolicy()

    async def get_token(self, token_id: str) -> TokenRecord:
        return await self.policy.run(PROVIDER, lambda: self._get_token(token_id))

    async def tokens_held_by(self, address: str) -> List[TokenRecord]:
        return await self.policy.run(PROVIDER, lambda: self._tokens_held_by(address))

    @abstractmethod
    async def _get_token(self, token_id: str) -> TokenRecord:
        ...

    @abstractmethod
    async def _tokens_held_by(self, address: str) -> List[TokenRecord]:
        ...


class InMemoryLedgerRegistry(LedgerRegistry):
    def __init__(self, tokens: Optional[List[TokenRecord]] = None, policy: Optional[ProviderPolicy] = None) -> None:
        super().__init__(policy)
        self._tokens: Dict[str, TokenRecord] = {t.id: t for t in tokens or []}

    @classmethod
    def from_seed_file(cls, path: Path, policy: Optional[ProviderPolicy] = None) -> "InMemoryLedgerRegistry":
        raw = json.loads(path.read_text(encoding="utf-8"))
        return cls([TokenRecord.from_dict(t) for t in raw], policy=policy)

    def put(self, token: TokenRecord) -> None:
        self._tokens[token.id] = token

    async def _get_token(self, token_id: str) -> TokenRecord:
        token = self._tokens.get(token_id)
        if token is None:
            raise NotFound(PROVIDER, token_id)
        return token

    async def _tokens_held_by(self, address: str) -> List[TokenRecord]:
        return [t for t in self._tokens.values() if t.holder_address.lower() == address.lower()]


class HttpLedgerRegistry(LedgerRegistry):
    """
    GET {base_url}/tokens/{id}            -> TokenRecord JSON
    GET {base_url}/tokens?holder={addr}   -> [TokenRecord JSON, ...]
    """

    def __init__(self, base_url: str, policy: Optional[ProviderPolicy] = None, session: Optional[requests.Session] = None) -> None:
        super().__init__(policy)
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()

    async def _get_token(self, token_id: str) -> TokenRecord:
        data = await http_get_json(self.session, PROVIDER, f"{self.base_url}/tokens/{token_id}", self.policy.timeout)
        return TokenRecord.from_dict(data)

    async def _tokens_held_by(self, address: str) -> List[TokenRecord]:
        data = await http_get_json(
            self.session, PROVIDER, f"{self.base_url}/tokens", self.policy.timeout, params={"holder": address}
        )
        return [TokenRecord.from_dict(t) for t in data]
