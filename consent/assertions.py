"""
Consent-gated yes/no assertions about a subject.

An assertion is never a new source of truth. Its proof field points at the
stored credential (cas://...) or ledger token (token:<id>) or provider record
that backs the answer, so a consumer can re-check it independently.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple
from urllib.parse import urlencode

import structlog
from Crypto.PublicKey import ECC

from codec.keys import address_from_did, is_address
from codec.signing import sign_canonical, verify_canonical
from codec.timestamps import from_unix, to_iso, to_millis, utc_now
from consent.store import ConsentStore
from issuer.issue import DEVICE_TYPE, KYC_TYPE, POF_TYPE, SECURITY_LEVELS
from providers.base import NotFound
from providers.kyc import KycProvider
from providers.ledger import LedgerRegistry
from providers.storage import CredentialRepository
from verifier.credential import CredentialVerifier
from verifier.results import RequirementSpec, VerificationResult
from verifier.token import TokenVerifier

logger = structlog.get_logger(__name__)

SCOPE_KYC = "kyc_status"
SCOPE_BALANCE = "balance_verification"
SCOPE_DEVICE = "device_attestation"

DEFAULT_BALANCE_ASSET = "USDC"
DEFAULT_DEVICE_LEVEL = "basic"


@dataclass(frozen=True)
class AssertionKind:
    scope: str
    response_name: str
    validity: timedelta


# validity follows how fast the underlying fact moves
ASSERTIONS: Dict[str, AssertionKind] = {
    "hasKYC": AssertionKind(SCOPE_KYC, "has_kyc", timedelta(hours=24)),
    "hasBalance": AssertionKind(SCOPE_BALANCE, "has_minimum_balance", timedelta(hours=1)),
    "isDeviceCompliant": AssertionKind(SCOPE_DEVICE, "device_compliant", timedelta(days=7)),
}


class ConsentRequired(Exception):
    """The requester holds no live grant for the scope this assertion needs."""

    def __init__(self, scope: str, requester: str, subject_id: str) -> None:
        super().__init__(f"{requester} needs {scope} consent from {subject_id}")
        self.scope = scope
        self.requester = requester
        self.subject_id = subject_id

    @property
    def consent_url(self) -> str:
        return "/consent/grant?" + urlencode({"scope": self.scope, "requester": self.requester})

    @property
    def remediation(self) -> Dict[str, Any]:
        return {
            "subjectId": self.subject_id,
            "grantTo": self.requester,
            "scopes": [self.scope],
        }


class UnknownAssertion(LookupError):
    def __init__(self, name: str) -> None:
        super().__init__(f"unknown assertion {name!r}; expected one of {sorted(ASSERTIONS)}")
        self.name = name


@dataclass(frozen=True)
class Assertion:
    assertion: str
    result: bool
    proof: Optional[str]
    metadata: Dict[str, Any]
    issued_at: datetime
    valid_until: datetime
    signature: Optional[str] = None

    def body(self) -> Dict[str, Any]:
        return {
            "assertion": self.assertion,
            "result": self.result,
            "proof": self.proof,
            "metadata": self.metadata,
            "issuedAt": to_millis(self.issued_at),
            "validUntil": to_millis(self.valid_until),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {**self.body(), "signature": self.signature}


def sign_assertion(assertion: Assertion, service_sk: ECC.EccKey) -> Assertion:
    return replace(assertion, signature=sign_canonical(assertion.body(), service_sk))


def verify_assertion_signature(data: Mapping[str, Any], service_pk: ECC.EccKey) -> bool:
    """Check a serialized assertion (as returned by to_dict) against the service key."""
    body = {k: v for k, v in data.items() if k != "signature"}
    return verify_canonical(body, data.get("signature"), service_pk)


@dataclass
class Finding:
    result: bool
    proof: Optional[str]
    metadata: Dict[str, Any] = field(default_factory=dict)


def subject_address(subject_id: str) -> Optional[str]:
    if is_address(subject_id):
        return subject_id
    try:
        return address_from_did(subject_id)
    except ValueError:
        return None


def level_rank(level: Optional[str]) -> int:
    return SECURITY_LEVELS.index(level) if level in SECURITY_LEVELS else -1


class AssertionEngine:
    def __init__(
        self,
        consents: ConsentStore,
        repository: CredentialRepository,
        credential_verifier: CredentialVerifier,
        token_verifier: Optional[TokenVerifier] = None,
        ledger: Optional[LedgerRegistry] = None,
        kyc_provider: Optional[KycProvider] = None,
        service_sk: Optional[ECC.EccKey] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.consents = consents
        self.repository = repository
        self.credential_verifier = credential_verifier
        self.token_verifier = token_verifier
        self.ledger = ledger
        self.kyc_provider = kyc_provider
        self.service_sk = service_sk
        self.clock = clock
        self._handlers: Dict[str, Callable[[str, Mapping[str, Any]], Awaitable[Finding]]] = {
            "hasKYC": self.has_kyc,
            "hasBalance": self.has_balance,
            "isDeviceCompliant": self.is_device_compliant,
        }

    async def evaluate(
        self,
        name: str,
        subject_id: str,
        requester_id: str,
        params: Optional[Mapping[str, Any]] = None,
    ) -> Assertion:
        kind = ASSERTIONS.get(name)
        if kind is None:
            raise UnknownAssertion(name)

        if not await self.consents.has_consent(subject_id, requester_id, kind.scope):
            logger.info("assertion_denied", assertion=name, subject_id=subject_id, requester=requester_id, scope=kind.scope)
            raise ConsentRequired(kind.scope, requester_id, subject_id)

        finding = await self._handlers[name](subject_id, params or {})
        now = self.clock()
        assertion = Assertion(
            assertion=kind.response_name,
            result=finding.result,
            proof=finding.proof,
            metadata=finding.metadata,
            issued_at=now,
            valid_until=now + kind.validity,
        )
        if self.service_sk is not None:
            assertion = sign_assertion(assertion, self.service_sk)
        logger.info(
            "assertion_evaluated",
            assertion=name,
            subject_id=subject_id,
            requester=requester_id,
            result=finding.result,
            proof=finding.proof,
        )
        return assertion

    async def _verified(
        self, subject_id: str, credential_type: str, requirements: Optional[RequirementSpec] = None
    ) -> List[Tuple[str, VerificationResult]]:
        verified = []
        for uri, vc in await self.repository.scan(subject_id=subject_id, credential_type=credential_type):
            result = await self.credential_verifier.verify(vc, requirements)
            if result.valid:
                verified.append((uri, result))
        return verified

    async def has_kyc(self, subject_id: str, params: Mapping[str, Any]) -> Finding:
        verified = await self._verified(subject_id, KYC_TYPE)
        if verified:
            # an approved credential wins over a stale rejection
            uri, result = max(verified, key=lambda item: bool(item[1].metadata.get("kyc", {}).get("approved")))
            kyc = result.metadata.get("kyc", {})
            return Finding(
                result=bool(kyc.get("approved")),
                proof=uri,
                metadata={
                    "kycLevel": kyc.get("level"),
                    "provider": kyc.get("provider"),
                    "verifiedAt": kyc.get("verifiedAt"),
                    "source": "credential",
                },
            )

        if self.kyc_provider is not None:
            try:
                verdict = await self.kyc_provider.check(subject_id)
            except NotFound:
                verdict = None
            if verdict is not None:
                return Finding(
                    result=verdict.approved,
                    proof=verdict.reference,
                    metadata={
                        "kycLevel": verdict.level,
                        "provider": verdict.provider,
                        "verifiedAt": to_iso(from_unix(verdict.verified_at)),
                        "source": "provider",
                    },
                )

        return Finding(result=False, proof=None, metadata={"source": None})

    async def has_balance(self, subject_id: str, params: Mapping[str, Any]) -> Finding:
        if params.get("minAmount") in (None, ""):
            raise ValueError("minAmount is required")
        asset = params.get("asset") or DEFAULT_BALANCE_ASSET
        requirements = RequirementSpec.from_params(asset, params["minAmount"])
        metadata: Dict[str, Any] = {
            "asset": asset,
            "minimumAmount": str(requirements.min_amount),
            "verifiedAt": to_iso(self.clock()),
        }

        verified = await self._verified(subject_id, POF_TYPE, requirements)
        if verified:
            return Finding(result=True, proof=verified[0][0], metadata={**metadata, "source": "credential"})

        address = subject_address(subject_id)
        if address and self.ledger is not None and self.token_verifier is not None:
            for token in await self.ledger.tokens_held_by(address):
                result = await self.token_verifier.verify(token, requirements)
                if result.valid:
                    return Finding(result=True, proof=f"token:{token.id}", metadata={**metadata, "source": "token"})

        return Finding(result=False, proof=None, metadata={**metadata, "source": None})

    async def is_device_compliant(self, subject_id: str, params: Mapping[str, Any]) -> Finding:
        required = params.get("requiredLevel") or DEFAULT_DEVICE_LEVEL
        if required not in SECURITY_LEVELS:
            raise ValueError(f"requiredLevel must be one of {list(SECURITY_LEVELS)}")

        verified = await self._verified(subject_id, DEVICE_TYPE)
        if not verified:
            return Finding(
                result=False,
                proof=None,
                metadata={"requiredLevel": required, "actualLevel": None, "attestations": []},
            )

        uri, best = max(verified, key=lambda item: level_rank(item[1].metadata.get("device", {}).get("securityLevel")))
        device = best.metadata.get("device", {})
        actual = device.get("securityLevel")
        return Finding(
            result=level_rank(actual) >= level_rank(required),
            proof=uri,
            metadata={
                "requiredLevel": required,
                "actualLevel": actual,
                "attestations": list(device.get("attestations", [])),
                "verifiedAt": device.get("verifiedAt"),
            },
        )
