"""
Ledger rail verification.

No signature step (the registry is trusted) and no revocation lookup (the
registry's own valid flag plays that role).
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import structlog

from codec.timestamps import from_unix, to_iso, utc_now
from issuer.issue import extract_currency
from providers.base import NotFound, ProviderTimeout
from providers.ledger import LedgerRegistry, TokenRecord
from verifier.requirements import check_requirements
from verifier.results import FailureCode, RequirementSpec, VerificationResult

logger = structlog.get_logger(__name__)

TOKEN_ISSUER = "SiloBridge Ledger Registry"


def token_metadata(token: TokenRecord) -> Dict[str, Any]:
    return {
        "tokenId": token.id,
        "asset": token.asset_type,
        "amount": token.amount,
        "currency": extract_currency(token.asset_type),
        "holderAddress": token.holder_address,
        "custodian": token.custodian,
        "auditHash": token.audit_hash,
        "kycCompliant": token.compliance.kyc,
        "sanctionsCleared": token.compliance.sanctions,
    }


def token_claims(token: TokenRecord) -> List[str]:
    claims = [f"Holds {token.amount} {token.asset_type}"]
    if token.compliance.kyc:
        claims.append("KYC Compliant")
    if token.compliance.sanctions:
        claims.append("Sanctions Cleared")
    return claims


class TokenVerifier:
    def __init__(self, ledger: Optional[LedgerRegistry] = None, clock: Callable[[], datetime] = utc_now) -> None:
        self.ledger = ledger
        self.clock = clock

    async def verify(self, token: TokenRecord, requirements: Optional[RequirementSpec] = None) -> VerificationResult:
        requirements = requirements or RequirementSpec()
        now = self.clock()
        context = {
            "issued_by": token.custodian or TOKEN_ISSUER,
            "expires_at": to_iso(from_unix(token.expiry)),
            "verified_at": now,
            "claims": token_claims(token),
            "metadata": token_metadata(token),
        }

        if not token.valid:
            return self._fail(FailureCode.REVOKED, "Token invalidated by registry", token, **context)
        if token.expiry <= now.timestamp():
            return self._fail(FailureCode.EXPIRED, f"Token expired at {context['expires_at']}", token, **context)
        if not token.compliance.kyc:
            return self._fail(FailureCode.REQUIREMENT_MISMATCH, "Token holder is not KYC compliant", token, **context)
        if not token.compliance.sanctions:
            return self._fail(FailureCode.REQUIREMENT_MISMATCH, "Token holder is not sanctions cleared", token, **context)

        ok, reason = check_requirements(token.asset_type, token.amount, requirements)
        if not ok:
            return self._fail(FailureCode.REQUIREMENT_MISMATCH, reason, token, **context)

        return VerificationResult(valid=True, **context)

    async def verify_id(self, token_id: str, requirements: Optional[RequirementSpec] = None) -> VerificationResult:
        if self.ledger is None:
            raise RuntimeError("TokenVerifier has no ledger to resolve token ids")
        try:
            token = await self.ledger.get_token(token_id)
        except NotFound:
            logger.info("verification_failed", rail="token", token_id=token_id, code=FailureCode.NOT_FOUND.value)
            return VerificationResult.failure(FailureCode.NOT_FOUND, "Token not found", verified_at=self.clock())
        except ProviderTimeout as exc:
            return VerificationResult.failure(FailureCode.PROVIDER_TIMEOUT, str(exc), verified_at=self.clock())
        return await self.verify(token, requirements)

    def _fail(self, code: FailureCode, reason: str, token: TokenRecord, **kwargs: Any) -> VerificationResult:
        logger.info("verification_failed", rail="token", token_id=token.id, code=code.value, reason=reason)
        return VerificationResult.failure(code, reason, **kwargs)
