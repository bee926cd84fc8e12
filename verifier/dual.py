"""
Dual-rail cross-validation.

Both rails are verified independently and concurrently; the combined result
is only valid when both pass AND they agree on amount and currency. Someone
who controls one rail can fool a single-rail verifier, but not this one.
"""
from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional

import structlog

from codec.timestamps import utc_now
from providers.ledger import TokenRecord
from verifier.credential import CredentialVerifier
from verifier.requirements import amounts_equal
from verifier.results import CrossValidation, DualRailResult, FailureCode, RequirementSpec, VerificationResult
from verifier.token import TokenVerifier

logger = structlog.get_logger(__name__)

REASON_OK = "Dual verification successful with cross-validation"
REASON_MISMATCH = "Methods valid but claims do not match"
REASON_RAIL_FAILED = "One or both verification methods failed"


def cross_validate(credential: VerificationResult, token: VerificationResult) -> CrossValidation:
    cm: Dict[str, Any] = credential.metadata
    tm: Dict[str, Any] = token.metadata
    return CrossValidation(
        both_valid=credential.valid and token.valid,
        amount_match=amounts_equal(cm.get("amount"), tm.get("amount")),
        currency_match=cm.get("currency") is not None and cm.get("currency") == tm.get("currency"),
        token_id_match=cm.get("tokenId") is not None and cm.get("tokenId") == tm.get("tokenId"),
    )


def combine(credential: VerificationResult, token: VerificationResult, verified_at: datetime) -> DualRailResult:
    cross = cross_validate(credential, token)
    valid = cross.both_valid and cross.amount_match and cross.currency_match
    if not cross.both_valid:
        reason = REASON_RAIL_FAILED
        code = credential.code if not credential.valid else token.code
    elif valid:
        reason, code = REASON_OK, None
    else:
        reason, code = REASON_MISMATCH, FailureCode.REQUIREMENT_MISMATCH
    return DualRailResult(
        valid=valid,
        reason=reason,
        code=code,
        cross_validation=cross,
        credential=credential,
        token=token,
        verified_at=verified_at,
    )


async def _settle_both(credential_check: Awaitable[VerificationResult], token_check: Awaitable[VerificationResult]):
    """
    Await both rails to completion. A provider fault on one rail is raised
    only after the other rail has settled, so neither call is left running.
    """
    outcomes = await asyncio.gather(credential_check, token_check, return_exceptions=True)
    for rail, outcome in zip(("vc", "token"), outcomes):
        if isinstance(outcome, BaseException):
            logger.warning("dual_rail_provider_fault", rail=rail, error=str(outcome))
            raise outcome
    return outcomes

class DualRailValidator:
    def __init__(
        self,
        credentials: CredentialVerifier,
        tokens: TokenVerifier,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.credentials = credentials
        self.tokens = tokens
        self.clock = clock

    def _incomplete(self, have_vc: bool, have_token: bool) -> DualRailResult:
        missing = [name for name, present in (("credential", have_vc), ("token", have_token)) if not present]
        logger.info("dual_rail_incomplete", missing=missing)
        return DualRailResult(
            valid=False,
            reason=f"Dual verification requires both rails; missing {' and '.join(missing)}",
            code=FailureCode.INCOMPLETE_DUAL_RAIL,
            verified_at=self.clock(),
        )

    async def verify_dual(
        self,
        credential: Optional[Dict[str, Any]],
        token: Optional[TokenRecord],
        requirements: Optional[RequirementSpec] = None,
    ) -> DualRailResult:
        if credential is None or token is None:
            return self._incomplete(credential is not None, token is not None)
        cred_result, token_result = await _settle_both(
            self.credentials.verify(credential, requirements),
            self.tokens.verify(token, requirements),
        )
        return self._finish(cred_result, token_result)

    async def verify_dual_refs(
        self,
        vc_uri: Optional[str],
        token_id: Optional[str],
        requirements: Optional[RequirementSpec] = None,
    ) -> DualRailResult:
        """Same as verify_dual, resolving the credential URI and token id first."""
        if not vc_uri or not token_id:
            return self._incomplete(bool(vc_uri), bool(token_id))
        cred_result, token_result = await _settle_both(
            self.credentials.verify_uri(vc_uri, requirements),
            self.tokens.verify_id(token_id, requirements),
        )
        return self._finish(cred_result, token_result)

    def _finish(self, cred_result: VerificationResult, token_result: VerificationResult) -> DualRailResult:
        result = combine(cred_result, token_result, self.clock())
        logger.info(
            "dual_rail_verified",
            valid=result.valid,
            **result.cross_validation.to_dict(),
        )
        return result
