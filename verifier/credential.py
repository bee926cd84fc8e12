"""
Credential rail verification.

Checks run in a fixed order and stop at the first failure:
    1. signature   recovered EIP-712 signer == address of issuer.id
    2. expiry      expirationDate not in the past
    3. revocation  credentialStatus.id not on the revocation registry
    4. requirement asset / minimum amount
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import structlog

from codec.keys import address_from_did, same_address
from codec.timestamps import parse_iso, utc_now
from codec.typed_data import SigningDomain, recover_signer
from codec.vc_schema import CREDENTIAL_SCHEMA, PROOF_TYPE, as_dict, as_list, credential_signing_value, issuer_id
from issuer.statuslist import RevocationRegistry
from providers.base import NotFound, ProviderTimeout
from providers.storage import CredentialRepository
from verifier.requirements import check_requirements
from verifier.results import FailureCode, RequirementSpec, VerificationResult

logger = structlog.get_logger(__name__)


def credential_metadata(vc: Dict[str, Any]) -> Dict[str, Any]:
    subject = as_dict(vc.get("credentialSubject"))
    metadata: Dict[str, Any] = {
        "credentialId": vc.get("id"),
        "types": as_list(vc.get("type")),
        "holderDID": subject.get("id"),
    }
    asset = as_dict(subject.get("hasAsset"))
    if asset:
        metadata["asset"] = asset.get("type")
        metadata["amount"] = asset.get("minimumAmount")
        metadata["currency"] = asset.get("currency")
    pof = as_dict(subject.get("proofOfFunds"))
    if pof:
        metadata["tokenId"] = pof.get("tokenId")
        metadata["custodian"] = pof.get("custodian")
        metadata["auditTrail"] = pof.get("auditTrail")
    compliance = as_dict(subject.get("compliance"))
    if compliance:
        metadata["kycCompliant"] = compliance.get("kycApproved")
        metadata["sanctionsCleared"] = compliance.get("sanctionsCleared")
    if as_dict(subject.get("kycStatus")):
        metadata["kyc"] = dict(subject["kycStatus"])
    if as_dict(subject.get("device")):
        metadata["device"] = dict(subject["device"])
    return metadata


def extract_claims(vc: Dict[str, Any]) -> List[str]:
    types = as_list(vc.get("type"))
    subject = as_dict(vc.get("credentialSubject"))
    claims: List[str] = []

    if "ProofOfFundsCredential" in types:
        asset = as_dict(subject.get("hasAsset"))
        claims.append(f"Verified funds: {asset.get('minimumAmount')} {asset.get('currency')}")
        compliance = as_dict(subject.get("compliance"))
        if compliance.get("kycApproved"):
            claims.append("KYC Approved")
        if compliance.get("sanctionsCleared"):
            claims.append("Sanctions Cleared")

    if "KYCCredential" in types:
        approved = as_dict(subject.get("kycStatus")).get("approved")
        claims.append("KYC Approved" if approved else "KYC Not Approved")

    if "DeviceAttestationCredential" in types:
        level = as_dict(subject.get("device")).get("securityLevel")
        claims.append(f"Device Verified ({level})")

    return claims


def issuer_display_name(vc: Dict[str, Any]) -> str:
    issuer = vc.get("issuer")
    if isinstance(issuer, dict):
        name = issuer.get("name") or issuer.get("id")
        return name if isinstance(name, str) else ""
    return issuer if isinstance(issuer, str) else ""


class CredentialVerifier:
    def __init__(
        self,
        domain: SigningDomain,
        revocations: RevocationRegistry,
        repository: Optional[CredentialRepository] = None,
        trusted_issuers: Optional[Iterable[str]] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.domain = domain
        self.revocations = revocations
        self.repository = repository
        self.trusted_issuers = {i.lower() for i in trusted_issuers} if trusted_issuers else None
        self.clock = clock

    def check_signature(self, vc: Dict[str, Any]) -> Tuple[bool, Optional[str]]:
        proof = as_dict(vc.get("proof"))
        signature = proof.get("proofValue")
        if not signature:
            return False, "Credential carries no proof"
        if proof.get("type") != PROOF_TYPE:
            return False, f"Unsupported proof type {proof.get('type')!r}"

        claimed = issuer_id(vc)
        try:
            expected = address_from_did(claimed)
        except ValueError as exc:
            return False, f"Issuer identity cannot sign: {exc}"
        if self.trusted_issuers is not None and claimed.lower() not in self.trusted_issuers:
            return False, f"Issuer {claimed} is not trusted"

        try:
            # canonical_str raises ValueError on NaN members; SignatureError is a ValueError
            recovered = recover_signer(self.domain, CREDENTIAL_SCHEMA, credential_signing_value(vc), signature)
        except ValueError as exc:
            return False, f"Invalid signature: {exc}"
        if not same_address(recovered, expected):
            return False, f"Invalid signature: signer {recovered} is not issuer {claimed}"
        return True, None

    async def verify(self, vc: Dict[str, Any], requirements: Optional[RequirementSpec] = None) -> VerificationResult:
        requirements = requirements or RequirementSpec()
        now = self.clock()
        if not isinstance(vc, dict):
            logger.info("verification_failed", rail="vc", code=FailureCode.INVALID_SIGNATURE.value, reason="not an object")
            return VerificationResult.failure(
                FailureCode.INVALID_SIGNATURE, "Credential is not a JSON object", verified_at=now
            )
        expiration = vc.get("expirationDate")
        context = {
            "issued_by": issuer_display_name(vc) or None,
            "expires_at": expiration if isinstance(expiration, str) else None,
            "verified_at": now,
        }

        ok, reason = self.check_signature(vc)
        if not ok:
            return self._fail(FailureCode.INVALID_SIGNATURE, reason, vc, **context)

        if expiration:
            try:
                expired = parse_iso(expiration) < now
            except (TypeError, ValueError, AttributeError):
                return self._fail(FailureCode.EXPIRED, f"Unreadable expirationDate {expiration!r}", vc, **context)
            if expired:
                return self._fail(FailureCode.EXPIRED, f"Credential expired at {expiration}", vc, **context)

        status = vc.get("credentialStatus")
        if status:
            status_id = as_dict(status).get("id")
            if not isinstance(status_id, str) or not status_id:
                return self._fail(FailureCode.REVOKED, "credentialStatus carries no id", vc, **context)
            try:
                revoked = await self.revocations.is_revoked(status_id)
            except ProviderTimeout as exc:
                return self._fail(FailureCode.PROVIDER_TIMEOUT, str(exc), vc, **context)
            if revoked:
                return self._fail(FailureCode.REVOKED, "Credential revoked", vc, **context)

        metadata = credential_metadata(vc)
        claims = extract_claims(vc)
        ok, reason = check_requirements(metadata.get("asset"), metadata.get("amount"), requirements)
        if not ok:
            return self._fail(
                FailureCode.REQUIREMENT_MISMATCH, reason, vc, claims=claims, metadata=metadata, **context
            )

        return VerificationResult(valid=True, claims=claims, metadata=metadata, **context)

    async def verify_uri(self, uri: str, requirements: Optional[RequirementSpec] = None) -> VerificationResult:
        if self.repository is None:
            raise RuntimeError("CredentialVerifier has no repository to resolve URIs")
        try:
            vc = await self.repository.retrieve(uri)
        except NotFound:
            logger.info("verification_failed", rail="vc", uri=uri, code=FailureCode.NOT_FOUND.value)
            return VerificationResult.failure(FailureCode.NOT_FOUND, "Credential not found", verified_at=self.clock())
        except ProviderTimeout as exc:
            return VerificationResult.failure(FailureCode.PROVIDER_TIMEOUT, str(exc), verified_at=self.clock())
        result = await self.verify(vc, requirements)
        result.metadata["vcURI"] = uri
        return result

    def _fail(self, code: FailureCode, reason: str, vc: Dict[str, Any], **kwargs: Any) -> VerificationResult:
        logger.info("verification_failed", rail="vc", credential_id=vc.get("id"), code=code.value, reason=reason)
        return VerificationResult.failure(code, reason, **kwargs)
