from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

import structlog
from eth_account.signers.local import LocalAccount

from codec.encoding import b64url_encode
from codec.keys import address_from_did, load_signing_account, same_address
from codec.timestamps import from_unix, to_iso, unix_seconds, utc_now
from codec.typed_data import SignatureError, SigningDomain, sign_typed
from codec.vc_schema import CREDENTIAL_SCHEMA, PROOF_TYPE, credential_signing_value
from issuer.statuslist import STATUS_TYPE
from providers.ledger import TokenRecord

logger = structlog.get_logger(__name__)

W3C_CONTEXT = "https://www.w3.org/2018/credentials/v1"
POF_CONTEXT = "https://w3id.org/silobridge/pof/v1"
KYC_CONTEXT = "https://w3id.org/silobridge/kyc/v1"
DEVICE_CONTEXT = "https://w3id.org/silobridge/device/v1"

POF_TYPE = "ProofOfFundsCredential"
KYC_TYPE = "KYCCredential"
DEVICE_TYPE = "DeviceAttestationCredential"

# device posture changes faster than identity checks do
KYC_VALIDITY = timedelta(days=365)
DEVICE_VALIDITY = timedelta(days=7)

SECURITY_LEVELS = ("basic", "enhanced", "hardware")
PLATFORMS = ("ios", "android", "web", "desktop")


class SigningError(Exception):
    """The issuer cannot produce a signature (missing key, malformed issuer DID)."""


def random_handle(n_bytes: int = 16) -> str:
    return b64url_encode(os.urandom(n_bytes))


def extract_currency(asset: str) -> str:
    for code in ("USDC", "USDT", "ETH", "BTC"):
        if code in asset:
            return code
    return "USD"


def classify_device_security(platform: str, attestation_data: Dict[str, Any]) -> str:
    """Map raw platform attestation flags to basic / enhanced / hardware."""
    if platform == "ios":
        if attestation_data.get("hasSecureEnclave"):
            return "hardware"
        return "enhanced" if attestation_data.get("hasTouchID") else "basic"
    if platform == "android":
        if attestation_data.get("hasStrongBox"):
            return "hardware"
        return "enhanced" if attestation_data.get("hasFingerprint") else "basic"
    if platform == "web":
        return "enhanced" if attestation_data.get("hasWebAuthn") else "basic"
    return "basic"


@dataclass(frozen=True)
class ProofOfFundsData:
    token_id: str
    asset: str
    amount: str
    expiry: int  # unix seconds
    holder_address: str
    kyc_compliant: bool
    sanctions_cleared: bool
    custodian: Optional[str] = None
    audit_hash: Optional[str] = None

    @classmethod
    def from_token(cls, token: TokenRecord, screening_cleared: bool = True) -> "ProofOfFundsData":
        """Facts asserted by a ledger token; an extra sanctions screening can only narrow them."""
        return cls(
            token_id=token.id,
            asset=token.asset_type,
            amount=token.amount,
            expiry=token.expiry,
            holder_address=token.holder_address,
            kyc_compliant=token.compliance.kyc,
            sanctions_cleared=token.compliance.sanctions and screening_cleared,
            custodian=token.custodian,
            audit_hash=token.audit_hash,
        )


@dataclass(frozen=True)
class KycData:
    user_id: str
    provider: str
    level: str
    approved: bool
    verified_at: int

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "KycData":
        return cls(
            user_id=str(data["userId"]),
            provider=str(data["provider"]),
            level=str(data.get("level", "standard")),
            approved=bool(data["approved"]),
            verified_at=unix_seconds(data["verifiedAt"]),
        )


@dataclass(frozen=True)
class DeviceData:
    device_id: str
    platform: str
    security_level: str
    attestations: List[str]
    verified_at: int

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeviceData":
        platform = str(data["platform"])
        if platform not in PLATFORMS:
            raise ValueError(f"unknown platform {platform!r}")
        level = data.get("securityLevel") or classify_device_security(platform, data.get("attestationData") or {})
        if level not in SECURITY_LEVELS:
            raise ValueError(f"unknown securityLevel {level!r}")
        return cls(
            device_id=str(data["deviceId"]),
            platform=platform,
            security_level=level,
            attestations=[str(a) for a in data.get("attestations", [])],
            verified_at=unix_seconds(data["verifiedAt"]),
        )


class CredentialIssuer:
    """
    Builds and signs credential documents. Issuance has no side effects:
    storing the document and handing out its URI is the caller's job.

    Each document gets a fresh id and revocation handle, so re-issuing the
    same facts yields a new document (and signature) with the same subject.
    The old document stays valid until it is explicitly revoked.
    """

    def __init__(
        self,
        issuer_did: str,
        signing_key: Optional[str],
        domain: SigningDomain,
        status_base: str,
        clock: Callable[[], datetime] = utc_now,
        service_name: str = "SiloBridge",
    ) -> None:
        self.issuer_did = issuer_did
        self._signing_key = signing_key
        self._account: Optional[LocalAccount] = None
        self.domain = domain
        self.status_base = status_base
        self.clock = clock
        self.service_name = service_name

    def _signer(self) -> LocalAccount:
        if self._account is not None:
            return self._account
        if not self._signing_key:
            raise SigningError("no signing key configured")
        try:
            account = load_signing_account(self._signing_key)
        except ValueError as exc:
            raise SigningError(str(exc)) from exc
        try:
            did_address = address_from_did(self.issuer_did)
        except ValueError as exc:
            raise SigningError(f"malformed issuer identity: {exc}") from exc
        if not same_address(did_address, account.address):
            raise SigningError(f"issuer {self.issuer_did} is not controlled by the configured key {account.address}")
        self._account = account
        return account

    def sign_credential(self, vc: Dict[str, Any]) -> Dict[str, Any]:
        account = self._signer()
        unsigned = {k: v for k, v in vc.items() if k != "proof"}
        try:
            signature = sign_typed(self.domain, CREDENTIAL_SCHEMA, credential_signing_value(unsigned), account)
        except SignatureError as exc:
            raise SigningError(str(exc)) from exc
        return {
            **unsigned,
            "proof": {
                "type": PROOF_TYPE,
                "created": to_iso(self.clock()),
                "verificationMethod": f"{self.issuer_did}#controller",
                "proofPurpose": "assertionMethod",
                "proofValue": signature,
                # lets a wallet or third party rebuild the typed-data payload
                "eip712Domain": {
                    "domain": self.domain.as_eip712(),
                    "messageSchema": CREDENTIAL_SCHEMA.as_eip712(),
                    "primaryType": CREDENTIAL_SCHEMA.primary_type,
                },
            },
        }

    def _build(
        self,
        credential_type: str,
        context: str,
        issuer_name: str,
        subject: Dict[str, Any],
        expires_at: datetime,
    ) -> Dict[str, Any]:
        now = self.clock()
        handle = random_handle(16)
        vc = {
            "@context": [W3C_CONTEXT, context],
            "id": f"urn:uuid:{uuid4()}",
            "type": ["VerifiableCredential", credential_type],
            "issuer": {"id": self.issuer_did, "name": issuer_name},
            "issuanceDate": to_iso(now),
            "expirationDate": to_iso(expires_at),
            "credentialSubject": subject,
            "credentialStatus": {
                "id": f"{self.status_base}#{handle}",
                "type": STATUS_TYPE,
                "revocationHandle": handle,
            },
        }
        signed = self.sign_credential(vc)
        logger.info("credential_issued", type=credential_type, holder=subject.get("id"), credential_id=vc["id"])
        return signed

    def issue_proof_of_funds(self, holder_did: str, pof: ProofOfFundsData) -> Dict[str, Any]:
        subject = {
            "id": holder_did,
            "hasAsset": {
                "type": pof.asset,
                "minimumAmount": pof.amount,
                "currency": extract_currency(pof.asset),
            },
            "proofOfFunds": {
                "tokenId": pof.token_id,
                "verifiedAmount": pof.amount,
                "custodian": pof.custodian or "self-custody",
                "auditTrail": pof.audit_hash,
                "holderAddress": pof.holder_address,
            },
            "compliance": {
                "kycApproved": pof.kyc_compliant,
                "sanctionsCleared": pof.sanctions_cleared,
            },
        }
        return self._build(
            POF_TYPE, POF_CONTEXT, f"{self.service_name} Proof of Funds Service", subject, from_unix(pof.expiry)
        )

    def issue_kyc(self, holder_did: str, kyc: KycData) -> Dict[str, Any]:
        subject = {
            "id": holder_did,
            "kycStatus": {
                "approved": kyc.approved,
                "level": kyc.level,
                "provider": kyc.provider,
                "verifiedAt": to_iso(from_unix(kyc.verified_at)),
            },
        }
        return self._build(
            KYC_TYPE, KYC_CONTEXT, f"{self.service_name} KYC Verification Service", subject, self.clock() + KYC_VALIDITY
        )

    def issue_device_attestation(self, holder_did: str, device: DeviceData) -> Dict[str, Any]:
        subject = {
            "id": holder_did,
            "device": {
                "id": device.device_id,
                "platform": device.platform,
                "securityLevel": device.security_level,
                "attestations": list(device.attestations),
                "verifiedAt": to_iso(from_unix(device.verified_at)),
            },
        }
        return self._build(
            DEVICE_TYPE,
            DEVICE_CONTEXT,
            f"{self.service_name} Device Attestation Service",
            subject,
            self.clock() + DEVICE_VALIDITY,
        )
