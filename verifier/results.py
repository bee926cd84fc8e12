"""Verification outcomes. A failed verification is a value, not an exception."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Optional

from codec.timestamps import to_millis, utc_now


class FailureCode(str, Enum):
    INVALID_SIGNATURE = "InvalidSignature"
    EXPIRED = "Expired"
    REVOKED = "Revoked"
    REQUIREMENT_MISMATCH = "RequirementMismatch"
    INCOMPLETE_DUAL_RAIL = "IncompleteDualRail"
    CONSENT_REQUIRED = "ConsentRequired"
    PROVIDER_TIMEOUT = "ProviderTimeout"
    PROVIDER_UNAVAILABLE = "ProviderUnavailable"
    SIGNING_ERROR = "SigningError"
    NOT_FOUND = "NotFound"


def parse_amount(value: Any) -> Decimal:
    """Decimal from str/int/Decimal. Floats go through str() so 0.1 stays 0.1."""
    if isinstance(value, bool):
        raise ValueError("amount must be numeric")
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, AttributeError) as exc:
        raise ValueError(f"not a decimal amount: {value!r}") from exc
    if not amount.is_finite():
        raise ValueError(f"not a finite amount: {value!r}")
    return amount


@dataclass(frozen=True)
class RequirementSpec:
    """Caller filter applied identically to both rails. Asset codes compare case-sensitively."""
    required_asset: Optional[str] = None
    min_amount: Optional[Decimal] = None

    @classmethod
    def from_params(cls, required_asset: Any = None, min_amount: Any = None) -> "RequirementSpec":
        asset = str(required_asset) if required_asset not in (None, "") else None
        amount = parse_amount(min_amount) if min_amount not in (None, "") else None
        return cls(required_asset=asset, min_amount=amount)

    @property
    def is_empty(self) -> bool:
        return self.required_asset is None and self.min_amount is None


@dataclass
class VerificationResult:
    valid: bool
    reason: Optional[str] = None
    code: Optional[FailureCode] = None
    claims: List[str] = field(default_factory=list)
    issued_by: Optional[str] = None
    expires_at: Optional[str] = None
    verified_at: datetime = field(default_factory=utc_now)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def failure(cls, code: FailureCode, reason: str, **kwargs: Any) -> "VerificationResult":
        return cls(valid=False, reason=reason, code=code, **kwargs)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "valid": self.valid,
            "claims": list(self.claims),
            "verifiedAt": to_millis(self.verified_at),
            "metadata": dict(self.metadata),
        }
        if self.reason is not None:
            body["reason"] = self.reason
        if self.code is not None:
            body["code"] = self.code.value
        if self.issued_by is not None:
            body["issuedBy"] = self.issued_by
        if self.expires_at is not None:
            body["expiresAt"] = self.expires_at
        return body


@dataclass(frozen=True)
class CrossValidation:
    both_valid: bool
    amount_match: bool
    currency_match: bool
    token_id_match: bool

    def to_dict(self) -> Dict[str, bool]:
        return {
            "bothValid": self.both_valid,
            "amountMatch": self.amount_match,
            "currencyMatch": self.currency_match,
            "tokenIdMatch": self.token_id_match,
        }


@dataclass
class DualRailResult:
    valid: bool
    reason: str
    code: Optional[FailureCode] = None
    cross_validation: Optional[CrossValidation] = None
    credential: Optional[VerificationResult] = None
    token: Optional[VerificationResult] = None
    verified_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "valid": self.valid,
            "reason": self.reason,
            "verificationMethods": ["VC", "TOKEN"],
            "crossValidation": self.cross_validation.to_dict() if self.cross_validation else None,
            "results": {
                "vc": self.credential.to_dict() if self.credential else None,
                "token": self.token.to_dict() if self.token else None,
            },
            "verifiedAt": to_millis(self.verified_at),
        }
        if self.code is not None:
            body["code"] = self.code.value
        return body
