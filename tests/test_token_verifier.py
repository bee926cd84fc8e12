import asyncio
from dataclasses import replace

from providers.ledger import ComplianceFlags
from verifier.results import FailureCode, RequirementSpec


def test_live_token_verifies(token_verifier, token):
    result = asyncio.run(token_verifier.verify(token, RequirementSpec.from_params("USDC", "10000")))
    assert result.valid
    assert result.issued_by == "Coinbase Custody"
    assert result.metadata["currency"] == "USDC"
    assert result.claims == ["Holds 50000.00 USDC", "KYC Compliant", "Sanctions Cleared"]


def test_invalidated_token_is_revoked(token_verifier, token):
    result = asyncio.run(token_verifier.verify(replace(token, valid=False)))
    assert result.code == FailureCode.REVOKED


def test_expired_token(token_verifier, token, clock):
    clock.advance(days=30, seconds=1)
    assert asyncio.run(token_verifier.verify(token)).code == FailureCode.EXPIRED


def test_compliance_flags_must_hold(token_verifier, token):
    no_kyc = replace(token, compliance=ComplianceFlags(kyc=False, sanctions=True))
    not_cleared = replace(token, compliance=ComplianceFlags(kyc=True, sanctions=False))
    assert asyncio.run(token_verifier.verify(no_kyc)).code == FailureCode.REQUIREMENT_MISMATCH
    assert asyncio.run(token_verifier.verify(not_cleared)).code == FailureCode.REQUIREMENT_MISMATCH


def test_requirements_apply_like_the_credential_rail(token_verifier, token):
    result = asyncio.run(token_verifier.verify(token, RequirementSpec.from_params(min_amount="50000.01")))
    assert result.code == FailureCode.REQUIREMENT_MISMATCH
    assert result.reason.startswith("Insufficient amount")


def test_verify_id_looks_up_the_ledger(token_verifier):
    assert asyncio.run(token_verifier.verify_id("42")).valid
    assert asyncio.run(token_verifier.verify_id("nope")).code == FailureCode.NOT_FOUND
