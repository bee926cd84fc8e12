import asyncio
import copy
from datetime import timedelta

import pytest
from eth_account import Account

from codec.keys import did_for_address
from issuer.statuslist import InMemoryRevocationRegistry
from providers.base import ProviderPolicy
from verifier.credential import CredentialVerifier
from verifier.results import FailureCode, RequirementSpec


def _flip_byte(hex_sig: str, index: int = 10) -> str:
    raw = bytearray(bytes.fromhex(hex_sig[2:]))
    raw[index] ^= 0x01
    return "0x" + raw.hex()


def test_fresh_credential_verifies(credential_verifier, pof_credential):
    result = asyncio.run(credential_verifier.verify(pof_credential, RequirementSpec.from_params("USDC", 10000)))
    assert result.valid
    assert result.code is None
    assert "Verified funds: 50000.00 USDC" in result.claims
    assert result.metadata["tokenId"] == "42"
    assert result.metadata["currency"] == "USDC"


def test_flipped_signature_byte_is_invalid_signature(credential_verifier, pof_credential):
    vc = copy.deepcopy(pof_credential)
    vc["proof"]["proofValue"] = _flip_byte(vc["proof"]["proofValue"])
    result = asyncio.run(credential_verifier.verify(vc))
    assert not result.valid
    assert result.code == FailureCode.INVALID_SIGNATURE


def test_edited_amount_is_invalid_signature(credential_verifier, pof_credential):
    vc = copy.deepcopy(pof_credential)
    vc["credentialSubject"]["hasAsset"]["minimumAmount"] = "5000000.00"
    result = asyncio.run(credential_verifier.verify(vc))
    assert result.code == FailureCode.INVALID_SIGNATURE


def test_missing_or_foreign_proof_is_invalid_signature(credential_verifier, pof_credential):
    no_proof = {k: v for k, v in pof_credential.items() if k != "proof"}
    assert asyncio.run(credential_verifier.verify(no_proof)).code == FailureCode.INVALID_SIGNATURE

    foreign = copy.deepcopy(pof_credential)
    foreign["proof"]["type"] = "Ed25519Signature2020"
    assert asyncio.run(credential_verifier.verify(foreign)).code == FailureCode.INVALID_SIGNATURE


def test_claimed_issuer_must_be_the_signer(credential_verifier, pof_credential):
    vc = copy.deepcopy(pof_credential)
    vc["issuer"]["id"] = did_for_address(Account.create().address)
    result = asyncio.run(credential_verifier.verify(vc))
    assert result.code == FailureCode.INVALID_SIGNATURE


def test_untrusted_issuer_is_rejected(domain, revocations, clock, pof_credential):
    verifier = CredentialVerifier(domain, revocations, trusted_issuers=["did:ethr:0x0000000000000000000000000000000000000001"], clock=clock)
    result = asyncio.run(verifier.verify(pof_credential))
    assert result.code == FailureCode.INVALID_SIGNATURE
    assert "not trusted" in result.reason


def test_expired_credential_with_valid_signature(credential_verifier, pof_credential, clock):
    clock.advance(days=31)
    result = asyncio.run(credential_verifier.verify(pof_credential))
    assert not result.valid
    assert result.code == FailureCode.EXPIRED


def test_signature_is_checked_before_expiry(credential_verifier, pof_credential, clock):
    vc = copy.deepcopy(pof_credential)
    vc["proof"]["proofValue"] = _flip_byte(vc["proof"]["proofValue"])
    clock.advance(days=31)
    assert asyncio.run(credential_verifier.verify(vc)).code == FailureCode.INVALID_SIGNATURE


def test_revoked_credential(credential_verifier, revocations, pof_credential):
    assert asyncio.run(revocations.revoke(pof_credential["credentialStatus"]["id"]))
    result = asyncio.run(credential_verifier.verify(pof_credential))
    assert not result.valid
    assert result.code == FailureCode.REVOKED


def test_revoking_one_document_leaves_a_reissued_one_valid(credential_verifier, revocations, issuer, token, holder_did):
    from issuer.issue import ProofOfFundsData

    first = issuer.issue_proof_of_funds(holder_did, ProofOfFundsData.from_token(token))
    second = issuer.issue_proof_of_funds(holder_did, ProofOfFundsData.from_token(token))
    asyncio.run(revocations.revoke(first["credentialStatus"]["id"]))
    assert asyncio.run(credential_verifier.verify(first)).code == FailureCode.REVOKED
    assert asyncio.run(credential_verifier.verify(second)).valid


def test_amount_shortfall_names_both_amounts(credential_verifier, pof_credential):
    result = asyncio.run(credential_verifier.verify(pof_credential, RequirementSpec.from_params(min_amount=60000)))
    assert not result.valid
    assert result.code == FailureCode.REQUIREMENT_MISMATCH
    assert result.reason == "Insufficient amount: required 60000, found 50000.00"


def test_asset_mismatch_is_case_sensitive(credential_verifier, pof_credential):
    result = asyncio.run(credential_verifier.verify(pof_credential, RequirementSpec.from_params("usdc")))
    assert result.code == FailureCode.REQUIREMENT_MISMATCH
    assert result.reason == "Asset mismatch: required usdc, found USDC"


def test_verify_uri_resolves_from_repository(credential_verifier, repository, pof_credential):
    async def run():
        uri = await repository.store(pof_credential)
        result = await credential_verifier.verify_uri(uri)
        assert result.valid
        assert result.metadata["vcURI"] == uri

        missing = await credential_verifier.verify_uri("cas://sha256/" + "0" * 64)
        assert missing.code == FailureCode.NOT_FOUND

    asyncio.run(run())


def test_slow_revocation_registry_is_a_timeout_result(domain, clock, pof_credential):
    class SlowRegistry(InMemoryRevocationRegistry):
        async def _contains(self, status_id):
            await asyncio.sleep(1)
            return False

    registry = SlowRegistry(ProviderPolicy(timeout=0.05, retries=1, backoff=0.01))
    verifier = CredentialVerifier(domain, registry, clock=clock)
    result = asyncio.run(verifier.verify(pof_credential))
    assert not result.valid
    assert result.code == FailureCode.PROVIDER_TIMEOUT


def test_result_serializes_camel_case(credential_verifier, pof_credential):
    body = asyncio.run(credential_verifier.verify(pof_credential)).to_dict()
    assert body["valid"] is True
    assert body["issuedBy"] == "SiloBridge Proof of Funds Service"
    assert body["expiresAt"] == pof_credential["expirationDate"]
    assert isinstance(body["verifiedAt"], int)
    assert "code" not in body


@pytest.mark.parametrize(
    "mutate",
    [
        lambda vc: vc.update(issuer=["did:ethr:0x742d35Cc6634C0532925a3b8D93C7E8F476C4578"]),
        lambda vc: vc.update(issuer={"id": 7}),
        lambda vc: vc.update(proof="0xdeadbeef"),
        lambda vc: vc.update(credentialSubject=["not", "an", "object"]),
        lambda vc: vc["credentialSubject"].update(hasAsset="50000 USDC"),
        lambda vc: vc.update(credentialStatus=["status#1"]),
        lambda vc: vc.update(expirationDate=1234),
        lambda vc: vc["credentialSubject"].update(note=float("nan")),
    ],
)
def test_malformed_members_fail_as_values(credential_verifier, pof_credential, mutate):
    vc = copy.deepcopy(pof_credential)
    mutate(vc)
    result = asyncio.run(credential_verifier.verify(vc, RequirementSpec.from_params("USDC", 1)))
    assert not result.valid
    assert result.code == FailureCode.INVALID_SIGNATURE
    assert result.to_dict()["valid"] is False


@pytest.mark.parametrize("vc", ["not-a-credential", ["a", "list"], None, 42])
def test_non_object_credential_fails_as_value(credential_verifier, vc):
    result = asyncio.run(credential_verifier.verify(vc))
    assert not result.valid
    assert result.reason == "Credential is not a JSON object"
