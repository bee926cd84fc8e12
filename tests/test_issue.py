import asyncio

import pytest
from eth_account import Account

from codec.keys import did_for_address
from codec.timestamps import MAX_UNIX_SECONDS, from_unix, parse_iso, to_iso
from codec.vc_schema import CREDENTIAL_SCHEMA
from issuer.issue import (
    DEVICE_VALIDITY,
    KYC_VALIDITY,
    CredentialIssuer,
    DeviceData,
    KycData,
    ProofOfFundsData,
    SigningError,
    classify_device_security,
    extract_currency,
)


def test_proof_of_funds_document_shape(pof_credential, issuer, token, holder_did, domain):
    vc = pof_credential
    assert vc["type"] == ["VerifiableCredential", "ProofOfFundsCredential"]
    assert vc["id"].startswith("urn:uuid:")
    assert vc["issuer"]["id"] == issuer.issuer_did
    assert vc["expirationDate"] == to_iso(from_unix(token.expiry))

    subject = vc["credentialSubject"]
    assert subject["id"] == holder_did
    assert subject["hasAsset"] == {"type": "USDC", "minimumAmount": "50000.00", "currency": "USDC"}
    assert subject["proofOfFunds"]["tokenId"] == "42"
    assert subject["proofOfFunds"]["custodian"] == "Coinbase Custody"
    assert subject["compliance"] == {"kycApproved": True, "sanctionsCleared": True}

    status = vc["credentialStatus"]
    assert status["id"] == f"{issuer.status_base}#{status['revocationHandle']}"

    proof = vc["proof"]
    assert proof["type"] == "EthereumEip712Signature2021"
    assert proof["verificationMethod"] == f"{issuer.issuer_did}#controller"
    assert proof["proofValue"].startswith("0x")
    eip712 = proof["eip712Domain"]
    assert eip712["domain"] == domain.as_eip712()
    assert eip712["primaryType"] == "VerifiableCredential"
    assert [f["name"] for f in eip712["messageSchema"]["VerifiableCredential"]] == list(CREDENTIAL_SCHEMA.field_names)


def test_reissuing_same_facts_gives_equivalent_subject(issuer, token, holder_did, credential_verifier):
    pof = ProofOfFundsData.from_token(token)
    first = issuer.issue_proof_of_funds(holder_did, pof)
    second = issuer.issue_proof_of_funds(holder_did, pof)

    assert first["credentialSubject"] == second["credentialSubject"]
    assert first["id"] != second["id"]
    assert first["proof"]["proofValue"] != second["proof"]["proofValue"]
    assert asyncio.run(credential_verifier.verify(first)).valid
    assert asyncio.run(credential_verifier.verify(second)).valid


def test_screening_can_only_narrow_sanctions_flag(token):
    assert ProofOfFundsData.from_token(token, screening_cleared=False).sanctions_cleared is False
    assert ProofOfFundsData.from_token(token, screening_cleared=True).sanctions_cleared is True


def test_kyc_credential_is_long_lived(issuer, holder_did, clock):
    vc = issuer.issue_kyc(
        holder_did,
        KycData.from_dict({"userId": "u1", "provider": "Onfido", "level": "enhanced", "approved": True, "verifiedAt": 1700000000}),
    )
    assert vc["credentialSubject"]["kycStatus"]["approved"] is True
    assert parse_iso(vc["expirationDate"]) == clock.now + KYC_VALIDITY


def test_device_attestation_is_short_lived_and_classified(issuer, holder_did, clock):
    device = DeviceData.from_dict(
        {"deviceId": "d1", "platform": "ios", "attestationData": {"hasSecureEnclave": True}, "verifiedAt": 1700000000}
    )
    vc = issuer.issue_device_attestation(holder_did, device)
    assert vc["credentialSubject"]["device"]["securityLevel"] == "hardware"
    assert parse_iso(vc["expirationDate"]) == clock.now + DEVICE_VALIDITY
    assert DEVICE_VALIDITY < KYC_VALIDITY


def test_device_data_rejects_unknown_platform():
    with pytest.raises(ValueError):
        DeviceData.from_dict({"deviceId": "d1", "platform": "toaster", "verifiedAt": 1})


@pytest.mark.parametrize("verified_at", [10**15, 1700000000000, MAX_UNIX_SECONDS + 1, -1, True, "soon", float("inf")])
def test_verified_at_must_be_unix_seconds(verified_at):
    kyc = {"userId": "u1", "provider": "Onfido", "approved": True, "verifiedAt": verified_at}
    device = {"deviceId": "d1", "platform": "web", "verifiedAt": verified_at}
    with pytest.raises(ValueError):
        KycData.from_dict(kyc)
    with pytest.raises(ValueError):
        DeviceData.from_dict(device)


def test_latest_representable_verified_at_issues(issuer, holder_did):
    kyc = KycData.from_dict({"userId": "u1", "provider": "Onfido", "approved": True, "verifiedAt": MAX_UNIX_SECONDS})
    vc = issuer.issue_kyc(holder_did, kyc)
    assert vc["credentialSubject"]["kycStatus"]["verifiedAt"].startswith("9999-12-31T23:59:59")


@pytest.mark.parametrize(
    "platform, data, level",
    [
        ("android", {"hasStrongBox": True}, "hardware"),
        ("android", {"hasFingerprint": True}, "enhanced"),
        ("web", {"hasWebAuthn": True}, "enhanced"),
        ("desktop", {}, "basic"),
    ],
)
def test_classify_device_security(platform, data, level):
    assert classify_device_security(platform, data) == level


def test_extract_currency():
    assert extract_currency("USDC-ERC20") == "USDC"
    assert extract_currency("wBTC") == "BTC"
    assert extract_currency("GBP-deposit") == "USD"


def test_missing_signing_key_is_a_signing_error(domain, issuer_account, token, holder_did):
    issuer = CredentialIssuer(did_for_address(issuer_account.address), None, domain, "https://status.test")
    with pytest.raises(SigningError):
        issuer.issue_proof_of_funds(holder_did, ProofOfFundsData.from_token(token))


def test_malformed_issuer_identity_is_a_signing_error(domain, issuer_account, token, holder_did):
    issuer = CredentialIssuer("issuer-without-did", issuer_account.key.hex(), domain, "https://status.test")
    with pytest.raises(SigningError):
        issuer.issue_proof_of_funds(holder_did, ProofOfFundsData.from_token(token))


def test_key_must_control_issuer_identity(domain, issuer_account, token, holder_did):
    someone_else = did_for_address(Account.create().address)
    issuer = CredentialIssuer(someone_else, issuer_account.key.hex(), domain, "https://status.test")
    with pytest.raises(SigningError):
        issuer.issue_proof_of_funds(holder_did, ProofOfFundsData.from_token(token))


def test_garbage_key_is_a_signing_error(domain, issuer_account, token, holder_did):
    issuer = CredentialIssuer(did_for_address(issuer_account.address), "0xnot-a-key", domain, "https://status.test")
    with pytest.raises(SigningError):
        issuer.issue_proof_of_funds(holder_did, ProofOfFundsData.from_token(token))
