import pytest
from eth_account import Account

from codec.canonical import canonicalize
from codec.encoding import b64url_decode, b64url_encode
from codec.keys import address_from_did, did_for_address, new_service_sk
from codec.signing import ed25519_sign, ed25519_verify, sign_canonical, verify_canonical
from codec.typed_data import SignatureError, SigningDomain, TypeSchema, recover_signer, sign_typed, typed_digest
from codec.vc_schema import credential_domain

SCHEMA = TypeSchema("Note", (("text", "string"), ("tags", "string[]")))


def test_canonicalize_ignores_key_order():
    assert canonicalize({"b": 1, "a": [1, {"d": 2, "c": 3}]}) == b'{"a":[1,{"c":3,"d":2}],"b":1}'


def test_b64url_has_no_padding():
    raw = b"\x00\xff\xfe"
    encoded = b64url_encode(raw)
    assert "=" not in encoded
    assert b64url_decode(encoded) == raw


def test_typed_signature_recovers_signer_and_ignores_key_order(domain):
    account = Account.create()
    sig = sign_typed(domain, SCHEMA, {"text": "hi", "tags": ["a"]}, account)
    assert recover_signer(domain, SCHEMA, {"tags": ["a"], "text": "hi"}, sig) == account.address


def test_changed_value_recovers_a_different_signer(domain):
    account = Account.create()
    sig = sign_typed(domain, SCHEMA, {"text": "hi", "tags": ["a"]}, account)
    assert recover_signer(domain, SCHEMA, {"text": "ho", "tags": ["a"]}, sig) != account.address


def test_signature_is_bound_to_domain(domain):
    account = Account.create()
    other = credential_domain(137, domain.verifying_contract)
    sig = sign_typed(domain, SCHEMA, {"text": "hi", "tags": []}, account)
    assert recover_signer(other, SCHEMA, {"text": "hi", "tags": []}, sig) != account.address
    assert typed_digest(domain, SCHEMA, {"text": "hi", "tags": []}) != typed_digest(other, SCHEMA, {"text": "hi", "tags": []})


def test_domain_eip712_form_round_trips(domain):
    assert SigningDomain.from_eip712(domain.as_eip712()) == domain


@pytest.mark.parametrize("value", [{"text": "hi"}, {"text": "hi", "tags": [], "extra": 1}])
def test_schema_rejects_missing_or_unknown_fields(domain, value):
    with pytest.raises(SignatureError):
        typed_digest(domain, SCHEMA, value)


@pytest.mark.parametrize("sig", ["0x1234", "not-hex", "0x" + "ab" * 64])
def test_malformed_signature_raises(domain, sig):
    with pytest.raises(SignatureError):
        recover_signer(domain, SCHEMA, {"text": "hi", "tags": []}, sig)


def test_address_from_did_accepts_ethr_and_pkh():
    addr = Account.create().address
    assert address_from_did(did_for_address(addr)) == addr
    assert address_from_did(f"did:ethr:sepolia:{addr}") == addr
    assert address_from_did(f"did:pkh:eip155:1:{addr}") == addr


@pytest.mark.parametrize("did", ["", "0xabc", "did:web:example.com", "did:ethr:not-an-address"])
def test_address_from_did_rejects_other_identifiers(did):
    with pytest.raises(ValueError):
        address_from_did(did)


def test_ed25519_service_signature():
    sk = new_service_sk()
    sig = ed25519_sign(b"payload", sk)
    assert ed25519_verify(b"payload", sig, sk.public_key())
    assert not ed25519_verify(b"payload!", sig, sk.public_key())


def test_canonical_document_signature_ignores_key_order():
    sk = new_service_sk()
    sig = sign_canonical({"a": 1, "b": [2, 3]}, sk)
    assert "=" not in sig
    assert verify_canonical({"b": [2, 3], "a": 1}, sig, sk.public_key())
    assert not verify_canonical({"a": 1, "b": [3, 2]}, sig, sk.public_key())
    assert not verify_canonical({"a": 1}, None, sk.public_key())
    assert not verify_canonical({"a": 1}, "!!not-base64!!", sk.public_key())


def test_canonicalize_rejects_nan():
    with pytest.raises(ValueError):
        canonicalize({"amount": float("nan")})
