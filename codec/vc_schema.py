"""
Typed-data shapes for credentials and presentations.

Nested JSON members (credentialSubject, credentialStatus, embedded
credentials) enter the typed value as canonical JSON strings, so their key
order never affects the signature.
"""
from typing import Any, Dict

from codec.canonical import canonical_str
from codec.typed_data import SigningDomain, TypeSchema

CREDENTIAL_DOMAIN_NAME = "SiloBridge Verifiable Credentials"
PRESENTATION_DOMAIN_NAME = "SiloBridge Verifiable Presentations"
DOMAIN_VERSION = "1"
PROOF_TYPE = "EthereumEip712Signature2021"

CREDENTIAL_SCHEMA = TypeSchema(
    primary_type="VerifiableCredential",
    fields=(
        ("id", "string"),
        ("context", "string[]"),
        ("type", "string[]"),
        ("issuer", "string"),
        ("issuanceDate", "string"),
        ("expirationDate", "string"),
        ("credentialSubject", "string"),
        ("credentialStatus", "string"),
    ),
)

PRESENTATION_SCHEMA = TypeSchema(
    primary_type="VerifiablePresentation",
    fields=(
        ("context", "string[]"),
        ("type", "string[]"),
        ("holder", "string"),
        ("verifiableCredential", "string[]"),
        ("challenge", "string"),
        ("domain", "string"),
    ),
)


def credential_domain(chain_id: int, registry_contract: str) -> SigningDomain:
    return SigningDomain(CREDENTIAL_DOMAIN_NAME, DOMAIN_VERSION, chain_id, registry_contract)


def presentation_domain(credential_domain: SigningDomain) -> SigningDomain:
    return SigningDomain(
        PRESENTATION_DOMAIN_NAME,
        DOMAIN_VERSION,
        credential_domain.chain_id,
        credential_domain.verifying_contract,
    )


def as_dict(value: Any) -> Dict[str, Any]:
    """Document members arrive from untrusted JSON; anything but an object reads as empty."""
    return value if isinstance(value, dict) else {}


def issuer_id(vc: Dict[str, Any]) -> str:
    issuer = vc.get("issuer")
    if isinstance(issuer, str):
        return issuer
    found = as_dict(issuer).get("id")
    return found if isinstance(found, str) else ""


def as_list(value: Any) -> list:
    if value is None:
        return []
    return list(value) if isinstance(value, (list, tuple)) else [value]


def credential_signing_value(vc: Dict[str, Any]) -> Dict[str, Any]:
    status = vc.get("credentialStatus")
    return {
        "id": vc.get("id", ""),
        "context": as_list(vc.get("@context")),
        "type": as_list(vc.get("type")),
        "issuer": issuer_id(vc),
        "issuanceDate": vc.get("issuanceDate", ""),
        "expirationDate": vc.get("expirationDate") or "",
        "credentialSubject": canonical_str(vc.get("credentialSubject")),
        "credentialStatus": canonical_str(status) if status else "",
    }


def presentation_signing_value(vp: Dict[str, Any]) -> Dict[str, Any]:
    proof = as_dict(vp.get("proof"))
    return {
        "context": as_list(vp.get("@context")),
        "type": as_list(vp.get("type")),
        "holder": vp.get("holder", ""),
        "verifiableCredential": [canonical_str(vc) for vc in as_list(vp.get("verifiableCredential"))],
        "challenge": proof.get("challenge") or "",
        "domain": proof.get("domain") or "",
    }

