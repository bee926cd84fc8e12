from __future__ import annotations

import secrets
from typing import Any, Dict, List, Optional, Tuple

from eth_account.signers.local import LocalAccount

from codec.keys import address_from_did, did_for_address, same_address
from codec.timestamps import to_iso, utc_now
from codec.typed_data import SigningDomain, recover_signer, sign_typed
from codec.vc_schema import PRESENTATION_SCHEMA, PROOF_TYPE, as_dict, as_list, presentation_signing_value

W3C_CONTEXT = "https://www.w3.org/2018/credentials/v1"
PRESENTATION_TYPE = "VerifiablePresentation"

def new_challenge() -> str:
    return secrets.token_urlsafe(24)

def create_presentation(
    credentials: List[Dict[str, Any]],
    holder_account: LocalAccount,
    domain: SigningDomain,
    challenge: Optional[str] = None,
    audience: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Wrap stored credentials in a holder-signed presentation.

    The proof binds the embedded credentials, the verifier's challenge and
    the intended audience, so a captured presentation cannot be replayed to
    a different verifier or for a different challenge.
    """
    if not credentials:
        raise ValueError("a presentation needs at least one credential")

    holder = did_for_address(holder_account.address)
    vp: Dict[str, Any] = {
        "@context": [W3C_CONTEXT],
        "type": [PRESENTATION_TYPE],
        "holder": holder,
        "verifiableCredential": list(credentials),
        "proof": {
            "type": PROOF_TYPE,
            "created": to_iso(utc_now()),
            "verificationMethod": f"{holder}#controller",
            "proofPurpose": "authentication",
            "challenge": challenge or new_challenge(),
            "domain": audience or "",
        },
    }
    vp["proof"]["proofValue"] = sign_typed(domain, PRESENTATION_SCHEMA, presentation_signing_value(vp), holder_account)
    return vp


def verify_presentation(
    vp: Dict[str, Any],
    signing_domain: SigningDomain,
    challenge: Optional[str] = None,
) -> Tuple[bool, Optional[str]]:
    """
    Holder-side checks only. Each embedded credential still has to go
    through CredentialVerifier for its own signature/expiry/revocation.
    """
    if not isinstance(vp, dict):
        return False, "Presentation is not a JSON object"
    proof = as_dict(vp.get("proof"))
    if proof.get("type") != PROOF_TYPE or not proof.get("proofValue"):
        return False, "Presentation carries no supported proof"

    if challenge is not None and proof.get("challenge") != challenge:
        return False, "Challenge mismatch"

    holder = vp.get("holder", "")
    try:
        expected = address_from_did(holder)
    except ValueError as exc:
        return False, f"Holder identity cannot sign: {exc}"

    credentials = as_list(vp.get("verifiableCredential"))
    if not all(isinstance(vc, dict) for vc in credentials):
        return False, "Embedded credential is not a JSON object"

    try:
        # canonical_str raises ValueError on NaN members; SignatureError is a ValueError
        recovered = recover_signer(signing_domain, PRESENTATION_SCHEMA, presentation_signing_value(vp), proof["proofValue"])
    except ValueError as exc:
        return False, f"Invalid holder signature: {exc}"
    if not same_address(recovered, expected):
        return False, f"Invalid holder signature: signer {recovered} is not holder {holder}"

    for vc in credentials:
        subject = as_dict(vc.get("credentialSubject")).get("id")
        if subject != holder:
            return False, f"Credential {vc.get('id')} was issued to {subject}, not the holder"

    return True, None
