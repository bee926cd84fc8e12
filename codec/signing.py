from typing import Any, Optional

from Crypto.PublicKey import ECC
from Crypto.Signature import eddsa

from codec.canonical import canonicalize
from codec.encoding import b64url_decode, b64url_encode

def ed25519_sign(message: bytes, sk: ECC.EccKey) -> bytes:
    """RFC 8032 Ed25519 over the raw message bytes."""
    return eddsa.new(sk, mode="rfc8032").sign(message)

def ed25519_verify(message: bytes, sig: bytes, pk: ECC.EccKey) -> bool:
    try:
        eddsa.new(pk, mode="rfc8032").verify(message, sig)
        return True
    except ValueError:
        return False

def sign_canonical(obj: Any, sk: ECC.EccKey) -> str:
    """
    Service-side signature over a JSON document: Ed25519 over its canonical
    bytes, base64url without padding. Status lists and assertions use this.
    """
    return b64url_encode(ed25519_sign(canonicalize(obj), sk))

def verify_canonical(obj: Any, signature: Optional[str], pk: ECC.EccKey) -> bool:
    if not signature:
        return False
    try:
        sig = b64url_decode(signature)
    except ValueError:
        return False
    return ed25519_verify(canonicalize(obj), sig, pk)
