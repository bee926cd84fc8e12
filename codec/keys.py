import re
from pathlib import Path

from Crypto.PublicKey import ECC
from eth_account import Account
from eth_account.signers.local import LocalAccount

DEFAULT_KEY_DIR = Path("issuer_data")
DEFAULT_SK_PATH = DEFAULT_KEY_DIR / "service_sk.pem"
DEFAULT_PK_PATH = DEFAULT_KEY_DIR / "service_pk.pem"

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")

def generate_service_keypair(sk_path=DEFAULT_SK_PATH, pk_path=DEFAULT_PK_PATH) -> None:
    sk_path.parent.mkdir(parents=True, exist_ok=True)

    sk = ECC.generate(curve='Ed25519')
    pk = sk.public_key()

    sk_path.write_text(sk.export_key(format='PEM'), encoding='utf-8')
    pk_path.write_text(pk.export_key(format='PEM'), encoding='utf-8')

def load_service_sk(sk_path=DEFAULT_SK_PATH) -> ECC.EccKey:
    sk_pem = sk_path.read_text(encoding='utf-8')
    return ECC.import_key(sk_pem)

def load_service_pk(pk_path=DEFAULT_PK_PATH) -> ECC.EccKey:
    pk_pem = pk_path.read_text(encoding='utf-8')
    return ECC.import_key(pk_pem)

def ensure_service_sk(sk_path=DEFAULT_SK_PATH, pk_path=DEFAULT_PK_PATH) -> ECC.EccKey:
    """Load the Ed25519 service key, generating it on first use."""
    if not sk_path.exists():
        generate_service_keypair(sk_path, pk_path)
    return load_service_sk(sk_path)

def new_service_sk() -> ECC.EccKey:
    return ECC.generate(curve='Ed25519')

def ensure_signing_key(key_path: Path) -> str:
    """Hex secp256k1 issuer key at key_path, generating it on first use."""
    if not key_path.exists():
        key_path.parent.mkdir(parents=True, exist_ok=True)
        key_path.write_text(Account.create().key.hex(), encoding='utf-8')
    return key_path.read_text(encoding='utf-8').strip()

def load_signing_account(private_key: str) -> LocalAccount:
    """secp256k1 account used for EIP-712 credential proofs."""
    if not private_key:
        raise ValueError("signing key is empty")
    try:
        return Account.from_key(private_key)
    except Exception as exc:  # eth-keys raises its own ValidationError type
        raise ValueError("signing key is not a valid secp256k1 private key") from exc

def is_address(value: str) -> bool:
    return isinstance(value, str) and bool(_ADDRESS_RE.match(value))

def did_for_address(address: str) -> str:
    return f"did:ethr:{address}"

def address_from_did(did: str) -> str:
    """
    Extract the account address from did:ethr / did:pkh identifiers.
        did:ethr:0xabc...
        did:ethr:sepolia:0xabc...
        did:pkh:eip155:1:0xabc...
    """
    if not isinstance(did, str) or not did.startswith("did:"):
        raise ValueError(f"not a DID: {did!r}")
    parts = did.split(":")
    if parts[1] not in ("ethr", "pkh") or len(parts) < 3:
        raise ValueError(f"unsupported DID method: {did!r}")
    address = parts[-1]
    if not is_address(address):
        raise ValueError(f"DID does not end in an account address: {did!r}")
    return address

def same_address(a: str, b: str) -> bool:
    return a.lower() == b.lower()
