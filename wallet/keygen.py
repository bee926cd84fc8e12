from pathlib import Path
from typing import Optional

from eth_account import Account
from eth_account.signers.local import LocalAccount

from codec.keys import did_for_address, load_signing_account

WALLET_DIR = Path("wallet_data")
HOLDER_KEY_PATH = WALLET_DIR / "holder_key.hex"

def generate_holder_account(key_path: Optional[Path] = None) -> LocalAccount:
    """
    Fresh secp256k1 holder account. With key_path the private key is also
    written there (hex) so later presentations can reuse the same DID.
    """
    account = Account.create()
    if key_path is not None:
        key_path.parent.mkdir(parents=True, exist_ok=True)
        key_path.write_text(account.key.hex(), encoding="utf-8")
    return account

def load_holder_account(key_path: Path = HOLDER_KEY_PATH) -> LocalAccount:
    return load_signing_account(key_path.read_text(encoding="utf-8").strip())

def holder_did(account: LocalAccount) -> str:
    return did_for_address(account.address)

if __name__ == "__main__":
    acct = generate_holder_account(HOLDER_KEY_PATH)
    print("Holder generated.")
    print("holder_did:", holder_did(acct))
