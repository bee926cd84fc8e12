"""
Service configuration from SILOBRIDGE_* environment variables.

Every backing defaults to in-memory; set a URL or path to switch it to the
HTTP or file implementation. Keyword arguments override the environment.
"""
from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any, Dict, Optional, Tuple

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from codec.keys import DEFAULT_KEY_DIR, DEFAULT_PK_PATH, DEFAULT_SK_PATH

PREFIX = "SILOBRIDGE_"

DEFAULT_ISSUER_KEY_PATH = DEFAULT_KEY_DIR / "issuer_key.hex"
DEFAULT_REGISTRY_CONTRACT = "0x0000000000000000000000000000000000000000"
DEFAULT_STATUS_BASE = "https://silobridge.local/status/revocations"
DEFAULT_API_KEYS = "demo-key-123"


def parse_api_keys(raw: str) -> Dict[str, str]:
    """'key1:partnerA,key2' -> {'key1': 'partnerA', 'key2': 'key2'}"""
    keys: Dict[str, str] = {}
    for item in raw.split(","):
        item = item.strip()
        if not item:
            continue
        key, _, partner = item.partition(":")
        keys[key.strip()] = partner.strip() or key.strip()
    return keys


class ServiceConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix=PREFIX, extra="ignore")

    issuer_did: Optional[str] = None  # derived from the signing key when unset
    issuer_name: str = "SiloBridge"
    signing_key: Optional[str] = None
    issuer_key_path: Optional[Path] = DEFAULT_ISSUER_KEY_PATH
    chain_id: int = 1
    registry_contract: str = DEFAULT_REGISTRY_CONTRACT
    status_base: str = DEFAULT_STATUS_BASE
    # comma-separated in the environment
    trusted_issuers: Annotated[Tuple[str, ...], NoDecode] = ()

    # "key:partner,key2" in the environment; a bare key is its own partner
    api_keys: Annotated[Dict[str, str], NoDecode] = Field(default_factory=lambda: parse_api_keys(DEFAULT_API_KEYS))

    provider_timeout: float = Field(default=5.0, gt=0)
    provider_retries: int = Field(default=2, ge=0)
    provider_backoff: float = Field(default=0.2, ge=0)

    ledger_url: Optional[str] = None
    ledger_seed: Optional[Path] = None
    kyc_url: Optional[str] = None
    sanctions_url: Optional[str] = None
    storage_dir: Optional[Path] = None
    revocation_file: Optional[Path] = None

    service_sk_path: Optional[Path] = DEFAULT_SK_PATH
    service_pk_path: Optional[Path] = DEFAULT_PK_PATH

    log_level: str = "INFO"
    log_format: str = "console"
    host: str = "127.0.0.1"
    port: int = 5001

    @field_validator("api_keys", mode="before")
    @classmethod
    def _split_api_keys(cls, value: Any) -> Any:
        if isinstance(value, str):
            return parse_api_keys(value)
        return value

    @field_validator("trusted_issuers", mode="before")
    @classmethod
    def _split_issuers(cls, value: Any) -> Any:
        if isinstance(value, str):
            return tuple(t.strip() for t in value.split(",") if t.strip())
        return value

    @field_validator(
        "issuer_did", "signing_key", "ledger_url", "ledger_seed", "kyc_url", "sanctions_url",
        "storage_dir", "revocation_file", mode="before",
    )
    @classmethod
    def _blank_is_unset(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    def resolve_signing_key(self) -> Optional[str]:
        """Explicit key wins; otherwise read the key file if one exists."""
        if self.signing_key:
            return self.signing_key
        if self.issuer_key_path is not None and self.issuer_key_path.exists():
            return self.issuer_key_path.read_text(encoding="utf-8").strip()
        return None
