"""
EIP-712 typed-data encoding, signing and signer recovery.

The encoded value only ever contains the fields named by the TypeSchema, in
the schema's order, so two values that differ only in dict key order produce
the same digest. The SigningDomain is hashed into every signature, which
keeps signatures from one deployment (chain id / registry) from verifying in
another.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Tuple

from Crypto.Hash import keccak
from eth_account import Account
from eth_account.messages import SignableMessage, encode_typed_data
from eth_account.signers.local import LocalAccount

from codec.encoding import bytes_to_hex, hex_to_bytes


class SignatureError(ValueError):
    """Raised when a value cannot be encoded or a signature cannot be decoded."""


@dataclass(frozen=True)
class SigningDomain:
    name: str
    version: str
    chain_id: int
    verifying_contract: str

    def as_eip712(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "chainId": self.chain_id,
            "verifyingContract": self.verifying_contract,
        }

    @classmethod
    def from_eip712(cls, data: Mapping[str, Any]) -> "SigningDomain":
        return cls(
            name=data["name"],
            version=str(data["version"]),
            chain_id=int(data["chainId"]),
            verifying_contract=data["verifyingContract"],
        )


@dataclass(frozen=True)
class TypeSchema:
    primary_type: str
    fields: Tuple[Tuple[str, str], ...]

    @property
    def field_names(self) -> Tuple[str, ...]:
        return tuple(name for name, _ in self.fields)

    def as_eip712(self) -> Dict[str, Any]:
        return {self.primary_type: [{"name": n, "type": t} for n, t in self.fields]}

    def ordered_value(self, value: Mapping[str, Any]) -> Dict[str, Any]:
        names = self.field_names
        missing = [n for n in names if n not in value]
        if missing:
            raise SignatureError(f"{self.primary_type} missing fields: {missing}")
        extra = sorted(set(value) - set(names))
        if extra:
            raise SignatureError(f"{self.primary_type} has unknown fields: {extra}")
        return {n: value[n] for n in names}


def encode_typed(domain: SigningDomain, schema: TypeSchema, value: Mapping[str, Any]) -> SignableMessage:
    ordered = schema.ordered_value(value)
    try:
        return encode_typed_data(
            domain_data=domain.as_eip712(),
            message_types=schema.as_eip712(),
            message_data=ordered,
        )
    except Exception as exc:  # eth-abi raises its own EncodingError types
        raise SignatureError(f"cannot encode {schema.primary_type}: {exc}") from exc


def typed_digest(domain: SigningDomain, schema: TypeSchema, value: Mapping[str, Any]) -> bytes:
    """keccak256(0x19 || 0x01 || domainSeparator || hashStruct(value))"""
    message = encode_typed(domain, schema, value)
    h = keccak.new(digest_bits=256)
    h.update(b"\x19" + message.version + message.header + message.body)
    return h.digest()


def sign_typed(domain: SigningDomain, schema: TypeSchema, value: Mapping[str, Any], account: LocalAccount) -> str:
    message = encode_typed(domain, schema, value)
    signed = account.sign_message(message)
    return bytes_to_hex(bytes(signed.signature))


def recover_signer(domain: SigningDomain, schema: TypeSchema, value: Mapping[str, Any], signature: str) -> str:
    message = encode_typed(domain, schema, value)
    try:
        raw = hex_to_bytes(signature)
    except (TypeError, ValueError) as exc:
        raise SignatureError("signature is not hex encoded") from exc
    if len(raw) != 65:
        raise SignatureError(f"signature must be 65 bytes, got {len(raw)}")
    try:
        return Account.recover_message(message, signature=raw)
    except Exception as exc:  # eth-keys BadSignature / ValidationError
        raise SignatureError("signature does not recover to a public key") from exc
