from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Tuple

import rlp
from eth_keys import keys
from eth_utils import keccak, to_canonical_address, to_checksum_address
from rlp.exceptions import DecodingError

from errors import InvalidSignature

DYNAMIC_FEE_TX_TYPE = 2
SECP256K1_N = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141
SIGNATURE_LENGTH = 65


def _rlp_int(i: int) -> bytes:
    if i == 0:
        return b""
    return int(i).to_bytes((int(i).bit_length() + 7) // 8, "big")


def split_signature(signature: bytes) -> Tuple[int, int, int]:
    """
    Split a 65-byte `r || s || v` signature into (y_parity, r, s).

    Signers return either a raw recovery id (0/1) or the legacy 27/28 form.
    """
    if not isinstance(signature, (bytes, bytearray)):
        raise InvalidSignature("signature must be bytes")
    if len(signature) != SIGNATURE_LENGTH:
        raise InvalidSignature(
            f"signature must be {SIGNATURE_LENGTH} bytes, got {len(signature)}", {"length": len(signature)}
        )
    r = int.from_bytes(signature[0:32], "big")
    s = int.from_bytes(signature[32:64], "big")
    v = signature[64]
    if v in (27, 28):
        v -= 27
    if v not in (0, 1):
        raise InvalidSignature(f"invalid recovery id: {signature[64]}")
    if not (0 < r < SECP256K1_N) or not (0 < s < SECP256K1_N):
        raise InvalidSignature("signature r/s out of range")
    return v, r, s


@dataclass(frozen=True)
class UnsignedTransaction:
    chain_id: int
    nonce: int
    max_priority_fee_per_gas: int
    max_fee_per_gas: int
    gas: int
    to: str
    value: int
    data: bytes = b""
    access_list: Tuple[Any, ...] = field(default_factory=tuple)
    tx_type: int = DYNAMIC_FEE_TX_TYPE

    def _fields(self) -> list:
        return [
            _rlp_int(self.chain_id),
            _rlp_int(self.nonce),
            _rlp_int(self.max_priority_fee_per_gas),
            _rlp_int(self.max_fee_per_gas),
            _rlp_int(self.gas),
            to_canonical_address(self.to),
            _rlp_int(self.value),
            bytes(self.data),
            list(self.access_list),
        ]

    def serialize_unsigned(self) -> bytes:
        """Exact bytes handed to the signer: `0x02 || rlp(fields)`."""
        return bytes([self.tx_type]) + rlp.encode(self._fields())

    def signing_hash(self) -> bytes:
        return keccak(self.serialize_unsigned())

    def with_signature(self, signature: bytes) -> "SignedTransaction":
        y_parity, r, s = split_signature(bytes(signature))
        return SignedTransaction(unsigned=self, y_parity=y_parity, r=r, s=s)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.tx_type,
            "chain_id": self.chain_id,
            "nonce": self.nonce,
            "max_priority_fee_per_gas": self.max_priority_fee_per_gas,
            "max_fee_per_gas": self.max_fee_per_gas,
            "gas": self.gas,
            "to": self.to,
            "value": self.value,
            "data": "0x" + bytes(self.data).hex(),
        }


@dataclass(frozen=True)
class SignedTransaction:
    unsigned: UnsignedTransaction
    y_parity: int
    r: int
    s: int

    @property
    def serialized(self) -> bytes:
        u = self.unsigned
        return bytes([u.tx_type]) + rlp.encode(
            u._fields() + [_rlp_int(self.y_parity), _rlp_int(self.r), _rlp_int(self.s)]
        )

    @property
    def tx_hash(self) -> str:
        return "0x" + keccak(self.serialized).hex()

    @property
    def signature(self) -> bytes:
        return self.r.to_bytes(32, "big") + self.s.to_bytes(32, "big") + bytes([self.y_parity])

    def recover_sender(self) -> str:
        try:
            sig = keys.Signature(vrs=(self.y_parity, self.r, self.s))
            pub = sig.recover_public_key_from_msg_hash(self.unsigned.signing_hash())
        except Exception as e:
            raise InvalidSignature(f"could not recover signer: {e}") from e
        return pub.to_checksum_address()

    def to_dict(self) -> Dict[str, Any]:
        out = self.unsigned.to_dict()
        out.update({"y_parity": self.y_parity, "r": hex(self.r), "s": hex(self.s), "hash": self.tx_hash})
        return out


def decode_unsigned(payload: bytes) -> UnsignedTransaction:
    """Inverse of `serialize_unsigned` for type-2 payloads. Raises ValueError on anything else."""
    if not payload or payload[0] != DYNAMIC_FEE_TX_TYPE:
        raise ValueError("not a dynamic-fee (type 2) payload")
    try:
        fields = rlp.decode(bytes(payload[1:]))
    except DecodingError as e:
        raise ValueError(f"malformed RLP payload: {e}") from e
    if not isinstance(fields, list) or len(fields) != 9:
        raise ValueError("unexpected field count in type 2 payload")
    chain_id, nonce, priority, max_fee, gas, to, value, data, access_list = fields
    if len(to) != 20:
        raise ValueError("payload has no 20-byte recipient")

    def _int(b: bytes) -> int:
        return int.from_bytes(b, "big")

    return UnsignedTransaction(
        chain_id=_int(chain_id),
        nonce=_int(nonce),
        max_priority_fee_per_gas=_int(priority),
        max_fee_per_gas=_int(max_fee),
        gas=_int(gas),
        to=to_checksum_address(to),
        value=_int(value),
        data=bytes(data),
        access_list=tuple(access_list),
    )
