"""
Chain-tagged metadata for signature requests.

The signer expects a protobuf `Any`: a type URL plus the encoded message. For EVM
requests the message is `MetadataEthereum { uint64 chain_id = 1; }`, which lets the
approval UI show (and the signer enforce) which chain the payload targets.
"""

from __future__ import annotations

from .base import SignMetadata

ETHEREUM_METADATA_TYPE_URL = "/warden.warden.v1beta2.MetadataEthereum"

_UINT64_MAX = 2**64 - 1


def _varint(n: int) -> bytes:
    out = bytearray()
    while True:
        byte = n & 0x7F
        n >>= 7
        if n:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def encode_ethereum_metadata(chain_id: int) -> bytes:
    cid = int(chain_id)
    if cid < 0 or cid > _UINT64_MAX:
        raise ValueError(f"chain_id out of uint64 range: {chain_id}")
    if cid == 0:
        # proto3 omits default-valued scalars
        return b""
    return b"\x08" + _varint(cid)


def ethereum_metadata(chain_id: int) -> SignMetadata:
    return SignMetadata(type_url=ETHEREUM_METADATA_TYPE_URL, value=encode_ethereum_metadata(chain_id))
