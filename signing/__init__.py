from .base import (
    OutcomeStatus,
    PendingSignature,
    SignerChannel,
    SigningRequest,
    SignMetadata,
    SignMethod,
    SignOutcome,
)
from .factory import get_signer_channel
from .intents import TransferIntent, build_transfer_intent
from .keys import AddressType, KeyResolver, RemoteKeyResolver, normalize_key_id
from .metadata import ETHEREUM_METADATA_TYPE_URL, encode_ethereum_metadata, ethereum_metadata
from .policy import PolicyEnforcedChannel, SignerPolicyConfig, SignerPolicyViolation, validate_tx_against_policy
from .remote_signer import RemoteSignerChannel

__all__ = [
    "OutcomeStatus",
    "PendingSignature",
    "SignerChannel",
    "SigningRequest",
    "SignMetadata",
    "SignMethod",
    "SignOutcome",
    "get_signer_channel",
    "TransferIntent",
    "build_transfer_intent",
    "AddressType",
    "KeyResolver",
    "RemoteKeyResolver",
    "normalize_key_id",
    "ETHEREUM_METADATA_TYPE_URL",
    "encode_ethereum_metadata",
    "ethereum_metadata",
    "PolicyEnforcedChannel",
    "SignerPolicyConfig",
    "SignerPolicyViolation",
    "validate_tx_against_policy",
    "RemoteSignerChannel",
]
