from __future__ import annotations

from typing import Any

from observability import Metrics

from .base import SignerChannel
from .policy import PolicyEnforcedChannel, policy_config_from_settings
from .remote_signer import RemoteSignerChannel


def get_signer_channel(s: Any, *, metrics: Metrics | None = None) -> SignerChannel:
    """
    Select the signer channel based on SIGNER_TYPE and wrap it with local policy
    when any SIGNER_* policy rule is configured.

    Supported:
    - remote (default): HTTP approval service at SIGNER_SERVICE_URL
    """
    signer_type = s.SIGNER_TYPE.value
    if signer_type != "remote":
        raise ValueError(f"Unsupported SIGNER_TYPE: {signer_type}")
    channel: SignerChannel = RemoteSignerChannel(
        s.SIGNER_SERVICE_URL,
        poll_interval_sec=s.SIGNER_POLL_INTERVAL_SEC,
        timeout_sec=s.SIGNER_TIMEOUT_SEC,
        http_timeout_sec=s.HTTP_TIMEOUT_SEC,
        api_token=s.SIGNER_API_TOKEN,
        metrics=metrics,
    )
    if s.signer_policy_active:
        channel = PolicyEnforcedChannel(channel, policy_config_from_settings(s))
    return channel
