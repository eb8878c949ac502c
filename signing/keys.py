from __future__ import annotations

import os
from abc import ABC, abstractmethod
from enum import Enum

import requests

from errors import AddressNotReady, InvalidInput, KeyNotFound, KeyServiceError
from execution.evm import is_address, to_checksum

_UINT64_MAX = 2**64 - 1


class AddressType(Enum):
    ETHEREUM = "ADDRESS_TYPE_ETHEREUM"
    OSMOSIS = "ADDRESS_TYPE_OSMOSIS"


def normalize_key_id(key_id: str) -> str:
    """Key ids are unsigned 64-bit integers carried as decimal strings."""
    s = (key_id or "").strip()
    if not s:
        raise InvalidInput("key id is required", field_name="key")
    if not (s.isascii() and s.isdigit()) or int(s) > _UINT64_MAX:
        raise InvalidInput(f"key id must be an unsigned 64-bit integer: {key_id!r}", field_name="key")
    return str(int(s))


class KeyResolver(ABC):
    @abstractmethod
    def resolve_address(self, key_id: str, address_type: AddressType) -> str:
        """
        Return the address derived for `key_id`.

        Raises AddressNotReady while derivation is still in progress.
        """
        raise NotImplementedError


class RemoteKeyResolver(KeyResolver):
    """
    Key service lookup (HTTP JSON).

    GET {KEY_SERVICE_URL}/keys/{id}?derive_addresses=ADDRESS_TYPE_ETHEREUM
    response: {"key": {"id": "7", ...}, "addresses": [{"type": "ADDRESS_TYPE_ETHEREUM", "address": "0x.."}]}

    Nothing is cached; each session looks its address up again.
    """

    def __init__(
        self,
        base_url: str | None = None,
        *,
        url_env: str = "KEY_SERVICE_URL",
        http_timeout_sec: float = 10.0,
        session: requests.Session | None = None,
    ) -> None:
        url = (base_url or os.getenv(url_env) or "").strip()
        if not url:
            raise ValueError(f"{url_env} environment variable not set")
        self._base_url = url.rstrip("/")
        self._http_timeout = float(http_timeout_sec)
        self._http = session or requests.Session()

    def resolve_address(self, key_id: str, address_type: AddressType) -> str:
        kid = normalize_key_id(key_id)
        try:
            r = self._http.get(
                f"{self._base_url}/keys/{kid}",
                params={"derive_addresses": address_type.value},
                timeout=self._http_timeout,
            )
        except requests.RequestException as e:
            raise KeyServiceError(f"Key service unreachable: {e}", {"key_id": kid}) from e
        if r.status_code == 404:
            raise KeyNotFound(kid)
        try:
            r.raise_for_status()
            data = r.json()
        except (requests.RequestException, ValueError) as e:
            raise KeyServiceError(f"Key service error: {e}", {"key_id": kid}) from e

        if not data.get("key"):
            raise KeyNotFound(kid)
        for entry in data.get("addresses") or []:
            if entry.get("type") != address_type.value:
                continue
            addr = str(entry.get("address") or "").strip()
            if not addr:
                break
            if not is_address(addr):
                raise KeyServiceError(f"Key service returned a malformed address: {addr!r}", {"key_id": kid})
            return to_checksum(addr)
        raise AddressNotReady(kid, address_type.value)
