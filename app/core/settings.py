"""
WalletSend unified settings.

Single source of truth for configuration. Every value is read from the environment
(after loading an optional `.env` file) and validated at startup so that a
misconfigured RPC URL or signer endpoint is caught before the first send.

Usage:
    from app.core.settings import settings

    reader = Web3ChainReader(rpc_url=settings.EVM_RPC_URL)
"""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, FrozenSet, Set

from dotenv import load_dotenv

from execution.evm import CHAIN_ID_BY_NAME

load_dotenv()


class SignerType(Enum):
    """Signer channel backends."""

    REMOTE = "remote"


class SettingsValidationError(Exception):
    """Raised when settings validation fails."""

    def __init__(self, field: str, value: Any, message: str):
        self.field = field
        self.value = value
        super().__init__(f"Invalid configuration for {field}={value!r}: {message}")


def _parse_bool(value: str | None, default: bool = False) -> bool:
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("true", "1", "yes", "on")


def _parse_int(value: str | None, default: int | None = None) -> int | None:
    """Parse an integer from environment variable (0x-prefixed hex allowed)."""
    if value is None or value.strip() == "":
        return default
    try:
        return int(value.strip(), 0)
    except ValueError:
        return default


def _parse_float(value: str | None, default: float | None = None) -> float | None:
    if value is None or value.strip() == "":
        return default
    try:
        return float(value.strip())
    except ValueError:
        return default


def _parse_str(value: str | None) -> str | None:
    if value is None:
        return None
    v = value.strip()
    return v or None


def _parse_csv_set(value: str | None) -> FrozenSet[str]:
    """Parse a comma-separated list into a frozen set of lowercase strings."""
    if not value:
        return frozenset()
    return frozenset(v.strip().lower() for v in value.split(",") if v.strip())


def _parse_csv_int_set(value: str | None) -> FrozenSet[int]:
    if not value:
        return frozenset()
    result: Set[int] = set()
    for part in value.split(","):
        s = part.strip()
        if not s:
            continue
        try:
            result.add(int(s, 0))
        except ValueError:
            continue
    return frozenset(result)


def _parse_enum(enum_cls: type[Enum], raw: str | None, default: Enum) -> Any:
    v = (raw or "").strip().lower()
    if v in [e.value for e in enum_cls]:
        return enum_cls(v)
    return default


def _get_version_from_pyproject() -> str:
    try:
        pyproject_path = Path(__file__).parent.parent.parent / "pyproject.toml"
        with open(pyproject_path, "rb") as f:
            data = tomllib.load(f)
        version: str = str(data.get("project", {}).get("version", "0.0.0"))
        return version
    except (OSError, tomllib.TOMLDecodeError):
        return "0.0.0"


@dataclass
class Settings:
    """
    Settings loaded and validated at instantiation time.
    """

    PROJECT_NAME: str = "WalletSend"
    VERSION: str = field(default_factory=_get_version_from_pyproject)

    # Chain
    CHAIN_ID: int = field(default_factory=lambda: _parse_int(os.getenv("CHAIN_ID"), 11155111) or 11155111)
    CHAIN_NAME: str = field(default_factory=lambda: os.getenv("CHAIN_NAME", "sepolia").strip().lower())
    EVM_RPC_URL: str | None = field(
        default_factory=lambda: _parse_str(os.getenv("EVM_RPC_URL", "https://ethereum-sepolia-rpc.publicnode.com"))
    )
    HTTP_TIMEOUT_SEC: float = field(default_factory=lambda: _parse_float(os.getenv("HTTP_TIMEOUT_SEC"), 10.0) or 10.0)

    # Signer channel
    SIGNER_TYPE: SignerType = field(
        default_factory=lambda: _parse_enum(SignerType, os.getenv("SIGNER_TYPE", "remote"), SignerType.REMOTE)
    )
    SIGNER_SERVICE_URL: str | None = field(default_factory=lambda: _parse_str(os.getenv("SIGNER_SERVICE_URL")))
    SIGNER_POLL_INTERVAL_SEC: float = field(
        default_factory=lambda: _parse_float(os.getenv("SIGNER_POLL_INTERVAL_SEC"), 2.0) or 2.0
    )
    SIGNER_TIMEOUT_SEC: float = field(default_factory=lambda: _parse_float(os.getenv("SIGNER_TIMEOUT_SEC"), 300.0) or 300.0)
    SIGNER_API_TOKEN: str | None = field(default_factory=lambda: _parse_str(os.getenv("SIGNER_API_TOKEN")))

    # Key / address resolution
    KEY_SERVICE_URL: str | None = field(default_factory=lambda: _parse_str(os.getenv("KEY_SERVICE_URL")))

    # Send workflow
    DEFAULT_GAS_LIMIT: int = field(default_factory=lambda: _parse_int(os.getenv("DEFAULT_GAS_LIMIT"), 21000) or 21000)
    BALANCE_POLL_INTERVAL_SEC: float = field(
        default_factory=lambda: _parse_float(os.getenv("BALANCE_POLL_INTERVAL_SEC"), 10.0) or 10.0
    )

    # Local signer policy (checked before a request ever reaches the signer)
    SIGNER_POLICY_ENABLED: bool = field(default_factory=lambda: _parse_bool(os.getenv("SIGNER_POLICY_ENABLED"), False))
    SIGNER_ALLOWED_CHAIN_IDS: FrozenSet[int] = field(
        default_factory=lambda: _parse_csv_int_set(os.getenv("SIGNER_ALLOWED_CHAIN_IDS"))
    )
    SIGNER_ALLOWED_TO_ADDRESSES: FrozenSet[str] = field(
        default_factory=lambda: _parse_csv_set(os.getenv("SIGNER_ALLOWED_TO_ADDRESSES"))
    )
    SIGNER_MAX_VALUE_WEI: int | None = field(default_factory=lambda: _parse_int(os.getenv("SIGNER_MAX_VALUE_WEI")))
    SIGNER_MAX_GAS: int | None = field(default_factory=lambda: _parse_int(os.getenv("SIGNER_MAX_GAS")))
    SIGNER_MAX_FEE_PER_GAS_WEI: int | None = field(
        default_factory=lambda: _parse_int(os.getenv("SIGNER_MAX_FEE_PER_GAS_WEI"))
    )

    # API server
    API_PORT: int = field(default_factory=lambda: _parse_int(os.getenv("API_PORT"), 8000) or 8000)
    API_HOST: str = field(default_factory=lambda: os.getenv("API_HOST", "127.0.0.1").strip())

    # Observability
    WALLETSEND_LOG_LEVEL: str = field(default_factory=lambda: os.getenv("WALLETSEND_LOG_LEVEL", "info").strip().lower())
    WALLETSEND_SERVICE_NAME: str = field(
        default_factory=lambda: os.getenv("WALLETSEND_SERVICE_NAME", "walletsend").strip()
    )

    def __post_init__(self) -> None:
        self._validate()

    def _validate(self) -> None:
        errors: list[str] = []

        if self.CHAIN_ID <= 0:
            errors.append(f"CHAIN_ID must be positive, got {self.CHAIN_ID}")
        known_id = CHAIN_ID_BY_NAME.get(self.CHAIN_NAME)
        if known_id is not None and known_id != self.CHAIN_ID:
            errors.append(f"CHAIN_ID {self.CHAIN_ID} does not match CHAIN_NAME {self.CHAIN_NAME} (chain id {known_id})")
        if self.DEFAULT_GAS_LIMIT <= 0:
            errors.append(f"DEFAULT_GAS_LIMIT must be positive, got {self.DEFAULT_GAS_LIMIT}")
        if self.SIGNER_POLL_INTERVAL_SEC <= 0:
            errors.append("SIGNER_POLL_INTERVAL_SEC must be positive")
        if self.SIGNER_TIMEOUT_SEC < self.SIGNER_POLL_INTERVAL_SEC:
            errors.append("SIGNER_TIMEOUT_SEC must be >= SIGNER_POLL_INTERVAL_SEC")
        if self.BALANCE_POLL_INTERVAL_SEC <= 0:
            errors.append("BALANCE_POLL_INTERVAL_SEC must be positive")
        if self.EVM_RPC_URL and not self.EVM_RPC_URL.startswith(("http://", "https://")):
            errors.append(f"EVM_RPC_URL must be an http(s) URL, got {self.EVM_RPC_URL}")
        if not (1 <= self.API_PORT <= 65535):
            errors.append(f"API_PORT must be between 1 and 65535, got {self.API_PORT}")

        if errors:
            raise SettingsValidationError("MULTIPLE", None, "; ".join(errors))

    @property
    def signer_policy_active(self) -> bool:
        return bool(
            self.SIGNER_POLICY_ENABLED
            or self.SIGNER_ALLOWED_CHAIN_IDS
            or self.SIGNER_ALLOWED_TO_ADDRESSES
            or self.SIGNER_MAX_VALUE_WEI is not None
            or self.SIGNER_MAX_GAS is not None
            or self.SIGNER_MAX_FEE_PER_GAS_WEI is not None
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert settings to dictionary (redacting secrets)."""
        result: dict[str, Any] = {}
        for key in dir(self):
            if key.startswith("_") or key.isupper() is False:
                continue
            value = getattr(self, key)
            if any(s in key.upper() for s in ["SECRET", "PASSWORD", "TOKEN"]):
                result[key] = "***REDACTED***" if value else None
            elif isinstance(value, frozenset):
                result[key] = sorted(value)
            elif isinstance(value, Enum):
                result[key] = value.value
            else:
                result[key] = value
        return result


settings = Settings()
