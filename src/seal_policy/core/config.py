"""Key server configuration.

Defines the validated configuration model consumed by every subsystem
(store, derivation, evaluator, gateway, wire).  The master secret is
provisioned at startup, usually from the environment, and lives only in
process memory.
"""
from __future__ import annotations

import os
import secrets
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from seal_policy.core.errors import ConfigurationError
from seal_policy.core.types import MasterSecret

MASTER_KEY_ENV_VARS: tuple[str, ...] = ("SEAL_MASTER_KEY", "VITE_SEAL_MASTER_KEY")
"""Environment variables searched, in order, for the master secret."""


def _random_salt() -> str:
    return secrets.token_hex(16)


class KeyServerConfig(BaseModel):
    """Configuration for a key-server instance.

    All fields except ``server_id`` and ``master_secret`` carry sensible
    defaults so that a minimal configuration is sufficient for
    development.
    """

    model_config = ConfigDict(strict=True, arbitrary_types_allowed=True, frozen=True)

    server_id: str = Field(
        min_length=1,
        description="Unique identifier for this key-server instance.",
    )
    master_secret: MasterSecret = Field(
        description="Root secret every policy key is derived from.",
        repr=False,
    )
    key_salt: str = Field(
        default_factory=_random_salt,
        min_length=1,
        description=(
            "Fixed per-process derivation salt.  Random by default, so keys "
            "change on restart unless a salt is configured."
        ),
        repr=False,
    )
    network: str = Field(
        default="testnet",
        description="Chain network label reported by health and listings.",
    )
    package_id: str = Field(
        default="",
        description="On-chain package id reported by health and listings.",
    )
    public_url: str = Field(
        default="http://localhost:2024",
        description="URL advertised in the key-server listing.",
    )
    default_threshold: int = Field(
        default=2,
        ge=1,
        description="Threshold applied when a create request omits one.",
    )
    signer_timeout_seconds: float = Field(
        default=30.0,
        gt=0.0,
        le=30.0,
        description="Upper bound on one external multi-signature verification.",
    )
    max_time_lock_hours: float = Field(
        default=24.0 * 365,
        gt=0.0,
        description="Largest accepted timeLockDuration, in hours.",
    )
    max_payload_bytes: int = Field(
        default=1_048_576,  # 1 MiB
        ge=1,
        description="Largest plaintext or ciphertext accepted by the gateway.",
    )
    key_prefix_length: int = Field(
        default=8,
        ge=0,
        le=16,
        description="Hex characters of a key fingerprint allowed into logs.",
    )

    @field_validator("master_secret", mode="before")
    @classmethod
    def _wrap_secret(cls, value: object) -> object:
        if isinstance(value, (bytes, str)):
            return MasterSecret(value)
        return value

    @classmethod
    def from_env(
        cls,
        env_file: str | Path | None = None,
        **overrides: object,
    ) -> KeyServerConfig:
        """Build a configuration from environment variables.

        Loads *env_file* (or a ``.env`` in the working directory) without
        overriding variables already set in the process environment.

        Raises
        ------
        ConfigurationError
            If no master secret is configured or a value is invalid.
        """
        load_dotenv(env_file, override=False)

        master = next(
            (os.environ[name] for name in MASTER_KEY_ENV_VARS if os.environ.get(name)),
            None,
        )
        if master is None:
            raise ConfigurationError(
                "No master secret configured",
                details={"env_vars": list(MASTER_KEY_ENV_VARS)},
                resolution="Set SEAL_MASTER_KEY before starting the key server.",
            )

        values: dict[str, object] = {
            "server_id": os.environ.get("SEAL_SERVER_ID", "seal-key-server-1"),
            "master_secret": MasterSecret(master),
            "network": os.environ.get("SEAL_NETWORK", "testnet"),
            "package_id": os.environ.get("SEAL_PACKAGE_ID", ""),
            "public_url": os.environ.get("SEAL_PUBLIC_URL", "http://localhost:2024"),
        }
        if os.environ.get("SEAL_KEY_SALT"):
            values["key_salt"] = os.environ["SEAL_KEY_SALT"]
        try:
            if os.environ.get("SEAL_DEFAULT_THRESHOLD"):
                values["default_threshold"] = int(os.environ["SEAL_DEFAULT_THRESHOLD"])
            if os.environ.get("SEAL_SIGNER_TIMEOUT"):
                values["signer_timeout_seconds"] = float(os.environ["SEAL_SIGNER_TIMEOUT"])
            values.update(overrides)
            return cls(**values)  # type: ignore[arg-type]
        except (ValueError, ValidationError) as exc:
            raise ConfigurationError(
                f"Invalid key-server configuration: {exc}",
            ) from exc
