"""
Runtime configuration for otssign.

Configuration covers operational policy only: resource limits, password
policy, verification strictness, and logging. Protocol constants (KDF
iterations, salt prefix, message version) are NOT
configurable because changing them changes every derived identity.
"""

from __future__ import annotations

import logging
import os

from pydantic import BaseModel, Field, field_validator


class SigningConfig(BaseModel):
    """
    Runtime configuration.

    Environment-driven and read-only at runtime.
    """

    # ------------------------------------------------------------------
    # Resource limits
    # ------------------------------------------------------------------

    MAX_BUNDLE_SIZE_MB: int = Field(
        25,
        ge=1,
        description="Maximum accepted size of a serialized bundle in megabytes",
    )

    # ------------------------------------------------------------------
    # Credential policy
    # ------------------------------------------------------------------

    ENFORCE_PASSWORD_STRENGTH: bool = Field(
        False,
        description=(
            "Reject sign operations whose password scores below "
            "MIN_PASSWORD_SCORE. Credential strength bounds key strength."
        ),
    )

    MIN_PASSWORD_SCORE: int = Field(
        3,
        ge=0,
        le=5,
        description="Minimum password strength score (0-5)",
    )

    # ------------------------------------------------------------------
    # Verification policy
    # ------------------------------------------------------------------

    REQUIRE_TIMESTAMP_PROOF: bool = Field(
        False,
        description="Treat a completed bundle without a timestamp proof as failing",
    )

    # ------------------------------------------------------------------
    # Logging
    # ------------------------------------------------------------------

    LOG_LEVEL: str = Field(
        "INFO",
        description="Root log level for the otssign loggers",
    )

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        level = v.upper()
        if level not in allowed:
            raise ValueError(
                f"Unsupported LOG_LEVEL '{v}'. "
                f"Allowed values: {sorted(allowed)}"
            )
        return level

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @property
    def max_bundle_size_bytes(self) -> int:
        return self.MAX_BUNDLE_SIZE_MB * 1024 * 1024

    @classmethod
    def from_env(cls) -> "SigningConfig":
        """
        Load configuration from ``OTSSIGN_*`` environment variables.
        """

        def env_bool(name: str, default: bool) -> bool:
            raw = os.getenv(name)
            if raw is None:
                return default
            return raw.lower() in {"1", "true", "yes", "on"}

        return cls(
            MAX_BUNDLE_SIZE_MB=int(
                os.getenv("OTSSIGN_MAX_BUNDLE_SIZE_MB", "25")
            ),
            ENFORCE_PASSWORD_STRENGTH=env_bool(
                "OTSSIGN_ENFORCE_PASSWORD_STRENGTH", False
            ),
            MIN_PASSWORD_SCORE=int(
                os.getenv("OTSSIGN_MIN_PASSWORD_SCORE", "3")
            ),
            REQUIRE_TIMESTAMP_PROOF=env_bool(
                "OTSSIGN_REQUIRE_TIMESTAMP_PROOF", False
            ),
            LOG_LEVEL=os.getenv("OTSSIGN_LOG_LEVEL", "INFO"),
        )

    def configure_logging(self) -> None:
        logging.getLogger("otssign").setLevel(self.LOG_LEVEL)

    model_config = {
        "frozen": True,
    }
