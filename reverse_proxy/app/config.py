"""
Configuration module for the Reverse CORS Proxy.

This module uses Pydantic Settings to load and validate environment variables
for the destination access policy, the upstream HTTP client and the server
itself.

Environment variables are loaded from .env file or system environment.
"""

import json
from functools import lru_cache
from typing import FrozenSet, List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import AccessPolicyConfig


def parse_domain_list(raw: Optional[str]) -> Optional[FrozenSet[str]]:
    """
    Parse a hostname list from its environment representation.

    Accepts either a JSON array (``["a.com", "b.com"]``) or a
    comma-separated string (``a.com,b.com``).

    Args:
        raw: Raw environment value

    Returns:
        Frozen set of hostnames, or None when nothing is configured.

    Raises:
        ValueError: If a JSON array is given but is not a list of strings
    """
    if raw is None:
        return None

    text = raw.strip()
    if not text:
        return None

    entries: List[str]
    if text.startswith("["):
        try:
            decoded = json.loads(text)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON hostname list: {e}") from e

        if not isinstance(decoded, list) or not all(isinstance(d, str) for d in decoded):
            raise ValueError("JSON hostname list must be an array of strings")
        entries = decoded
    else:
        entries = text.split(",")

    hosts = frozenset(entry.strip() for entry in entries if entry.strip())
    return hosts or None


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Both hostname lists are optional. When both are configured the
    blacklist takes precedence.
    """

    # =========================================================================
    # Destination Access Control
    # =========================================================================

    BLACKLISTED_DOMAINS: Optional[str] = Field(
        None,
        description="Hostnames the proxy never forwards to (JSON array or comma-separated)",
    )

    WHITELISTED_DOMAINS: Optional[str] = Field(
        None,
        description="If set, the only hostnames the proxy forwards to (JSON array or comma-separated)",
    )

    # =========================================================================
    # Upstream HTTP Client
    # =========================================================================

    UPSTREAM_TIMEOUT_SECONDS: float = Field(
        default=30.0,
        description="Timeout applied by the HTTP client to each forwarded call",
        gt=0,
    )

    # =========================================================================
    # Server Configuration
    # =========================================================================

    PROXY_HOST: str = Field(
        default="0.0.0.0",
        description="Host to bind the proxy server",
    )

    PROXY_PORT: int = Field(
        default=8787,
        description="Port to bind the proxy server",
        ge=1,
        le=65535,
    )

    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def blacklisted_domains_set(self) -> Optional[FrozenSet[str]]:
        return parse_domain_list(self.BLACKLISTED_DOMAINS)

    @property
    def whitelisted_domains_set(self) -> Optional[FrozenSet[str]]:
        return parse_domain_list(self.WHITELISTED_DOMAINS)

    @property
    def access_policy(self) -> AccessPolicyConfig:
        """
        Build the read-only policy handed to the request handler.

        Returns:
            AccessPolicyConfig with the deny and allow sets.
        """
        return AccessPolicyConfig(
            denied_hosts=self.blacklisted_domains_set,
            allowed_hosts=self.whitelisted_domains_set,
        )

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("BLACKLISTED_DOMAINS", "WHITELISTED_DOMAINS")
    @classmethod
    def validate_domain_list(cls, v: Optional[str]) -> Optional[str]:
        # Parse once here so a malformed list fails at startup
        parse_domain_list(v)
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

        level = v.upper()
        if level not in allowed_levels:
            raise ValueError(
                f"LOG_LEVEL must be one of {allowed_levels}, got: {v}"
            )

        return level


@lru_cache()
def get_settings() -> Settings:
    """
    Get or create a singleton Settings instance.

    Returns:
        Settings instance with all configuration loaded and validated.

    Raises:
        ValidationError: If an environment variable is invalid.
    """
    return Settings()
