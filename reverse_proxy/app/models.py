"""
Data Models Module

Pydantic models for the values that flow through one proxied request.
None of them outlive the request that created them.

Models are organized by stage:
- Inbound models (the request as received, connection metadata)
- Policy models (access configuration and decision)
- Outbound models (resolved target, final response)
"""

from typing import FrozenSet, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field


# ============================================================================
# Inbound Models
# ============================================================================

class ConnectionInfo(BaseModel):
    """Metadata about the connecting client supplied by the hosting edge."""
    client_ip: Optional[str] = Field(None, description="Address of the connecting client")
    country: Optional[str] = Field(None, description="Two-letter country code of the client")
    colo: Optional[str] = Field(None, description="Edge data centre that received the request")


class IncomingRequest(BaseModel):
    """A request received by the proxy, independent of the web framework."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    method: str = Field(..., description="HTTP method, upper case")
    url: str = Field(..., description="Full request URL including the query string")
    headers: httpx.Headers = Field(default_factory=httpx.Headers, description="Case-insensitive header multimap")
    body: Optional[bytes] = Field(None, description="Request body, None when empty")
    connection: ConnectionInfo = Field(default_factory=ConnectionInfo)

    @property
    def is_preflight(self) -> bool:
        return self.method.upper() == "OPTIONS"


# ============================================================================
# Policy Models
# ============================================================================

class AccessPolicyConfig(BaseModel):
    """Hostname deny/allow sets. None means the set is not configured."""
    model_config = ConfigDict(frozen=True)

    denied_hosts: Optional[FrozenSet[str]] = Field(None, description="Hostnames that are always refused")
    allowed_hosts: Optional[FrozenSet[str]] = Field(None, description="If set, the only hostnames permitted")


class AccessDecision(BaseModel):
    """Outcome of checking a target against the access policy."""
    allowed: bool
    reason: Optional[str] = Field(None, description="Why the target was denied")


# ============================================================================
# Outbound Models
# ============================================================================

class TargetSpec(BaseModel):
    """An absolute http(s) URL the request will be forwarded to."""
    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    url: httpx.URL

    @property
    def hostname(self) -> str:
        """ASCII (punycode) hostname, lower case, as used for policy checks.

        IPv6 literals keep their brackets, e.g. ``[::1]``.
        """
        host = self.url.raw_host.decode("ascii")
        if ":" in host:
            return f"[{host}]"
        return host


class ProxyResponse(BaseModel):
    """The response handed back to the hosting layer."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    status_code: int
    reason_phrase: str = ""
    headers: httpx.Headers = Field(default_factory=httpx.Headers)
    body: bytes = b""
