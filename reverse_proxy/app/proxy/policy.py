"""
Destination access policy.

The blacklist always wins: a hostname on it is refused even when it is also
whitelisted. A configured whitelist refuses every hostname not on it.
Hostnames are compared exactly; there is no wildcard or suffix matching.
"""

from ..models import AccessDecision, AccessPolicyConfig, TargetSpec


def is_allowed(target: TargetSpec, config: AccessPolicyConfig) -> AccessDecision:
    """
    Decide whether the proxy may forward to ``target``.

    Args:
        target: Resolved destination
        config: Deny and allow sets

    Returns:
        AccessDecision, with a reason when denied
    """
    hostname = target.hostname

    if config.denied_hosts and hostname in config.denied_hosts:
        return AccessDecision(allowed=False, reason="blacklisted")

    if config.allowed_hosts and hostname not in config.allowed_hosts:
        return AccessDecision(allowed=False, reason="not whitelisted")

    return AccessDecision(allowed=True)
