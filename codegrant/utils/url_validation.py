"""URL validation for OAuth2 provider endpoints.

Provider endpoints receive the client secret and authorization codes, so they
are checked once at startup:
- Only https is accepted for non-loopback hosts
- Plain http is accepted for loopback hosts only when explicitly allowed
  (local development against a mock provider)
- Embedded credentials and fragments are rejected

References:
- RFC 6749 section 3.1 and 3.2 (endpoint requirements)
- RFC 6749 section 10.9 (TLS for the token endpoint)
"""

import ipaddress
from urllib.parse import ParseResult, urlparse

from codegrant.exceptions import ProviderConfigError

# Localhost hostnames that may use plain http in development
LOCALHOST_HOSTNAMES = {
    "localhost",
    "localhost.localdomain",
    "ip6-localhost",
    "ip6-loopback",
}


def is_loopback_host(hostname: str) -> bool:
    """Check if a hostname names the local machine.

    Args:
        hostname: Hostname or IP literal (IPv6 without brackets)

    Returns:
        True for localhost names and loopback IP addresses
    """
    if hostname.lower() in LOCALHOST_HOSTNAMES:
        return True
    try:
        ip_obj = ipaddress.ip_address(hostname)
    except ValueError:
        return False

    if isinstance(ip_obj, ipaddress.IPv6Address) and ip_obj.ipv4_mapped:
        return ip_obj.ipv4_mapped.is_loopback
    return ip_obj.is_loopback


def validate_endpoint_url(url: str, allow_insecure: bool = False) -> ParseResult:
    """Validate an OAuth2 provider endpoint URL.

    Args:
        url: Authorize, token or profile endpoint URL
        allow_insecure: Permit http for loopback hosts

    Returns:
        Parsed URL object if validation passes

    Raises:
        ProviderConfigError: If the URL is malformed or not safe to use
    """
    if not url:
        raise ProviderConfigError("Endpoint URL cannot be empty")

    parsed = urlparse(url)

    hostname = parsed.hostname
    if not hostname:
        raise ProviderConfigError(f"Endpoint URL must include a hostname: {url}")

    if parsed.username or parsed.password:
        raise ProviderConfigError(f"Endpoint URL must not embed credentials: {hostname}")

    if parsed.fragment:
        raise ProviderConfigError(f"Endpoint URL must not include a fragment: {hostname}")

    if parsed.scheme == "https":
        return parsed

    if parsed.scheme == "http" and allow_insecure and is_loopback_host(hostname):
        return parsed

    raise ProviderConfigError(
        f"Endpoint URL scheme '{parsed.scheme}' not allowed for {hostname}. "
        "Use https (http is only accepted for loopback hosts in development)."
    )
