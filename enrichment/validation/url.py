"""
URL canonicalization and SSRF guard.

Pure functions: no DNS lookups and no I/O. Runs before any cache lookup,
rate-limit charge or outbound call.
"""

from __future__ import annotations

import ipaddress
import re
from typing import Optional, Union
from urllib.parse import urlsplit

from enrichment.errors import UrlValidationError
from enrichment.models import CompanyIdentity

MAX_URL_LENGTH = 2048

BLOCKED_HOSTNAMES: frozenset[str] = frozenset({
    "localhost",
    "localhost.localdomain",
    "local",
    "127.0.0.1",
    "0.0.0.0",
    "::1",
    "metadata",
    "metadata.google",
    "metadata.google.internal",
    "169.254.169.254",
    "kubernetes.default",
    "kubernetes.default.svc",
    "kubernetes.default.svc.cluster.local",
})

BLOCKED_TLDS: frozenset[str] = frozenset({
    "local",
    "internal",
    "localhost",
    "invalid",
    "example",
    "test",
    "intranet",
    "corp",
    "home",
    "lan",
})

# Percent-encoding, control bytes and Latin-1 high bytes in a hostname
_SUSPICIOUS_CHARS = re.compile(r"[%\x00-\x1f\x7f-\xff]")
_NUMERIC_LABELS = re.compile(r"^[0-9.]+$")

SSRF_CODE = "ssrf_blocked"

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


def _parse_ip(hostname: str) -> Optional[IPAddress]:
    try:
        return ipaddress.ip_address(hostname)
    except ValueError:
        return None


def _is_blocked_ip(ip: IPAddress) -> bool:
    if isinstance(ip, ipaddress.IPv6Address):
        embedded = ip.ipv4_mapped or ip.sixtofour
        if embedded is not None and _is_blocked_ip(embedded):
            return True
    # is_global is False for loopback, RFC1918, link-local, CGNAT, ULA and reserved space
    return not ip.is_global or ip.is_multicast


def _is_blocked_host(hostname: str) -> bool:
    if hostname in BLOCKED_HOSTNAMES or hostname.startswith("kubernetes.default."):
        return True
    ip = _parse_ip(hostname)
    if ip is not None:
        return _is_blocked_ip(ip)
    if _NUMERIC_LABELS.match(hostname):
        # Octal or short-form IPv4 that some resolvers still accept
        return True
    return hostname.rsplit(".", 1)[-1] in BLOCKED_TLDS


def _has_suspicious_pattern(hostname: str) -> bool:
    return bool(_SUSPICIOUS_CHARS.search(hostname)) or ".." in hostname


def validate_enrichment_url(raw: object) -> CompanyIdentity:
    """
    Canonicalize a user-supplied URL into a CompanyIdentity.

    Raises:
        UrlValidationError: empty/oversized input, no dot, unparsable URL,
            internal, private or reserved host, internal TLD or suspicious
            hostname (code ``ssrf_blocked``), embedded credentials, or a port
            other than 443.
    """
    if not isinstance(raw, str) or not raw.strip():
        raise UrlValidationError("URL is required")

    candidate = raw.strip()
    if len(candidate) > MAX_URL_LENGTH:
        raise UrlValidationError(f"URL exceeds maximum length of {MAX_URL_LENGTH} characters")
    if "." not in candidate:
        raise UrlValidationError("Invalid URL: must contain a valid domain")

    lowered = candidate.lower()
    if not (lowered.startswith("http://") or lowered.startswith("https://")):
        candidate = f"https://{candidate}"

    try:
        parts = urlsplit(candidate)
        hostname = (parts.hostname or "").lower()
        port = parts.port
    except ValueError as exc:
        raise UrlValidationError("Invalid URL format") from exc

    if not hostname:
        raise UrlValidationError("Invalid URL format")

    if _is_blocked_host(hostname):
        raise UrlValidationError("Internal or reserved addresses are not allowed", code=SSRF_CODE)
    if _has_suspicious_pattern(hostname):
        raise UrlValidationError("Suspicious URL pattern detected", code=SSRF_CODE)

    if parts.username or parts.password:
        raise UrlValidationError("URLs with credentials are not allowed")

    if port is not None and port != 443:
        raise UrlValidationError("Non-standard ports are not allowed")

    domain = hostname.removeprefix("www.")
    if "." not in domain or domain.startswith(".") or domain.endswith("."):
        raise UrlValidationError("Invalid URL: must contain a valid domain")

    first_label = domain.split(".")[0]
    display_name = first_label[:1].upper() + first_label[1:]

    return CompanyIdentity(
        domain=domain,
        display_name=display_name,
        normalized_url=f"https://{hostname}",
    )
