"""Outbound URL policy (SSRF guard).

Every outbound request whose target comes from a user goes through
``validate_url`` first. One parameterized policy covers both call sites:

    STRICT_EXTERNAL      webhooks: https only, loopback rejected
    DEV_TOLERANT_SERVER  the user's own server: loopback allowed, and plain
                         http is accepted only for loopback hosts

Rules are checked in order and the first violation wins. Reasons are safe
to show to the user and cite the offending host once the URL parsed.

The guard only looks at the literal URL. DNS resolution and redirects are
not inspected; callers disable redirect following.
"""

from __future__ import annotations

import ipaddress
import re
from dataclasses import dataclass
from urllib.parse import urlsplit

INVALID_URL = "Invalid URL"

_BLOCKED_IPV4_NETWORKS = tuple(
    ipaddress.IPv4Network(net)
    for net in ("10.0.0.0/8", "172.16.0.0/12", "192.168.0.0/16", "169.254.0.0/16", "0.0.0.0/8")
)
_IPV4_LOOPBACK = ipaddress.IPv4Network("127.0.0.0/8")
_IPV6_UNIQUE_LOCAL = ipaddress.IPv6Network("fc00::/7")
_IPV6_LINK_LOCAL = ipaddress.IPv6Network("fe80::/10")

_INTERNAL_SUFFIXES = (".local", ".internal", ".corp", ".lan")

# A label that a URL parser could read as part of a numeric IPv4 host.
_NUMERIC_LABEL = re.compile(r"^(0x[0-9a-f]*|[0-9]+)$")


@dataclass(frozen=True)
class UrlCheck:
    """Verdict of the guard. ``reason`` is empty when ``ok`` is True."""

    ok: bool
    reason: str = ""


@dataclass(frozen=True)
class UrlPolicy:
    """A named set of outbound URL rules.

    Attributes:
        name: Profile name, used in logs.
        allow_loopback: Accept localhost, *.localhost, 127/8 and ::1.
        allow_http_for_loopback: Accept plain http when the host is loopback.
    """

    name: str
    allow_loopback: bool = False
    allow_http_for_loopback: bool = False

    def validate(self, url: object) -> UrlCheck:
        return validate_url(url, self)


STRICT_EXTERNAL = UrlPolicy(name="strict_external")
DEV_TOLERANT_SERVER = UrlPolicy(
    name="dev_tolerant_server",
    allow_loopback=True,
    allow_http_for_loopback=True,
)


def _normalize_host(hostname: str) -> str:
    host = hostname.split("%", 1)[0].lower()
    return host.rstrip(".")


def _is_numeric_host(host: str) -> bool:
    return all(_NUMERIC_LABEL.match(label) for label in host.split("."))


def _is_loopback_name(host: str) -> bool:
    return host == "localhost" or host.endswith(".localhost")


def _is_loopback(host: str) -> bool:
    if _is_loopback_name(host):
        return True
    try:
        ip = ipaddress.ip_address(host)
    except ValueError:
        return False
    if isinstance(ip, ipaddress.IPv6Address):
        if ip.ipv4_mapped is not None:
            return ip.ipv4_mapped in _IPV4_LOOPBACK
        return ip == ipaddress.IPv6Address("::1")
    return ip in _IPV4_LOOPBACK


def _ipv4_blocked(ip: ipaddress.IPv4Address, policy: UrlPolicy) -> bool:
    if ip in _IPV4_LOOPBACK:
        return not policy.allow_loopback
    return any(ip in net for net in _BLOCKED_IPV4_NETWORKS)


def _ipv6_blocked(ip: ipaddress.IPv6Address, policy: UrlPolicy) -> bool:
    if ip.ipv4_mapped is not None:
        return _ipv4_blocked(ip.ipv4_mapped, policy)
    if ip == ipaddress.IPv6Address("::1"):
        return not policy.allow_loopback
    if ip.is_unspecified:
        return True
    return ip in _IPV6_UNIQUE_LOCAL or ip in _IPV6_LINK_LOCAL


def validate_url(url: object, policy: UrlPolicy) -> UrlCheck:
    """Check ``url`` against ``policy`` without touching the network."""
    if not isinstance(url, str) or not url.strip():
        return UrlCheck(False, INVALID_URL)

    try:
        parts = urlsplit(url.strip())
        hostname = parts.hostname
        parts.port  # noqa: B018 - raises ValueError on a bad port
    except ValueError:
        return UrlCheck(False, INVALID_URL)

    if not parts.scheme or not hostname:
        return UrlCheck(False, INVALID_URL)

    scheme = parts.scheme.lower()
    host = _normalize_host(hostname)
    if not host:
        return UrlCheck(False, INVALID_URL)

    # Protocol
    if scheme != "https":
        http_ok = (
            scheme == "http"
            and policy.allow_http_for_loopback
            and _is_loopback(host)
        )
        if not http_ok:
            if policy.allow_http_for_loopback:
                return UrlCheck(
                    False,
                    f"Server URL must use https (http is only allowed for localhost): {host}",
                )
            return UrlCheck(False, f"URL must use https: {host}")

    # Loopback names
    if _is_loopback_name(host) and not policy.allow_loopback:
        return UrlCheck(False, f"Access to localhost is not allowed: {host}")

    # IPv6 literal
    if ":" in host:
        try:
            ip6 = ipaddress.IPv6Address(host)
        except ValueError:
            return UrlCheck(False, INVALID_URL)
        if _ipv6_blocked(ip6, policy):
            return UrlCheck(False, f"Access to private IPv6 addresses is not allowed: {host}")
        return UrlCheck(True)

    # IPv4 literal, including numeric forms other parsers accept
    if _is_numeric_host(host):
        try:
            ip4 = ipaddress.IPv4Address(host)
        except ValueError:
            return UrlCheck(False, f"Malformed IP address: {host}")
        if _ipv4_blocked(ip4, policy):
            return UrlCheck(False, f"Access to private IP addresses is not allowed: {host}")
        return UrlCheck(True)

    # Internal names
    if host.endswith(_INTERNAL_SUFFIXES):
        return UrlCheck(False, f"Access to internal domain names is not allowed: {host}")

    return UrlCheck(True)
