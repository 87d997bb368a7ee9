"""Anti-SSRF validation for proxy targets.

A target is accepted only when its scheme is allowed and every address its
hostname resolves to is publicly routable. DNS failure rejects the target:
an unresolvable host is untrusted, not a transient error, and is never
retried.
"""
from __future__ import annotations

import asyncio
import ipaddress
import logging
import socket
from typing import Awaitable, Callable, Optional
from urllib.parse import urlsplit

from .constants import Timeouts

logger = logging.getLogger(__name__)

Resolver = Callable[[str], Awaitable[list[str]]]

_ALLOWED_SCHEMES = ("http", "https")


async def resolve_host(hostname: str) -> list[str]:
    """Resolve ``hostname`` to every address the system resolver returns."""
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(hostname, None, type=socket.SOCK_STREAM)
    return sorted({info[4][0] for info in infos})


def is_blocked_address(address: str) -> bool:
    """True for private, loopback, link-local, reserved and other non-public addresses."""
    ip = ipaddress.ip_address(address.split("%", 1)[0])
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped
    return (
        ip.is_private
        or ip.is_loopback
        or ip.is_link_local
        or ip.is_reserved
        or ip.is_multicast
        or ip.is_unspecified
        or not ip.is_global
    )


def _literal_address(hostname: str) -> Optional[str]:
    try:
        return str(ipaddress.ip_address(hostname))
    except ValueError:
        return None


class UpstreamGuard:
    """Decides whether the gateway may forward a request to ``url``."""

    def __init__(
        self,
        *,
        require_https: bool = False,
        resolver: Optional[Resolver] = None,
        dns_timeout: float = Timeouts.DNS_LOOKUP,
    ) -> None:
        self.require_https = require_https
        self._resolve = resolver or resolve_host
        self._dns_timeout = dns_timeout

    async def validate(self, url: str) -> bool:
        try:
            parts = urlsplit(url)
            hostname = parts.hostname
        except ValueError:
            logger.warning(f"[SECURITY] Blocked unparseable upstream URL: {url!r}")
            return False

        scheme = parts.scheme.lower()
        if scheme not in _ALLOWED_SCHEMES or not hostname:
            logger.warning(f"[SECURITY] Blocked upstream URL with scheme/host {scheme!r}/{hostname!r}")
            return False

        if self.require_https and scheme != "https":
            logger.warning(f"[SECURITY] Blocked non-HTTPS upstream URL: {url}")
            return False

        literal = _literal_address(hostname)
        if literal is not None:
            addresses = [literal]
        else:
            try:
                hostname.encode("idna")
            except UnicodeError:
                logger.warning(f"[SECURITY] Blocked malformed upstream hostname: {hostname!r}")
                return False
            try:
                addresses = await asyncio.wait_for(self._resolve(hostname), self._dns_timeout)
            except (OSError, UnicodeError, asyncio.TimeoutError) as e:
                logger.warning(f"[SECURITY] DNS resolution failed for {hostname}, rejecting: {e}")
                return False
            if not addresses:
                logger.warning(f"[SECURITY] {hostname} resolved to no addresses, rejecting")
                return False

        for address in addresses:
            try:
                blocked = is_blocked_address(address)
            except ValueError:
                logger.warning(f"[SECURITY] Resolver returned invalid address {address!r} for {hostname}")
                return False
            if blocked:
                logger.warning(f"[SECURITY] Blocked private address access: {url} -> {address}")
                return False

        return True
