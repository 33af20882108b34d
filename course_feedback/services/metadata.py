"""Best-effort participant metadata: IP address, device type, fingerprint.

Nothing here may block or fail a submission. Each IP probe is bounded by a
timeout and the chain as a whole by a budget; when every probe fails the
address is recorded as "unknown".

Probe order matters. Public lookup services answer with the address of
whoever calls them, so the feedback form queries them from the browser and
posts the result back as the `ip` hint. On the server the same services only
see this server's egress address; they run last, for requests that carry
neither a reported nor a peer address.
"""

import asyncio
import hashlib
import ipaddress
import json
import logging
import re
import time
from typing import Dict, List, Mapping, Optional, Sequence

import httpx

from course_feedback.config import settings
from course_feedback.schemas import ClientMetadata
from course_feedback.utils import to_base36

logger = logging.getLogger(__name__)

UNKNOWN_IP = "unknown"

# Response keys used by the public IP lookup services
IP_RESPONSE_KEYS = ("ip", "query", "IPv4", "ipAddress")

# Navigator-style properties the feedback form reports back
FINGERPRINT_HINT_KEYS = (
    "language",
    "platform",
    "timezone",
    "screen",
    "canvas",
    "webgl",
    "plugins",
    "hardware_concurrency",
    "cookie_enabled",
    "do_not_track",
)
MAX_HINT_LENGTH = 512

# Hint carrying the address the browser got from a lookup service
CLIENT_IP_HINT_KEY = "ip"

TABLET_PATTERN = re.compile(r"ipad|tablet|kindle|silk|playbook")
MOBILE_PATTERN = re.compile(r"mobile|iphone|ipod|android|phone|blackberry|opera mini|iemobile")


def detect_device_type(user_agent: Optional[str]) -> str:
    """Classify a user agent as mobile, tablet or desktop."""
    ua = (user_agent or "").lower()
    if TABLET_PATTERN.search(ua) or ("android" in ua and "mobile" not in ua):
        return "tablet"
    if MOBILE_PATTERN.search(ua):
        return "mobile"
    return "desktop"


def compute_fingerprint(
    user_agent: Optional[str],
    accept_language: Optional[str] = None,
    client_hints: Optional[Mapping[str, str]] = None,
) -> str:
    """Fold browser properties into a short advisory hash, `fp_<base36>`.

    Low entropy on purpose: it helps spot abuse patterns afterwards but is
    never used to gate access or to re-identify anyone.
    """
    components: Dict[str, str] = {
        "user_agent": user_agent or "",
        "accept_language": accept_language or "",
    }
    for key in FINGERPRINT_HINT_KEYS:
        value = (client_hints or {}).get(key)
        if value:
            components[key] = str(value)[:MAX_HINT_LENGTH]

    payload = json.dumps(components, sort_keys=True).encode("utf-8")
    digest = hashlib.blake2b(payload, digest_size=5).digest()
    return "fp_" + to_base36(int.from_bytes(digest, "big"))


class LookupServiceProbe:
    """Ask a public IP lookup service; answers with the first IP-like JSON field."""

    remote = True

    def __init__(self, url: str, client: httpx.AsyncClient):
        self.url = url
        self.client = client

    @property
    def name(self) -> str:
        return self.url

    async def __call__(self) -> Optional[str]:
        response = await self.client.get(self.url)
        if response.status_code != 200:
            return None
        data = response.json()
        if not isinstance(data, dict):
            return None
        for key in IP_RESPONSE_KEYS:
            if data.get(key):
                return str(data[key])
        return None


class ReportedAddressProbe:
    """Address the browser obtained from a lookup service and posted back."""

    remote = False
    name = "client-reported"

    def __init__(self, reported_ip: Optional[str]):
        self.reported_ip = reported_ip

    async def __call__(self) -> Optional[str]:
        if not self.reported_ip:
            return None
        # raises ValueError for anything that is not an address
        return str(ipaddress.ip_address(self.reported_ip.strip()))


class LocalAddressProbe:
    """Address as seen by this server: first X-Forwarded-For hop, else the peer."""

    remote = False
    name = "local-address"

    def __init__(self, headers: Optional[Mapping[str, str]], client_host: Optional[str]):
        self.headers = headers or {}
        self.client_host = client_host

    async def __call__(self) -> Optional[str]:
        forwarded = self.headers.get("x-forwarded-for")
        if forwarded:
            first_hop = forwarded.split(",")[0].strip()
            if first_hop:
                return first_hop
        return self.client_host or None


async def first_successful_probe(
    probes: Sequence,
    probe_timeout: float,
    total_timeout: float,
    fallback: str = UNKNOWN_IP,
) -> str:
    """Run probes in order and return the first answer.

    Remote probes share the `total_timeout` budget and are skipped once it is
    spent; local probes always run since they do no I/O.
    """
    deadline = time.monotonic() + total_timeout
    for probe in probes:
        remaining = deadline - time.monotonic()
        if probe.remote and remaining <= 0:
            continue
        timeout = min(probe_timeout, remaining) if probe.remote else probe_timeout
        try:
            result = await asyncio.wait_for(probe(), timeout=timeout)
        except (asyncio.TimeoutError, httpx.HTTPError, httpx.InvalidURL, ValueError) as e:
            logger.warning("IP probe %s failed: %s", probe.name, type(e).__name__)
            continue
        if result:
            return result
    return fallback


class MetadataCollector:
    """Collects ClientMetadata for a request.

    Args:
        lookup_services: Ordered IP lookup URLs; defaults to settings
        lookup_timeout: Per-service timeout in seconds
        total_timeout: Budget for the whole probe chain in seconds
        transport: Optional httpx transport (tests pass a MockTransport)
    """

    def __init__(
        self,
        lookup_services: Optional[List[str]] = None,
        lookup_timeout: Optional[float] = None,
        total_timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.lookup_services = (
            settings.IP_LOOKUP_SERVICES if lookup_services is None else list(lookup_services)
        )
        self.lookup_timeout = lookup_timeout or settings.IP_LOOKUP_TIMEOUT
        self.total_timeout = total_timeout or settings.METADATA_TIMEOUT
        self.transport = transport

    async def lookup_ip(
        self,
        headers: Optional[Mapping[str, str]] = None,
        client_host: Optional[str] = None,
        reported_ip: Optional[str] = None,
    ) -> str:
        async with httpx.AsyncClient(
            transport=self.transport, timeout=self.lookup_timeout
        ) as client:
            probes = [
                ReportedAddressProbe(reported_ip),
                LocalAddressProbe(headers, client_host),
            ]
            probes += [LookupServiceProbe(url, client) for url in self.lookup_services]
            return await first_successful_probe(
                probes, probe_timeout=self.lookup_timeout, total_timeout=self.total_timeout
            )

    async def collect(
        self,
        user_agent: Optional[str] = None,
        headers: Optional[Mapping[str, str]] = None,
        client_host: Optional[str] = None,
        client_hints: Optional[Mapping[str, str]] = None,
    ) -> ClientMetadata:
        headers = headers or {}
        reported_ip = (client_hints or {}).get(CLIENT_IP_HINT_KEY)
        ip_address = await self.lookup_ip(headers, client_host, reported_ip=reported_ip)
        return ClientMetadata(
            ip_address=ip_address,
            user_agent=user_agent or "",
            browser_fingerprint=compute_fingerprint(
                user_agent, headers.get("accept-language"), client_hints
            ),
            device_type=detect_device_type(user_agent),
        )
