"""Resolve the address game servers should heartbeat to."""

import ipaddress
import logging

import httpx

from backend.app.config import settings

logger = logging.getLogger(__name__)


async def resolve_public_ip(client: httpx.AsyncClient) -> str:
    """Return the configured public IP, or look it up.

    Raises if the lookup fails: without a reachable address no game server
    could ever heartbeat back, so startup must not continue.
    """
    if settings.public_ip:
        return settings.public_ip

    response = await client.get(settings.public_ip_lookup_url)
    response.raise_for_status()
    public_ip = response.text.strip()
    ipaddress.IPv4Address(public_ip)  # raises ValueError on garbage
    logger.info("Discovered public IP %s", public_ip)
    return public_ip
