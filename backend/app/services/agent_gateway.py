"""HTTP client for the provisioning API exposed by each agent.

Every call returns a tagged result and never raises past this module:
network errors, timeouts, non-2xx responses and malformed bodies all
collapse into :class:`GatewayFailure`. There are no retries here.
"""

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from backend.app.config import settings
from backend.app.models.agent import Agent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ContainerCreated:
    container_id: str


@dataclass(frozen=True)
class ContainerStarted:
    public_ip: str


@dataclass(frozen=True)
class GatewayFailure:
    reason: str


def build_client(timeout_seconds: float | None = None) -> httpx.AsyncClient:
    """Create the shared client used to talk to agents.

    The timeout bounds every agent call, so a stuck agent cannot hold the
    allocation lock indefinitely.
    """
    timeout = httpx.Timeout(timeout_seconds or settings.agent_request_timeout_seconds)
    return httpx.AsyncClient(timeout=timeout)


class AgentGateway:
    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    async def close(self) -> None:
        await self._client.aclose()

    async def _post(self, agent: Agent, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        url = f"{agent.host.rstrip('/')}{path}"
        response = await self._client.post(url, json=payload)
        response.raise_for_status()
        body = response.json()
        if not isinstance(body, dict):
            raise ValueError(f"expected a JSON object from {url}, got {type(body).__name__}")
        return body

    async def create_container(
        self, agent: Agent, image_name: str, port: str
    ) -> ContainerCreated | GatewayFailure:
        try:
            body = await self._post(
                agent, "/createContainer", {"imageName": image_name, "port": port}
            )
            container_id = body["containerId"]
        except (httpx.HTTPError, ValueError, KeyError) as exc:
            logger.warning(
                "createContainer failed on agent %s (%s): %r", agent.id, agent.host, exc
            )
            return GatewayFailure(reason=f"createContainer: {exc!r}")

        if not isinstance(container_id, str) or not container_id:
            logger.warning("createContainer on agent %s returned no container id", agent.id)
            return GatewayFailure(reason="createContainer: empty containerId")
        return ContainerCreated(container_id=container_id)

    async def start_container(
        self,
        agent: Agent,
        container_id: str,
        heartbeat_endpoint: str,
        server_id: str,
        port: str,
    ) -> ContainerStarted | GatewayFailure:
        try:
            body = await self._post(
                agent,
                f"/startContainer/{container_id}",
                {"heartbeatEndpoint": heartbeat_endpoint, "serverId": server_id, "port": port},
            )
            public_ip = body["publicIp"]
        except (httpx.HTTPError, ValueError, KeyError) as exc:
            logger.warning(
                "startContainer %s failed on agent %s (%s): %r",
                container_id,
                agent.id,
                agent.host,
                exc,
            )
            return GatewayFailure(reason=f"startContainer: {exc!r}")

        if not isinstance(public_ip, str) or not public_ip:
            logger.warning("startContainer on agent %s returned no public ip", agent.id)
            return GatewayFailure(reason="startContainer: empty publicIp")
        return ContainerStarted(public_ip=public_ip)

    async def is_port_available(self, agent: Agent, port: str) -> bool | None:
        """Advisory probe.

        Returns None when the agent could not be reached at all (connect error,
        timeout). Any answer that is not an explicit ``true`` reads as busy.
        """
        try:
            body = await self._post(agent, "/isPortAvailable", {"port": int(port)})
        except httpx.TransportError as exc:
            logger.warning("isPortAvailable %s: agent %s unreachable: %r", port, agent.id, exc)
            return None
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("isPortAvailable %s failed on agent %s: %r", port, agent.id, exc)
            return False
        return body.get("isPortAvailable") is True
