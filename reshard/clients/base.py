"""
Base HTTP client for collaborator services

Wraps an httpx.AsyncClient and turns every transport or HTTP status failure
into a CollaboratorError naming the service and endpoint.
"""

import httpx
import logging
from typing import Any, Optional

from reshard.errors import CollaboratorError

logger = logging.getLogger(__name__)


class ServiceClient:
    """JSON-over-HTTP client for one collaborator service"""

    service_name = "service"

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Args:
            base_url: Service root URL
            timeout: Default request timeout in seconds
            transport: Optional httpx transport (tests pass a MockTransport)
        """
        self.base_url = base_url.rstrip("/")
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers={
                "Content-Type": "application/json",
                "Accept": "application/json"
            }
        )

    def __repr__(self):
        return f"<{type(self).__name__} {self.base_url}>"

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self):
        await self.client.aclose()

    async def _request(self, method: str, endpoint: str, **kwargs) -> Any:
        """
        Make a request and return the decoded JSON body

        Raises:
            CollaboratorError: On connection failure, timeout, HTTP error
                status or undecodable body
        """
        try:
            response = await self.client.request(method, endpoint, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            logger.error(f"{self.service_name} {method} {endpoint} failed: HTTP {status_code}")
            raise CollaboratorError(
                f"{self.service_name} {method} {endpoint}: HTTP {status_code}",
                cause=e,
                info={"status_code": status_code}
            )
        except httpx.HTTPError as e:
            logger.error(f"{self.service_name} {method} {endpoint} failed: {e}")
            raise CollaboratorError(f"{self.service_name} {method} {endpoint}", cause=e)

        if not response.content:
            return None

        try:
            return response.json()
        except ValueError as e:
            raise CollaboratorError(
                f"{self.service_name} {method} {endpoint}: invalid JSON response",
                cause=e
            )
