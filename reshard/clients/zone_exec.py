"""
Remote Execution Client

Runs a rendered script on a named execution target (a zone) and returns its
exit status and captured output.

The call has its own transport budget. When that budget runs out, either on
our side (httpx timeout) or on the exec service's side (reply flagged
`exec_timeout`), TransportTimeout is raised: the script may well still be
running, and callers decide what that means.
"""

import httpx
import logging
from typing import Optional

from reshard.clients.base import ServiceClient
from reshard.errors import CollaboratorError, TransportTimeout
from reshard.workflow.models import ExecResult

logger = logging.getLogger(__name__)


class ZoneExecClient(ServiceClient):
    service_name = "exec"

    def __init__(
        self,
        base_url: str,
        transport_timeout: float = 300.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        # Leave the HTTP layer a little headroom past the exec service's budget
        super().__init__(base_url, timeout=transport_timeout + 10, transport=transport)
        self.transport_timeout = transport_timeout

    async def execute(self, target_id: str, script: str) -> ExecResult:
        """
        Execute a script on a target

        Args:
            target_id: Execution target (zone) UUID
            script: Rendered script text

        Returns:
            ExecResult with exit status and output

        Raises:
            TransportTimeout: The call exceeded its transport budget
            CollaboratorError: Any other exec service failure
        """
        payload = {
            "target": target_id,
            "script": script,
            "timeout": self.transport_timeout
        }

        try:
            data = await self._request("POST", "/execute", json=payload)
        except CollaboratorError as e:
            if isinstance(e.__cause__, httpx.TimeoutException):
                raise TransportTimeout(
                    f"exec on {target_id} timed out after {self.transport_timeout}s",
                    cause=e.__cause__,
                    info={"target": target_id}
                )
            raise

        if not isinstance(data, dict):
            raise CollaboratorError(f"exec on {target_id}: unexpected reply")

        if data.get("exec_timeout"):
            raise TransportTimeout(
                f"exec on {target_id} timed out after {self.transport_timeout}s",
                info={"target": target_id, "exec_timeout": True}
            )

        if "exit_status" not in data:
            raise CollaboratorError(f"exec on {target_id}: reply has no exit_status")

        return ExecResult(
            exit_status=int(data["exit_status"]),
            stdout=data.get("stdout") or "",
            stderr=data.get("stderr") or ""
        )
