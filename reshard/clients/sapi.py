"""
SAPI Client

Application metadata and service instance listings.
"""

import logging
from typing import Dict, List

from reshard.clients.base import ServiceClient
from reshard.errors import CollaboratorError
from reshard.workflow.models import Application, Instance

logger = logging.getLogger(__name__)


class SapiClient(ServiceClient):
    service_name = "SAPI"

    async def get_application(self, name: str) -> Application:
        """
        Fetch the application record by name

        Raises:
            CollaboratorError: If the application does not exist exactly once
        """
        apps = await self._request("GET", "/applications", params={"name": name})
        if not apps or len(apps) != 1:
            raise CollaboratorError(
                f"expected exactly one \"{name}\" application, found {len(apps or [])}"
            )

        app = apps[0]
        return Application(
            uuid=app["uuid"],
            owner_uuid=app.get("owner_uuid", ""),
            metadata=app.get("metadata") or {}
        )

    async def _get_service_uuid(self, service_name: str, application_uuid: str) -> str:
        services = await self._request(
            "GET",
            "/services",
            params={"name": service_name, "application_uuid": application_uuid}
        )
        if not services or len(services) != 1:
            raise CollaboratorError(
                f"expected exactly one \"{service_name}\" service, "
                f"found {len(services or [])}"
            )
        return services[0]["uuid"]

    async def list_instances(self, service_name: str, application_uuid: str) -> Dict[str, Instance]:
        """
        List instances of a service

        Returns:
            Dict of instance uuid → Instance
        """
        service_uuid = await self._get_service_uuid(service_name, application_uuid)
        rows: List[dict] = await self._request(
            "GET", "/instances", params={"service_uuid": service_uuid}
        ) or []

        instances = {}
        for row in rows:
            inst = Instance(
                uuid=row["uuid"],
                service_name=service_name,
                server_uuid=(row.get("params") or {}).get("server_uuid")
            )
            instances[inst.uuid] = inst

        logger.debug(f"SAPI: {len(instances)} \"{service_name}\" instances")
        return instances
