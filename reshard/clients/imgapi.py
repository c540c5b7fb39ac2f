"""
IMGAPI Client

Artifact repository holding packaged hash ring databases.
"""

from typing import List

from reshard.clients.base import ServiceClient
from reshard.workflow.models import Artifact


class ImgapiClient(ServiceClient):
    service_name = "IMGAPI"

    async def list_images(self, name: str, owner: str) -> List[Artifact]:
        rows = await self._request(
            "GET", "/images", params={"name": name, "owner": owner, "state": "all"}
        ) or []
        return [_to_artifact(row) for row in rows]

    async def get_image(self, image_uuid: str) -> Artifact:
        row = await self._request("GET", f"/images/{image_uuid}")
        return _to_artifact(row)


def _to_artifact(row: dict) -> Artifact:
    return Artifact(
        uuid=row["uuid"],
        name=row.get("name", ""),
        owner=row.get("owner"),
        tags=row.get("tags") or {}
    )
