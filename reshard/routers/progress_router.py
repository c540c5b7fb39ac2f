"""
Progress Router

Remote scripts POST their status messages here. The token in the path was
handed to the script in its rendered STATUS_URL; tokens are unguessable and
removed as soon as the step that registered them resolves.

Responses:
- 204: message accepted
- 400: body is not JSON
- 404: unknown token, or the step already tore its endpoint down
- 409: message arrived after the step's terminal message
- 422: body is not a well-formed progress message
"""

import logging

from fastapi import APIRouter, HTTPException, Request, Response

from reshard.errors import ProtocolViolation
from reshard.workflow.progress import (
    MalformedProgressMessage,
    ProgressChannelRegistry,
    ProgressEndpointNotFound,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/progress", tags=["Progress"])


def get_registry(request: Request) -> ProgressChannelRegistry:
    return request.app.state.progress_channels


@router.post("/{token}", status_code=204)
async def post_progress(token: str, request: Request):
    """
    Receive one progress message from a running remote script.

    Expected payload:
    ```json
    {"message": "remapping", "processed_units": 500, "total_units": 1000}
    ```
    """
    registry = get_registry(request)

    try:
        body = await request.json()
    except ValueError as e:
        logger.warning(f"Progress POST for {token[:6]}… with invalid JSON: {e}")
        raise HTTPException(status_code=400, detail="Invalid JSON payload")

    try:
        registry.dispatch(token, body)
    except ProgressEndpointNotFound as e:
        logger.warning(f"Progress POST for unknown endpoint {token[:6]}…")
        raise HTTPException(status_code=404, detail=e.message)
    except MalformedProgressMessage as e:
        logger.warning(f"Malformed progress message: {e.full_message()}")
        raise HTTPException(status_code=422, detail=e.full_message())
    except ProtocolViolation as e:
        logger.warning(f"Rejected progress message: {e.message}")
        raise HTTPException(status_code=409, detail=e.message)

    return Response(status_code=204)
