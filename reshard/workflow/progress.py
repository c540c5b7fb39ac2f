"""
Progress Channel

Remote scripts report log messages, progress and completion by POSTing JSON
to a per-step endpoint:

    {"message": str, "error": bool, "finished": bool,
     "total_units": int|null, "processed_units": int|null}

Older scripts send `total_vnodes` / `processed_vnodes`; both spellings are
accepted. Payloads decode into one of three variants:

- ProgressInfo: non-terminal status, optionally with a processed/total pair
- ProgressError: the script failed
- ProgressFinished: the script completed

Endpoints are registered per step with an unguessable token and must be
unregistered when the step resolves, so a stray late POST cannot reach a
later, unrelated step.
"""

import logging
import secrets
from typing import Callable, Dict, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, Field, ValidationError

from reshard.errors import ProtocolViolation, ReshardError

logger = logging.getLogger(__name__)


class MalformedProgressMessage(ProtocolViolation):
    """The POST body is not a well-formed progress message."""


class ProgressInfo(BaseModel):
    kind: Literal["info"] = "info"
    message: str = ""
    processed: Optional[int] = None
    total: Optional[int] = None


class ProgressError(BaseModel):
    kind: Literal["error"] = "error"
    message: str = ""


class ProgressFinished(BaseModel):
    kind: Literal["finished"] = "finished"
    message: str = ""
    total: Optional[int] = None


ProgressMessage = Union[ProgressInfo, ProgressError, ProgressFinished]


class ProgressPayload(BaseModel):
    """Wire format of a progress POST"""
    message: str = ""
    error: bool = False
    finished: bool = False
    total_units: Optional[int] = Field(
        None, validation_alias=AliasChoices("total_units", "total_vnodes")
    )
    processed_units: Optional[int] = Field(
        None, validation_alias=AliasChoices("processed_units", "processed_vnodes")
    )

    def to_message(self) -> ProgressMessage:
        if self.error and self.finished:
            raise MalformedProgressMessage("progress message is both error and finished")

        if self.error:
            return ProgressError(message=self.message)

        if self.finished:
            return ProgressFinished(message=self.message, total=self.total_units)

        if (self.total_units is None) != (self.processed_units is None):
            raise MalformedProgressMessage(
                "progress message has only one of processed_units and total_units"
            )

        return ProgressInfo(
            message=self.message,
            processed=self.processed_units,
            total=self.total_units
        )


def decode_progress_message(body) -> ProgressMessage:
    """
    Decode a progress POST body.

    Raises:
        MalformedProgressMessage: If the body is not a well-formed progress message
    """
    if not isinstance(body, dict):
        raise MalformedProgressMessage("progress message must be a JSON object")

    try:
        payload = ProgressPayload.model_validate(body)
    except ValidationError as e:
        raise MalformedProgressMessage("malformed progress message", cause=e)

    return payload.to_message()


ProgressHandler = Callable[[ProgressMessage], None]


class ProgressEndpointNotFound(ReshardError):
    kind = "protocol_violation"


class ProgressEndpoint(BaseModel):
    token: str
    url: str


class ProgressChannelRegistry:
    """
    Maps endpoint tokens to the handler of the step that registered them.

    Handlers run synchronously on the event loop; a handler may raise
    ProtocolViolation to reject a message.
    """

    def __init__(self, base_url: str):
        self.base_url = base_url.rstrip("/")
        self._handlers: Dict[str, ProgressHandler] = {}

    def register(self, handler: ProgressHandler) -> ProgressEndpoint:
        token = secrets.token_urlsafe(16)
        while token in self._handlers:
            token = secrets.token_urlsafe(16)

        self._handlers[token] = handler
        endpoint = ProgressEndpoint(token=token, url=f"{self.base_url}/progress/{token}")
        logger.debug(f"Registered progress endpoint {endpoint.url}")
        return endpoint

    def unregister(self, endpoint: ProgressEndpoint) -> None:
        if self._handlers.pop(endpoint.token, None) is not None:
            logger.debug(f"Removed progress endpoint {endpoint.url}")

    def dispatch(self, token: str, body) -> None:
        """
        Deliver a raw POST body to the registered handler.

        Raises:
            ProgressEndpointNotFound: Unknown or torn-down endpoint
            MalformedProgressMessage: Malformed message
            ProtocolViolation: Rejected by the handler
        """
        handler = self._handlers.get(token)
        if handler is None:
            raise ProgressEndpointNotFound(f"no progress endpoint registered for {token}")

        message = decode_progress_message(body)
        handler(message)

    @property
    def active_count(self) -> int:
        return len(self._handlers)
