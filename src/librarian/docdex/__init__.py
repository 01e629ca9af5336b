"""Index service client and the capability-aware gateway around it."""

from .client import (
    Capability,
    DocdexClient,
    DocdexError,
    DocdexResponseError,
    DocdexTransportError,
    HttpRequest,
    REQUIRED_CAPABILITIES,
)
from .gateway import Deadline, DocdexGateway, Outcome, detect_capabilities, is_backoff_error

__all__ = [
    "Capability",
    "Deadline",
    "DocdexClient",
    "DocdexError",
    "DocdexGateway",
    "DocdexResponseError",
    "DocdexTransportError",
    "HttpRequest",
    "Outcome",
    "REQUIRED_CAPABILITIES",
    "detect_capabilities",
    "is_backoff_error",
]
