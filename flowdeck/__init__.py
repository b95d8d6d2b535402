"""flowdeck: typed client for the workflow monitoring dashboard API."""

from .client import DashboardClient
from .config import FlowdeckConfig, load_config
from .errors import ApiError, FlowdeckError, StreamDisconnected
from .gateway import ApiGateway, api_fetch
from .state import NO_RESULT, CallResult, CallStatus, OperationState, run_call
from .stream import EventStream, EventStreamHandle, StreamState, decode_event

__version__ = "0.1.0"
__all__ = [
    "ApiError",
    "ApiGateway",
    "CallResult",
    "CallStatus",
    "DashboardClient",
    "EventStream",
    "EventStreamHandle",
    "FlowdeckConfig",
    "FlowdeckError",
    "NO_RESULT",
    "OperationState",
    "StreamDisconnected",
    "StreamState",
    "api_fetch",
    "decode_event",
    "load_config",
    "run_call",
]
