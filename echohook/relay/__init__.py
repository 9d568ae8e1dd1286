from .helpers import RelayStreamingResponse, sse_headers
from .server import create_app
from .stream import RelayFeed, StreamRelay

__all__ = [
    "create_app",
    "StreamRelay",
    "RelayFeed",
    "RelayStreamingResponse",
    "sse_headers",
]
