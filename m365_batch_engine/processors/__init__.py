from .base import AsyncBaseProcessor, BaseProcessor
from .echo import EchoProcessor
from .http_probe import AsyncHttpProbeProcessor, HttpProbeProcessor, ProbeError

ALL_PROCESSORS = [
    EchoProcessor,
    HttpProbeProcessor,
    AsyncHttpProbeProcessor,
]

PROCESSORS = {cls.name: cls for cls in ALL_PROCESSORS}

__all__ = [
    "BaseProcessor",
    "AsyncBaseProcessor",
    "EchoProcessor",
    "HttpProbeProcessor",
    "AsyncHttpProbeProcessor",
    "ProbeError",
    "ALL_PROCESSORS",
    "PROCESSORS",
]
