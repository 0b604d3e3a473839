from .client import ControllerClient
from .stream import ConnectionStream, LogStream, parse_frame, parse_log_line

__all__ = [
    "ControllerClient",
    "ConnectionStream",
    "LogStream",
    "parse_frame",
    "parse_log_line",
]
