from .client import TriggerClient
from .runner import TriggerRunner

__all__ = [
    "TriggerClient",
    "TriggerRunner",
]
