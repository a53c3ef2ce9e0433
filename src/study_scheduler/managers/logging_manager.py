"""
# Logging Manager

Thin layer over the standard `logging` module that gives every component a
**prefixed logger**. Services create one logger at import time:

```python
from study_scheduler.managers.logging_manager import get_logger

logger = get_logger(prefix="[SRSScheduling]")
logger.info("Scheduled %d reminders for session %s", 3, "sess_123")
# -> 2025-01-01 10:00:00 INFO study_scheduler [SRSScheduling] Scheduled 3 reminders ...
```

The root `study_scheduler` logger is configured once (handler, format, level from
`settings.LOG_LEVEL`); applications embedding the engine may attach their own handlers
instead, in which case `configure_logging` is never called.
"""

import logging
from typing import Any, MutableMapping, Optional, Tuple

from study_scheduler.config import settings

ROOT_LOGGER_NAME = "study_scheduler"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

_configured = False


class PrefixAdapter(logging.LoggerAdapter):
    """Prepends a fixed component prefix (e.g. `[DATABASE]`) to every message."""

    def __init__(self, logger: logging.Logger, prefix: str = ""):
        super().__init__(logger, {"prefix": prefix})
        self.prefix = prefix

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        if self.prefix:
            return f"{self.prefix} {msg}", kwargs
        return msg, kwargs


def configure_logging(level: Optional[str] = None) -> None:
    """Attach a stream handler to the package root logger. Safe to call more than once."""
    global _configured
    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel((level or settings.LOG_LEVEL).upper())
    if _configured:
        return
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
    _configured = True


def get_logger(name: str = ROOT_LOGGER_NAME, prefix: str = "") -> PrefixAdapter:
    """
    Return a logger adapter for the given name with an optional message prefix.

    Args:
        name: Logger name; defaults to the package root so all output shares one hierarchy.
        prefix: Component tag prepended to each message, e.g. `"[DependencyGraph]"`.
    """
    return PrefixAdapter(logging.getLogger(name), prefix)
