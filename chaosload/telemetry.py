"""Optional Logfire integration for tracing test-flow phases."""
from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from typing import Any, Iterator, Optional

logger = logging.getLogger(__name__)

_logfire = None
_configured = False


def _load_logfire():
    global _logfire
    if _logfire is not None:
        return _logfire
    try:
        import logfire
    except ImportError:
        _logfire = False
        return _logfire
    _logfire = logfire
    return _logfire


def _env_truthy(value: Optional[str]) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def enabled() -> bool:
    # Off unless explicitly requested; load tests should not ship traces by accident.
    if not _env_truthy(os.getenv("CHAOSLOAD_LOGFIRE")):
        return False
    return bool(_load_logfire())


def configure() -> bool:
    logfire = _load_logfire()
    if not logfire or not enabled():
        return False
    global _configured
    if not _configured:
        try:
            logfire.configure(
                service_name="chaosload",
                console=None if _env_truthy(os.getenv("CHAOSLOAD_LOGFIRE_CONSOLE")) else False,
            )
        except Exception as exc:
            logger.warning("logfire configuration failed, tracing disabled: %s", exc)
            return False
        _configured = True
    return True


@contextmanager
def span(name: str, **attrs: Any) -> Iterator[None]:
    """Wrap a block in a Logfire span when tracing is enabled, else do nothing."""
    if not enabled() or not configure():
        yield
        return
    with _logfire.span(name, **attrs):
        yield
