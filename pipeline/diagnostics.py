"""Warning and error bookkeeping attached to analysis results."""

from __future__ import annotations

import re
from typing import Any, List, Optional

from core import ErrorMeta, WarningEntry


_TIMEOUT_MESSAGE = re.compile(r"timeout|aborted|timed out", re.IGNORECASE)


def add_warning(warnings: List[WarningEntry], warning_type: str, **data: Any) -> WarningEntry:
    """Append a typed warning; keys whose value is None are left out."""
    entry = WarningEntry(type=warning_type, **{k: v for k, v in data.items() if v is not None})
    warnings.append(entry)
    return entry


def is_timeout_message(message: Optional[str]) -> bool:
    return bool(_TIMEOUT_MESSAGE.search(str(message or "")))


def message_meta(
    message: str,
    code: Optional[str] = None,
    exc: Optional[BaseException] = None,
    name: Optional[str] = None,
) -> ErrorMeta:
    """Error metadata for failures that are reported, not raised.

    ``name`` is the caught exception's class name; it stays None when the
    failure never surfaced as an exception.
    """
    if exc is not None:
        name = type(exc).__name__
    return ErrorMeta(name=name, message=message, code=code)
