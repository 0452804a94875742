"""
Non-critical side effects.

Ancillary work (notifications, trial subscriptions) runs after the main
operation has committed. Its failure is logged and reported back to the
caller as a SideEffectResult; it never fails the main operation.
"""
import logging
from typing import Any, Callable, Optional

from pydantic import BaseModel

logger = logging.getLogger(__name__)


class SideEffectResult(BaseModel):
    name: str
    succeeded: bool
    value: Any = None
    error: Optional[str] = None


def run_non_critical(name: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> SideEffectResult:
    """Run ``fn(*args, **kwargs)``; a raised exception becomes a failed result."""
    try:
        value = fn(*args, **kwargs)
    except Exception as e:
        logger.warning(f"Non-critical side effect {name} failed: {e}", exc_info=True)
        return SideEffectResult(name=name, succeeded=False, error=str(e))
    return SideEffectResult(name=name, succeeded=True, value=value)
