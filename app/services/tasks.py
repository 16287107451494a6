"""
Primitives shared by long-running batch jobs (forecast regeneration,
bulk optimisation, surge sweeps).
"""
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


class CancellationToken:
    """Thread-safe flag checked by batch loops between items."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass
class BatchResult:
    total: int = 0
    processed: int = 0
    failed: int = 0
    cancelled: bool = False
    errors: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "processed": self.processed,
            "failed": self.failed,
            "cancelled": self.cancelled,
            "errors": self.errors,
        }


def chunked(items: List[Any], size: int):
    size = max(int(size), 1)
    for start in range(0, len(items), size):
        yield items[start:start + size]


def is_cancelled(token: Optional[CancellationToken]) -> bool:
    return token is not None and token.cancelled
