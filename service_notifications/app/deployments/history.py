"""
Bounded history of deployment notices.
"""

import threading
import time
from collections import deque
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional, Union

DEFAULT_PROJECT = "react-app"


@dataclass(frozen=True)
class DeploymentEvent:
    """A single deployment reported by CI."""

    version: str
    timestamp: Union[int, float, str]
    project: str
    deployed_at: str

    @classmethod
    def create(cls, version: str, timestamp: Optional[Union[int, float, str]] = None,
               project: Optional[str] = None) -> "DeploymentEvent":
        return cls(
            version=version,
            timestamp=timestamp if timestamp is not None else int(time.time() * 1000),
            project=project or DEFAULT_PROJECT,
            deployed_at=datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class DeploymentHistory:
    """Keeps the most recent ``max_size`` deployments, oldest first."""

    def __init__(self, max_size: int = 10):
        self.max_size = max_size
        self._events: Deque[DeploymentEvent] = deque(maxlen=max_size)
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._events)

    def record(self, event: DeploymentEvent) -> DeploymentEvent:
        with self._lock:
            self._events.append(event)
        return event

    def recent(self, count: int = 5) -> List[DeploymentEvent]:
        """The last ``count`` deployments, oldest first."""
        with self._lock:
            events = list(self._events)
        return events[-count:] if count > 0 else []

    def latest(self) -> Optional[DeploymentEvent]:
        with self._lock:
            return self._events[-1] if self._events else None
