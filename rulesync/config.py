"""
config.py - Refresh Engine Settings

Defaults follow the reference behaviour: 10 second connect and read
timeouts, one worker per item, and a liveness log line every 10 seconds
while waiting for workers to drain.
"""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Final

from rulesync import __version__

DEFAULT_CONNECT_TIMEOUT: Final[float] = 10.0
DEFAULT_READ_TIMEOUT: Final[float] = 10.0
DEFAULT_LIVENESS_INTERVAL: Final[float] = 10.0
DEFAULT_CHUNK_SIZE: Final[int] = 4096
DEFAULT_USER_AGENT: Final[str] = f"rulesync/{__version__}"


@dataclass(frozen=True)
class RefreshConfig:
    """
    Settings for one RefreshOrchestrator.

    Attributes:
        mirror_dir: Directory holding the local mirrors of network items
        connect_timeout: Seconds allowed for establishing a connection
        read_timeout: Seconds allowed between two reads of the response
        max_workers: Concurrent fetches, None for one worker per item
        liveness_interval: Seconds between "still waiting" log lines
        chunk_size: Bytes read from the response per write
        user_agent: User-Agent header sent with every request
    """
    mirror_dir: Path
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    read_timeout: float = DEFAULT_READ_TIMEOUT
    max_workers: int | None = None
    liveness_interval: float = DEFAULT_LIVENESS_INTERVAL
    chunk_size: int = DEFAULT_CHUNK_SIZE
    user_agent: str = DEFAULT_USER_AGENT

    def __post_init__(self) -> None:
        object.__setattr__(self, "mirror_dir", Path(self.mirror_dir))
        if self.max_workers is not None and self.max_workers < 1:
            raise ValueError("max_workers must be at least 1 or None")
