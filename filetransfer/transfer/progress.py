"""
Transfer Progress Tracking

Each sender/receiver owns one TransferState and is the only writer.
Pollers (CLI progress bar, REST API) read it from other tasks, or take
a `snapshot()` to hand the values somewhere else.
"""

import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, Optional

# total_bytes before the receiver has parsed the header
UNKNOWN_SIZE = -1


class TransferDirection(Enum):
    """Which side of the transfer this endpoint is."""
    SENT = 'sent'
    RECEIVED = 'received'


class TransferPhase(Enum):
    """Lifecycle of a single transfer."""
    PENDING = 'pending'
    LISTENING = 'listening'
    CONNECTING = 'connecting'
    TRANSFERRING = 'transferring'
    COMPLETED = 'completed'
    FAILED = 'failed'
    ABORTED = 'aborted'

    @property
    def is_terminal(self) -> bool:
        return self in (TransferPhase.COMPLETED, TransferPhase.FAILED,
                        TransferPhase.ABORTED)


@dataclass
class TransferState:
    """Byte counters and status of one transfer."""
    direction: TransferDirection
    total_bytes: int = UNKNOWN_SIZE
    transferred_bytes: int = 0
    filename: str = ''
    phase: TransferPhase = TransferPhase.PENDING
    peer_host: Optional[str] = None
    peer_port: Optional[int] = None
    error: Optional[str] = None
    started_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None

    @property
    def active(self) -> bool:
        """True while bytes are still expected."""
        return self.transferred_bytes < self.total_bytes

    @property
    def progress(self) -> float:
        """Progress as 0.0 to 1.0; a total of zero or less counts as done."""
        if self.total_bytes <= 0:
            return 1.0
        return self.transferred_bytes / self.total_bytes

    @property
    def progress_percent(self) -> float:
        """Progress as percentage."""
        return self.progress * 100

    @property
    def elapsed_seconds(self) -> float:
        """Time since start, frozen once the transfer has finished."""
        end = self.finished_at if self.finished_at is not None else time.time()
        return end - self.started_at

    @property
    def speed_bytes_per_sec(self) -> float:
        elapsed = self.elapsed_seconds
        if elapsed <= 0:
            return 0
        return self.transferred_bytes / elapsed

    def add_bytes(self, count: int):
        """Count bytes that have fully reached the transport or the file."""
        if count < 0:
            raise ValueError(f"Byte count must be non-negative, got {count}")
        self.transferred_bytes += count

    def finish(self, phase: TransferPhase, error: Optional[str] = None):
        """Move to a terminal phase."""
        self.phase = phase
        self.error = error
        self.finished_at = time.time()

    def snapshot(self) -> 'TransferState':
        """Independent copy for readers outside the transfer task."""
        return replace(self)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            'direction': self.direction.value,
            'filename': self.filename,
            'total_bytes': self.total_bytes,
            'transferred_bytes': self.transferred_bytes,
            'progress': self.progress,
            'progress_percent': self.progress_percent,
            'active': self.active,
            'phase': self.phase.value,
            'peer_host': self.peer_host,
            'peer_port': self.peer_port,
            'error': self.error,
            'elapsed_seconds': self.elapsed_seconds,
            'speed_bytes_per_sec': self.speed_bytes_per_sec,
        }


# Progress callback type, called with a snapshot
ProgressCallback = Callable[[TransferState], None]
