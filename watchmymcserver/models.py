"""
Value types shared between the clock, the supervisor and the process runner.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class LogicalEvent(Enum):
    """Instruction flowing through the supervisor mailbox."""

    SERVER_ON = "server_on"
    SERVER_OFF = "server_off"
    STOP_WATCHING = "stop_watching"
    NIL = "nil"


class SupervisorState(Enum):
    IDLE = "idle"
    LAUNCHING = "launching"
    RUNNING = "running"
    STOPPING = "stopping"


@dataclass
class ProcessStats:
    """Resource usage of the managed server and its children."""

    pid: int
    cpu_percent: float = 0.0
    memory_mb: float = 0.0
    num_children: int = 0
    sampled_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        return {
            "pid": self.pid,
            "cpu_percent": round(self.cpu_percent, 1),
            "memory_mb": round(self.memory_mb, 1),
            "num_children": self.num_children,
            "sampled_at": self.sampled_at.isoformat(),
        }


@dataclass
class WorkerFailure:
    """An error the start worker reported instead of crashing."""

    error: str
    occurred_at: datetime = field(default_factory=datetime.now)
    exception: Optional[BaseException] = None
