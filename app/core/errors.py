"""
Load lifecycle error taxonomy.

LoadNotFoundError and InvalidTransitionError are local validation failures
and are never retried. PersistenceError wraps a failed transaction; retrying
the whole update is safe because current state is re-read on every attempt.
PublishError is raised by the event producer only and never escapes a
committed status update.
"""

from typing import Any, Dict, Optional


class LoadStatusError(Exception):
    """Base exception for load lifecycle errors."""

    def to_dict(self) -> Dict[str, Any]:
        return {"message": str(self)}


class LoadNotFoundError(LoadStatusError):
    """Raised when the requested load does not exist."""

    def __init__(self, load_id: str) -> None:
        self.load_id = load_id
        super().__init__(f"Load with ID {load_id} not found")

    def to_dict(self) -> Dict[str, Any]:
        return {"message": str(self), "load_id": self.load_id}


class InvalidTransitionError(LoadStatusError):
    """Raised when the requested status is not reachable from the current one."""

    def __init__(self, load_id: str, from_status: str, to_status: str) -> None:
        self.load_id = load_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"Invalid status transition from {from_status} to {to_status}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": str(self),
            "load_id": self.load_id,
            "from": self.from_status,
            "to": self.to_status,
        }


class PersistenceError(LoadStatusError):
    """Raised when the underlying transaction fails (conflict, connectivity, constraint)."""

    def __init__(self, message: str, load_id: Optional[str] = None) -> None:
        self.load_id = load_id
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {"message": str(self), "load_id": self.load_id}


class PublishError(LoadStatusError):
    """Raised when an event could not be delivered to the event bus."""

    def __init__(self, event_type: str, load_id: Optional[str] = None, reason: str = "") -> None:
        self.event_type = event_type
        self.load_id = load_id
        self.reason = reason
        message = f"Failed to publish {event_type} event"
        if load_id:
            message += f" for load {load_id}"
        if reason:
            message += f": {reason}"
        super().__init__(message)
