from enum import Enum


class RunStatus(str, Enum):
    """
    Lifecycle of a provider-side run.
    Unknown strings map to UNKNOWN so a new provider status never hangs the poll loop.
    """
    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    RUNNING = "running"
    CANCELLING = "cancelling"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    REQUIRES_ACTION = "requires_action"
    INCOMPLETE = "incomplete"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: "str | RunStatus | None") -> "RunStatus":
        if isinstance(value, RunStatus):
            return value
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN

    def is_terminal(self) -> bool:
        return self in _TERMINAL


_TERMINAL = frozenset({
    RunStatus.COMPLETED,
    RunStatus.FAILED,
    RunStatus.CANCELLED,
    RunStatus.EXPIRED,
    RunStatus.REQUIRES_ACTION,
    RunStatus.INCOMPLETE,
    RunStatus.UNKNOWN,
})


def is_terminal(status: "str | RunStatus | None") -> bool:
    """True once polling a run with this status can stop."""
    return RunStatus.parse(status).is_terminal()
