from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Any

PASS = "PASS"
FAIL = "FAIL"
PENDING = "PENDING"

# Markers on PASS results that did not interact with the page
MARKER_UNRECOGNIZED = "UNRECOGNIZED"
MARKER_CONDITION_NOT_MET = "CONDITION_NOT_MET"

# Case terminal states
COMPLETED = "completed"
TIMED_OUT = "timed_out"
ABORTED = "aborted"


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class NetworkLogEntry:
    url: str
    method: str
    status: int
    timestamp: str
    elapsed_ms: int | None = None


@dataclass(frozen=True)
class StepResult:
    """Outcome of one executed step."""

    index: int
    description: str
    status: str
    started_at: str
    finished_at: str
    duration_ms: int
    action: str = "unknown"
    locator: str | None = None
    marker: str | None = None
    error: str | None = None
    screenshot: str | None = None
    network_logs: tuple[NetworkLogEntry, ...] = ()

    @property
    def log(self) -> str:
        return f"[EXEC] {self.description}"

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["network_logs"] = [asdict(e) for e in self.network_logs]
        data["log"] = self.log
        return data


@dataclass
class CaseResult:
    case: dict[str, Any]
    executed_steps: list[StepResult] = field(default_factory=list)
    terminal_state: str = COMPLETED
    error: str | None = None
    duration_ms: int = 0
    pending: bool = False

    @property
    def declared_steps(self) -> int:
        return len(self.case.get("steps") or [])

    @property
    def passed(self) -> int:
        return sum(1 for s in self.executed_steps if s.status == PASS)

    @property
    def failed(self) -> int:
        return sum(1 for s in self.executed_steps if s.status == FAIL)

    @property
    def status(self) -> str:
        if self.pending:
            return PENDING
        if self.failed == 0 and len(self.executed_steps) == self.declared_steps:
            return PASS
        return FAIL

    @property
    def summary(self) -> dict[str, int]:
        return {"passed": self.passed, "failed": self.failed, "total": len(self.executed_steps)}

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.case,
            "executed_steps": [s.to_dict() for s in self.executed_steps],
            "status": self.status,
            "terminal_state": None if self.pending else self.terminal_state,
            "summary": self.summary,
            "error": self.error,
            "duration_ms": self.duration_ms,
        }


@dataclass
class RunResult:
    run_id: str
    url: str
    config: dict[str, Any] = field(default_factory=dict)
    started_at: str = field(default_factory=now_iso)
    completed_at: str | None = None
    status: str = "RUNNING"
    error: str | None = None
    test_cases: list[CaseResult] = field(default_factory=list)
    duration_ms: int = 0

    @property
    def summary(self) -> dict[str, int]:
        return {
            "total": len(self.test_cases),
            "passed": sum(1 for c in self.test_cases if c.status == PASS),
            "failed": sum(1 for c in self.test_cases if c.status == FAIL),
            "pending": sum(1 for c in self.test_cases if c.status == PENDING),
            "duration_ms": self.duration_ms,
        }

    def to_dict(self) -> dict[str, Any]:
        data = {
            "run_id": self.run_id,
            "url": self.url,
            "config": self.config,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "status": self.status,
            "test_cases": [c.to_dict() for c in self.test_cases],
            "summary": self.summary,
        }
        if self.error is not None:
            data["error"] = self.error
        return data
