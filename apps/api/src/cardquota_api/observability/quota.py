"""In-process counters for quota ledger mutations and refresh sweeps."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Dict


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class QuotaSnapshot:
    """Serializable snapshot of quota activity since process start."""

    totals: Dict[str, int]
    sweeper_failures: Dict[str, int]
    last_sweep_at: datetime | None
    last_sweep_refreshed: int
    last_error_at: datetime | None
    last_error: str | None

    def as_dict(self) -> Dict[str, object]:
        return {
            "totals": self.totals,
            "sweeper_failures": self.sweeper_failures,
            "last_sweep_at": self.last_sweep_at.isoformat() if self.last_sweep_at else None,
            "last_sweep_refreshed": self.last_sweep_refreshed,
            "last_error_at": self.last_error_at.isoformat() if self.last_error_at else None,
            "last_error": self.last_error,
        }


@dataclass
class _QuotaState:
    applied: int = 0
    rolled_back: int = 0
    manual_adjustments: int = 0
    sweeps: int = 0
    refreshed: int = 0
    sweeper_failures: Dict[str, int] = field(default_factory=dict)
    last_sweep_at: datetime | None = None
    last_sweep_refreshed: int = 0
    last_error_at: datetime | None = None
    last_error: str | None = None


class QuotaObservabilityStore:
    """Tracks ledger adjustments and sweeper outcomes."""

    def __init__(self) -> None:
        self._lock: Lock = Lock()
        self._state = _QuotaState()

    def reset(self) -> None:
        with self._lock:
            self._state = _QuotaState()

    def record_applied(self, count: int) -> None:
        with self._lock:
            self._state.applied += count

    def record_rolled_back(self, count: int) -> None:
        with self._lock:
            self._state.rolled_back += count

    def record_manual_adjustment(self) -> None:
        with self._lock:
            self._state.manual_adjustments += 1

    def record_sweep(self, *, refreshed: int) -> None:
        with self._lock:
            self._state.sweeps += 1
            self._state.refreshed += refreshed
            self._state.last_sweep_at = _utcnow()
            self._state.last_sweep_refreshed = refreshed

    def record_sweep_failure(self, error_kind: str, error: str) -> None:
        with self._lock:
            failures = self._state.sweeper_failures
            failures[error_kind] = failures.get(error_kind, 0) + 1
            self._state.last_error = error
            self._state.last_error_at = _utcnow()

    def snapshot(self) -> QuotaSnapshot:
        with self._lock:
            state = self._state
            return QuotaSnapshot(
                totals={
                    "applied": state.applied,
                    "rolled_back": state.rolled_back,
                    "manual_adjustments": state.manual_adjustments,
                    "sweeps": state.sweeps,
                    "refreshed": state.refreshed,
                },
                sweeper_failures=dict(state.sweeper_failures),
                last_sweep_at=state.last_sweep_at,
                last_sweep_refreshed=state.last_sweep_refreshed,
                last_error_at=state.last_error_at,
                last_error=state.last_error,
            )


_QUOTA_STORE = QuotaObservabilityStore()


def get_quota_store() -> QuotaObservabilityStore:
    return _QUOTA_STORE


__all__ = ["QuotaObservabilityStore", "QuotaSnapshot", "get_quota_store"]
