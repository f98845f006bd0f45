"""
Run summary accumulator.

Each stage records what it attempted into a StageResult owned by the
RunSummary that is passed into it. The summary is produced for every
run, including aborted ones, and serializes to JSON for machines.

Invariants:
    - attempted == succeeded + failed for every stage
    - Skipped items are not attempts
    - A finished summary is never modified again
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .watcher import WaitOutcome


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class ItemFailure:
    """One failed item of a stage."""

    entity: str
    error: str
    version: Optional[str] = None
    attempts: int = 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity": self.entity,
            "version": self.version,
            "error": self.error,
            "attempts": self.attempts,
        }


@dataclass
class StageResult:
    """Counts and details for one stage.

    Attributes:
        name: Stage name
        attempted: Items the stage tried
        succeeded: Items that went through
        failed: Items that failed after all attempts
        skipped: Items not needing work (already promoted, nothing to delete)
        items: Successful items
        failures: Failed items with their errors
    """

    name: str
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    items: List[Dict[str, Any]] = field(default_factory=list)
    failures: List[ItemFailure] = field(default_factory=list)

    def record_success(
        self, entity: str, version: Optional[str] = None, attempts: int = 1
    ) -> None:
        self.attempted += 1
        self.succeeded += 1
        self.items.append({"entity": entity, "version": version, "attempts": attempts})

    def record_failure(
        self,
        entity: str,
        error: Exception | str,
        version: Optional[str] = None,
        attempts: int = 1,
    ) -> None:
        self.attempted += 1
        self.failed += 1
        self.failures.append(
            ItemFailure(entity=entity, error=str(error), version=version, attempts=attempts)
        )

    def record_skip(self) -> None:
        self.skipped += 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attempted": self.attempted,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "items": list(self.items),
            "failures": [f.to_dict() for f in self.failures],
        }


@dataclass
class RunSummary:
    """End-of-run report.

    Example:
        >>> summary = RunSummary()
        >>> summary.stage("publish-cv").record_success("OS-Base")
        >>> summary.finish()
        >>> print(summary.to_json())
    """

    started_at: str = field(default_factory=_now)
    finished_at: Optional[str] = None
    aborted: bool = False
    fatal_error: Optional[str] = None
    stages: Dict[str, StageResult] = field(default_factory=dict)
    waits: List[WaitOutcome] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    protected: List[Dict[str, str]] = field(default_factory=list)

    def stage(self, name: str) -> StageResult:
        """Result accumulator for a stage, created on first use."""
        if name not in self.stages:
            self.stages[name] = StageResult(name=name)
        return self.stages[name]

    def add_wait(self, outcome: WaitOutcome) -> None:
        self.waits.append(outcome)
        if not outcome.completed:
            self.warnings.append(
                f"Tasks '{outcome.label}' not confirmed finished after {outcome.polls} polls"
            )

    def warn(self, message: str) -> None:
        self.warnings.append(message)

    def abort(self, error: Exception | str) -> None:
        self.aborted = True
        self.fatal_error = str(error)

    def finish(self) -> RunSummary:
        self.finished_at = _now()
        return self

    def _total(self, *names: str) -> int:
        return sum(self.stages[n].succeeded for n in names if n in self.stages)

    @property
    def totals(self) -> Dict[str, int]:
        return {
            "published": self._total("publish-cv", "publish-ccv"),
            "promoted": self._total("promote"),
            "deleted": self._total("cleanup-ccv", "cleanup-cv"),
            "failed": sum(stage.failed for stage in self.stages.values()),
        }

    @property
    def has_failures(self) -> bool:
        return self.totals["failed"] > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "aborted": self.aborted,
            "fatal_error": self.fatal_error,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "stages": {name: stage.to_dict() for name, stage in self.stages.items()},
            "waits": [w.to_dict() for w in self.waits],
            "warnings": list(self.warnings),
            "protected": list(self.protected),
            "totals": self.totals,
        }

    def to_json(self, indent: Optional[int] = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent, sort_keys=True)
