"""Check sink and severity policy."""

from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence

from .models import CheckStatus, ConformanceCheck, SpecReference

# Statuses that count as a failure when reconciling against a baseline.
BASELINE_FAILING = frozenset({CheckStatus.FAILURE, CheckStatus.WARNING})

SCENARIO_ERROR_ID = "scenario-error"


class CheckSink:
    """Append-only list of checks owned by one scenario run."""

    def __init__(self):
        self._checks: List[ConformanceCheck] = []

    def append(self, check: ConformanceCheck) -> ConformanceCheck:
        self._checks.append(check)
        return check

    def add(
        self,
        check_id: str,
        name: str,
        description: str,
        status: CheckStatus,
        error_message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        spec_references: Optional[Sequence[SpecReference]] = None,
    ) -> ConformanceCheck:
        """Build a check and append it.

        Args:
            check_id: Stable assertion identifier
            name: Human-readable name
            description: What was verified
            status: Outcome
            error_message: Reason for a non-success outcome
            details: Structured evidence
            spec_references: Normative citations

        Returns:
            The appended check
        """
        check = ConformanceCheck(
            id=check_id,
            name=name,
            description=description,
            status=status,
            error_message=error_message,
            details=details,
            spec_references=list(spec_references) if spec_references else None,
        )
        return self.append(check)

    def has(self, check_id: str) -> bool:
        return any(c.id == check_id for c in self._checks)

    def find(self, check_id: str) -> Optional[ConformanceCheck]:
        for check in self._checks:
            if check.id == check_id:
                return check
        return None

    def ensure(
        self,
        check_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
        spec_references: Optional[Sequence[SpecReference]] = None,
    ) -> None:
        """Append a FAILURE for ``check_id`` unless one was already recorded."""
        if self.has(check_id):
            return
        self.add(
            check_id,
            name or f"Expected Check Missing: {check_id}",
            description or f"Expected Check Missing: {check_id}",
            CheckStatus.FAILURE,
            spec_references=spec_references,
        )

    def record_exception(self, error: BaseException) -> ConformanceCheck:
        """Convert an exception from the driven interaction into a terminal FAILURE."""
        return self.add(
            SCENARIO_ERROR_ID,
            "Scenario Error",
            "Scenario interaction raised an exception",
            CheckStatus.FAILURE,
            error_message=f"{type(error).__name__}: {error}",
        )

    @property
    def checks(self) -> List[ConformanceCheck]:
        return list(self._checks)

    def __iter__(self) -> Iterator[ConformanceCheck]:
        return iter(list(self._checks))

    def __len__(self) -> int:
        return len(self._checks)


def has_baseline_failure(checks: Iterable[ConformanceCheck]) -> bool:
    """A scenario has a failure for baseline purposes if any check is FAILURE or WARNING."""
    return any(c.status in BASELINE_FAILING for c in checks)


def has_failures(checks: Iterable[ConformanceCheck], strict: bool = False) -> bool:
    """Failure test for the plain exit code.

    Only FAILURE counts by default; ``strict`` also counts WARNING.
    """
    if strict:
        return has_baseline_failure(checks)
    return any(c.status == CheckStatus.FAILURE for c in checks)


def count_statuses(checks: Iterable[ConformanceCheck]) -> Dict[str, int]:
    """Count checks per status."""
    counts = {status.value: 0 for status in CheckStatus}
    for check in checks:
        counts[check.status.value] += 1
    return counts
