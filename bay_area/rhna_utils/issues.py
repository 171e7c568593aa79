"""
Error taxonomy for the RHNA comparison pipeline.

Load errors are fatal and raised. Resolution gaps and integrity violations are
recoverable: they are recorded in an IssueLog that travels with the result so
the report can decide whether to warn or proceed.
"""

import logging
from dataclasses import dataclass
from typing import List

import pandas as pd

logger = logging.getLogger(__name__)

RESOLUTION_GAP = "resolution_gap"
INTEGRITY_VIOLATION = "integrity_violation"


class LoadError(Exception):
    """Raised when a source file is missing or a required field fails to parse."""
    pass


@dataclass(frozen=True)
class Issue:
    kind: str
    jurisdiction: str
    message: str


class IssueLog:
    """Ordered collection of recoverable problems found during a run."""

    def __init__(self):
        self._issues: List[Issue] = []

    def gap(self, jurisdiction, message):
        self._add(Issue(RESOLUTION_GAP, jurisdiction, message))

    def violation(self, jurisdiction, message):
        self._add(Issue(INTEGRITY_VIOLATION, jurisdiction, message))

    def _add(self, issue):
        logger.warning(f"[{issue.kind}] {issue.jurisdiction}: {issue.message}")
        self._issues.append(issue)

    @property
    def gaps(self) -> List[Issue]:
        return [i for i in self._issues if i.kind == RESOLUTION_GAP]

    @property
    def violations(self) -> List[Issue]:
        return [i for i in self._issues if i.kind == INTEGRITY_VIOLATION]

    def jurisdictions(self, kind=None):
        """Names of jurisdictions with an issue, optionally of one kind, in first-seen order."""
        names = [i.jurisdiction for i in self._issues if kind is None or i.kind == kind]
        return list(dict.fromkeys(names))

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            [(i.kind, i.jurisdiction, i.message) for i in self._issues],
            columns=["kind", "jurisdiction", "message"],
        )

    def __len__(self):
        return len(self._issues)

    def __iter__(self):
        return iter(self._issues)
