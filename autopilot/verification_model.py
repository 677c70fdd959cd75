"""
Outcome Verification - Data Models

Evidence types and statuses are a closed set. Every check produces exactly
one VerificationEvidence; a check that cannot run produces FAIL or SKIPPED
evidence instead of raising.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any, List


# -----------------------------------------------------------------------------
# Evidence Enums
# -----------------------------------------------------------------------------
class EvidenceType(str, Enum):
    FILE = "file"
    DEPLOYMENT = "deployment"
    BUILD = "build"
    TEST = "test"
    GIT = "git"


class EvidenceStatus(str, Enum):
    """
    PARTIAL counts half its weight.
    SKIPPED is left out of the confidence score entirely.
    """
    PASS = "pass"
    FAIL = "fail"
    PARTIAL = "partial"
    SKIPPED = "skipped"


# Build and deploy evidence is harder to fake than a file on disk
EVIDENCE_WEIGHTS: Dict[EvidenceType, float] = {
    EvidenceType.FILE: 1.0,
    EvidenceType.DEPLOYMENT: 1.5,
    EvidenceType.TEST: 1.2,
    EvidenceType.BUILD: 1.3,
    EvidenceType.GIT: 0.8,
}


# -----------------------------------------------------------------------------
# Evidence & Result
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class VerificationEvidence:
    evidence_type: EvidenceType
    status: EvidenceStatus
    details: str
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def weight(self) -> float:
        return EVIDENCE_WEIGHTS[self.evidence_type]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.evidence_type.value,
            "status": self.status.value,
            "details": self.details,
            "metadata": self.metadata,
        }


@dataclass(frozen=True)
class VerificationResult:
    task_id: str
    confidence: float
    verified: bool
    evidence: List[VerificationEvidence]
    suggestions: List[str]
    summary: str
    verified_at: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id,
            "confidence": round(self.confidence, 2),
            "verified": self.verified,
            "evidence": [e.to_dict() for e in self.evidence],
            "suggestions": list(self.suggestions),
            "summary": self.summary,
            "verified_at": self.verified_at.isoformat(),
        }


@dataclass
class VerificationContext:
    """What a completion claim says should now exist."""
    workspace_path: Optional[str] = None
    task_type: Optional[str] = None
    deployment_url: Optional[str] = None
    expected_files: Optional[List[str]] = None
    build_command: Optional[str] = None
    test_command: Optional[str] = None
    check_git: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "workspace_path": self.workspace_path,
            "task_type": self.task_type,
            "deployment_url": self.deployment_url,
            "expected_files": list(self.expected_files) if self.expected_files is not None else None,
            "build_command": self.build_command,
            "test_command": self.test_command,
            "check_git": self.check_git,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VerificationContext":
        return cls(
            workspace_path=data.get("workspace_path"),
            task_type=data.get("task_type"),
            deployment_url=data.get("deployment_url"),
            expected_files=data.get("expected_files"),
            build_command=data.get("build_command"),
            test_command=data.get("test_command"),
            check_git=bool(data.get("check_git", True)),
        )
