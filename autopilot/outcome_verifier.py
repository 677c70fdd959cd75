"""
Outcome Verifier

Checks independent, falsifiable evidence that a claimed completion actually
happened, and scores it.

Checks (each runs only when the context makes it applicable):
- FILE: every expected path exists in the workspace
- DEPLOYMENT: HTTP GET of the deployment URL answers 2xx/3xx
- BUILD: build command output has no error markers
- TEST: test command output reports pass/fail counts
- GIT: the workspace is a repository with commits

CONSTRAINTS:
- verify() never raises; a check that errors becomes FAIL evidence
- One check failing never stops the others
- PARTIAL counts half its weight, SKIPPED is excluded from the score
- Every FAIL produces exactly one remediation suggestion
"""

import asyncio
import json
import logging
import os
import re
from pathlib import Path
from typing import Optional, Dict, List, Any

from .probes import CommandResult, http_probe, run_command
from .verification_model import (
    EvidenceStatus,
    EvidenceType,
    VerificationContext,
    VerificationEvidence,
    VerificationResult,
)

logger = logging.getLogger("outcome_verifier")

DEFAULT_THRESHOLD = 0.7

EXPECTED_FILES: Dict[str, List[str]] = {
    "website": ["package.json", "index.html"],
    "nextjs": ["package.json", "next.config.js", "app/page.tsx"],
    "react": ["package.json", "src/App.tsx", "src/index.tsx"],
    "api": ["package.json", "src/index.ts"],
    "node": ["package.json", "src/index.js"],
    "python": ["requirements.txt", "main.py"],
    "default": ["package.json", "README.md"],
}

_BUILD_ERROR = re.compile(r"error|failed|ERR!", re.IGNORECASE)
_ZERO_ERRORS = re.compile(r"\b0 errors\b", re.IGNORECASE)
_TESTS_PASSED = re.compile(r"(\d+)\s*(passing|passed|tests?\s+passed)", re.IGNORECASE)
_TESTS_FAILED = re.compile(r"(\d+)\s*(failing|failed|tests?\s+failed)", re.IGNORECASE)
_DEPLOYMENT_URLS = [
    re.compile(r"https?://[a-zA-Z0-9-]+\.vercel\.app/?", re.IGNORECASE),
    re.compile(r"https?://[a-zA-Z0-9-]+\.netlify\.app/?", re.IGNORECASE),
    re.compile(r"https?://[a-zA-Z0-9-]+\.herokuapp\.com/?", re.IGNORECASE),
    re.compile(r"https?://[a-zA-Z0-9-]+\.railway\.app/?", re.IGNORECASE),
    re.compile(r"deployed\s+(?:to|at)\s+(https?://\S+)", re.IGNORECASE),
]

SUGGESTIONS = {
    EvidenceType.DEPLOYMENT: "Check deployment logs and ensure the site is deployed correctly",
    EvidenceType.TEST: "Fix failing tests before marking task complete",
    EvidenceType.BUILD: "Fix build errors and ensure project compiles",
    EvidenceType.GIT: "Initialize git and commit changes",
}


def expected_files_for(task_type: Optional[str]) -> List[str]:
    """Default expected files for a task type (exact, then partial match)."""
    if not task_type:
        return EXPECTED_FILES["default"]
    key = task_type.lower()
    if key in EXPECTED_FILES:
        return EXPECTED_FILES[key]
    for name, files in EXPECTED_FILES.items():
        if name in key or key in name:
            return files
    return EXPECTED_FILES["default"]


def extract_deployment_url(text: str) -> Optional[str]:
    """First deployment URL mentioned in free text."""
    for pattern in _DEPLOYMENT_URLS:
        match = pattern.search(text or "")
        if match:
            return match.group(1) if match.groups() else match.group(0)
    return None


def calculate_confidence(evidence: List[VerificationEvidence]) -> float:
    """
    Weighted pass fraction.

    PASS scores its full weight, PARTIAL half, FAIL nothing; SKIPPED is left
    out of numerator and denominator. No scored evidence means 0.0.
    """
    total = 0.0
    earned = 0.0
    for item in evidence:
        if item.status == EvidenceStatus.SKIPPED:
            continue
        total += item.weight
        if item.status == EvidenceStatus.PASS:
            earned += item.weight
        elif item.status == EvidenceStatus.PARTIAL:
            earned += item.weight * 0.5
    if total == 0:
        return 0.0
    return earned / total


def suggestions_for(evidence: List[VerificationEvidence]) -> List[str]:
    suggestions = []
    for item in evidence:
        if item.status != EvidenceStatus.FAIL:
            continue
        if item.evidence_type == EvidenceType.FILE:
            suggestions.append(f"Create missing file: {item.metadata.get('path', item.details)}")
        else:
            suggestions.append(SUGGESTIONS[item.evidence_type])
    return suggestions


class OutcomeVerifier:
    """
    Evidence-based completion verification.

    Args:
        threshold: Minimum confidence for verified=True
        probe_timeout: HTTP probe timeout in seconds
        command_timeout: Build/test/git command timeout in seconds
        results_file: Optional JSONL log of verification results
    """

    def __init__(
        self,
        threshold: float = DEFAULT_THRESHOLD,
        probe_timeout: float = 10.0,
        command_timeout: float = 120.0,
        results_file: Optional[Path] = None,
    ):
        self.threshold = threshold
        self.probe_timeout = probe_timeout
        self.command_timeout = command_timeout
        self.results_file = results_file

    async def verify(self, task_id: str, context: VerificationContext) -> VerificationResult:
        logger.info(f"Verifying task completion for {task_id}")
        evidence: List[VerificationEvidence] = []
        workspace = context.workspace_path

        if workspace:
            files = context.expected_files if context.expected_files is not None else expected_files_for(context.task_type)
            evidence.extend(self._guarded_files(workspace, files))

        checks = []
        if context.deployment_url:
            checks.append((EvidenceType.DEPLOYMENT, self.check_deployment(context.deployment_url)))
        if workspace and context.build_command:
            checks.append((EvidenceType.BUILD, self.check_build(workspace, context.build_command)))
        if workspace and context.test_command:
            checks.append((EvidenceType.TEST, self.check_tests(workspace, context.test_command)))
        if workspace and context.check_git:
            checks.append((EvidenceType.GIT, self.check_git(workspace)))

        outcomes = await asyncio.gather(*(c for _, c in checks), return_exceptions=True)
        for (evidence_type, _), outcome in zip(checks, outcomes):
            if isinstance(outcome, Exception):
                logger.warning(f"{evidence_type.value} check errored for {task_id}: {outcome}")
                outcome = VerificationEvidence(evidence_type, EvidenceStatus.FAIL, f"Check error: {outcome}")
            evidence.append(outcome)

        result = self._result(task_id, evidence)
        self._record(result)
        logger.info(f"Verification complete for {task_id}: {result.summary}")
        return result

    async def quick_verify(self, task_id: str, context: VerificationContext) -> VerificationResult:
        """Files and deployment only; no commands are run."""
        evidence: List[VerificationEvidence] = []
        if context.workspace_path:
            files = context.expected_files if context.expected_files is not None else expected_files_for(context.task_type)
            evidence.extend(self._guarded_files(context.workspace_path, files))
        if context.deployment_url:
            try:
                evidence.append(await self.check_deployment(context.deployment_url))
            except Exception as e:
                evidence.append(VerificationEvidence(EvidenceType.DEPLOYMENT, EvidenceStatus.FAIL, f"Check error: {e}"))
        return self._result(task_id, evidence)

    # -------------------------------------------------------------------------
    # Checks
    # -------------------------------------------------------------------------

    def check_files(self, workspace: str, files: List[str]) -> List[VerificationEvidence]:
        evidence = []
        for relative in files:
            path = Path(workspace) / relative
            if path.exists():
                evidence.append(VerificationEvidence(
                    EvidenceType.FILE, EvidenceStatus.PASS, f"File exists: {relative}",
                    {"path": relative, "size": path.stat().st_size if path.is_file() else None},
                ))
            else:
                evidence.append(VerificationEvidence(
                    EvidenceType.FILE, EvidenceStatus.FAIL, f"File missing: {relative}", {"path": relative},
                ))
        return evidence

    async def check_deployment(self, url: str) -> VerificationEvidence:
        probe = await http_probe(url, timeout=self.probe_timeout)
        if probe.reachable:
            return VerificationEvidence(
                EvidenceType.DEPLOYMENT, EvidenceStatus.PASS,
                f"Deployment is live (HTTP {probe.status_code})", {"url": url, "status_code": probe.status_code},
            )
        detail = f"HTTP {probe.status_code}" if probe.status_code is not None else probe.error
        return VerificationEvidence(
            EvidenceType.DEPLOYMENT, EvidenceStatus.FAIL,
            f"Deployment not reachable ({detail})", {"url": url, "status_code": probe.status_code},
        )

    async def check_build(self, workspace: str, command: str) -> VerificationEvidence:
        result = await run_command(command, cwd=workspace, timeout=self.command_timeout)
        if result.error:
            return self._command_failure(EvidenceType.BUILD, result)

        output = result.combined_output
        has_errors = bool(_BUILD_ERROR.search(output)) and not _ZERO_ERRORS.search(output)
        if has_errors or result.exit_code != 0:
            return VerificationEvidence(
                EvidenceType.BUILD, EvidenceStatus.FAIL, "Build reported errors",
                {"exit_code": result.exit_code, "output_tail": output[-500:]},
            )
        return VerificationEvidence(
            EvidenceType.BUILD, EvidenceStatus.PASS, "Build succeeded", {"exit_code": result.exit_code},
        )

    async def check_tests(self, workspace: str, command: str) -> VerificationEvidence:
        result = await run_command(command, cwd=workspace, timeout=self.command_timeout)
        if result.error:
            return self._command_failure(EvidenceType.TEST, result)

        output = result.combined_output
        passed_match = _TESTS_PASSED.search(output)
        failed_match = _TESTS_FAILED.search(output)
        if not passed_match and not failed_match:
            return VerificationEvidence(
                EvidenceType.TEST, EvidenceStatus.SKIPPED, "Could not parse test results",
                {"exit_code": result.exit_code},
            )

        passed = int(passed_match.group(1)) if passed_match else 0
        failed = int(failed_match.group(1)) if failed_match else 0
        metadata = {"passed": passed, "failed": failed, "exit_code": result.exit_code}
        if failed > 0:
            return VerificationEvidence(EvidenceType.TEST, EvidenceStatus.FAIL, f"{failed} test(s) failing", metadata)
        return VerificationEvidence(EvidenceType.TEST, EvidenceStatus.PASS, f"{passed} test(s) passing", metadata)

    async def check_git(self, workspace: str) -> VerificationEvidence:
        result = await run_command("git log --oneline -n 5", cwd=workspace, timeout=self.command_timeout)
        if result.error:
            return self._command_failure(EvidenceType.GIT, result)

        output = result.combined_output
        if result.exit_code != 0:
            if "not a git repository" in output.lower():
                return VerificationEvidence(EvidenceType.GIT, EvidenceStatus.FAIL, "Not a git repository")
            if "does not have any commits" in output.lower():
                return VerificationEvidence(EvidenceType.GIT, EvidenceStatus.PARTIAL, "Git repository has no commits yet", {"commits": 0})
            return VerificationEvidence(EvidenceType.GIT, EvidenceStatus.FAIL, f"git log failed: {output[:200]}")

        commits = [line for line in result.stdout.splitlines() if line.strip()]
        if not commits:
            return VerificationEvidence(EvidenceType.GIT, EvidenceStatus.PARTIAL, "Git repository has no commits yet", {"commits": 0})
        return VerificationEvidence(
            EvidenceType.GIT, EvidenceStatus.PASS, f"{len(commits)} recent commit(s)",
            {"commits": len(commits), "latest": commits[0]},
        )

    # -------------------------------------------------------------------------
    # Internal Helpers
    # -------------------------------------------------------------------------

    def _guarded_files(self, workspace: str, files: List[str]) -> List[VerificationEvidence]:
        try:
            return self.check_files(workspace, files)
        except OSError as e:
            return [VerificationEvidence(EvidenceType.FILE, EvidenceStatus.FAIL, f"Check error: {e}")]

    @staticmethod
    def _command_failure(evidence_type: EvidenceType, result: CommandResult) -> VerificationEvidence:
        return VerificationEvidence(
            evidence_type, EvidenceStatus.FAIL, f"Command did not complete: {result.error}",
            {"command": result.command, "timed_out": result.timed_out},
        )

    def _result(self, task_id: str, evidence: List[VerificationEvidence]) -> VerificationResult:
        confidence = calculate_confidence(evidence)
        verified = confidence >= self.threshold
        pass_count = sum(1 for e in evidence if e.status == EvidenceStatus.PASS)
        fail_count = sum(1 for e in evidence if e.status == EvidenceStatus.FAIL)
        if verified:
            summary = f"Verification passed ({confidence * 100:.0f}% confidence, {pass_count}/{len(evidence)} checks passed)"
        else:
            summary = f"Verification failed ({confidence * 100:.0f}% confidence, {fail_count}/{len(evidence)} checks failed)"
        return VerificationResult(
            task_id=task_id,
            confidence=confidence,
            verified=verified,
            evidence=evidence,
            suggestions=suggestions_for(evidence),
            summary=summary,
        )

    def _record(self, result: VerificationResult) -> None:
        if self.results_file is None:
            return
        try:
            self.results_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self.results_file, 'a') as f:
                f.write(json.dumps(result.to_dict()) + '\n')
                f.flush()
                os.fsync(f.fileno())
        except OSError as e:
            logger.error(f"Failed to record verification for {result.task_id}: {e}")
