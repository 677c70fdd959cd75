"""
Task Decomposer

Turns a goal flagged by the Complexity Estimator into a dependency graph of
subtasks.

Strategy:
1. Heuristic decomposition (always computed, never fails)
   - "for each" / "go through": fetch step + parallel per-item steps
   - conjunctive "and" clauses: sequential chain, one step per clause
   - otherwise: sequential chunks of the iteration budget
2. Deep analysis through the reasoning service when one is configured and
   the heuristic is not confident. Any failure falls back to step 1.
3. Validation: unique ids, known dependencies, no cycles. A graph that fails
   validation is flattened (dependencies dropped) rather than rejected.

The decomposer never raises to its caller.
"""

import json
import logging
import math
import re
from collections import Counter
from dataclasses import replace
from typing import Optional, Dict, List, Tuple

from .complexity_estimator import explicit_number, normalize_goal
from .reasoning_client import ReasoningClient
from .task_model import (
    ComplexityEstimate,
    ComplexityTier,
    Confidence,
    Decomposition,
    ExecutionMode,
    SubTask,
)

logger = logging.getLogger("task_decomposer")

CHUNK_SIZE = 15
MAX_PARALLEL_ITEMS = 10
DEFAULT_ITEM_COUNT = 5
FETCH_ITERATIONS = 3

_FOR_EACH = re.compile(r"\b(for each|go through)\b")
_AND_SPLIT = re.compile(r"\band\b", re.IGNORECASE)
_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")

DEEP_ANALYSIS_PROMPT = """Analyze this task and break it into subtasks if it is complex.

Task: "{goal}"

Respond with a single JSON object and nothing else:
{{
  "complexity": "simple|moderate|complex|very_complex",
  "estimatedIterations": <number>,
  "requiresDecomposition": <true|false>,
  "reasoning": "<one sentence>",
  "subtasks": [
    {{
      "id": "<unique id>",
      "description": "<what to do>",
      "estimatedIterations": <number>,
      "dependencies": ["<ids of subtasks that must finish first>"],
      "priority": <1-10>,
      "canRunInParallel": <true|false>
    }}
  ]
}}"""


# -----------------------------------------------------------------------------
# Heuristics
# -----------------------------------------------------------------------------
def heuristic_decomposition(goal: str, estimate: ComplexityEstimate) -> Tuple[List[SubTask], Confidence, str]:
    """
    Pattern-based decomposition.

    Returns:
        (subtasks, confidence, source label)
    """
    text = normalize_goal(goal)
    total = max(estimate.recommended, 1)

    if _FOR_EACH.search(text):
        count = explicit_number(text) or DEFAULT_ITEM_COUNT
        per_item = math.ceil(total / count)
        subtasks = [SubTask(
            subtask_id="fetch_items",
            description=f"Fetch the list of items to process for: {goal}",
            estimated_iterations=FETCH_ITERATIONS,
            priority=10,
            mode=ExecutionMode.SEQUENTIAL,
        )]
        for i in range(1, min(count, MAX_PARALLEL_ITEMS) + 1):
            subtasks.append(SubTask(
                subtask_id=f"process_item_{i}",
                description=f"Process item {i} of {count} for: {goal}",
                estimated_iterations=per_item,
                dependencies=("fetch_items",),
                priority=5,
                mode=ExecutionMode.PARALLEL,
            ))
        return subtasks, Confidence.HIGH, "heuristic:for_each"

    clauses = [c.strip() for c in _AND_SPLIT.split(goal) if c.strip()]
    if len(clauses) >= 2:
        per_clause = max(math.ceil(total / len(clauses)), 3)
        subtasks = []
        for i, clause in enumerate(clauses):
            subtasks.append(SubTask(
                subtask_id=f"task_{i + 1}",
                description=clause,
                estimated_iterations=per_clause,
                dependencies=(f"task_{i}",) if i > 0 else (),
                priority=10 - i,
                mode=ExecutionMode.SEQUENTIAL,
            ))
        return subtasks, Confidence.MEDIUM, "heuristic:conjunction"

    chunks = max(math.ceil(total / CHUNK_SIZE), 1)
    subtasks = []
    remaining = total
    for i in range(1, chunks + 1):
        size = min(CHUNK_SIZE, remaining)
        remaining -= size
        subtasks.append(SubTask(
            subtask_id=f"chunk_{i}",
            description=f"{goal} (part {i} of {chunks})" if chunks > 1 else goal,
            estimated_iterations=size,
            dependencies=(f"chunk_{i - 1}",) if i > 1 else (),
            priority=chunks - i + 1,
            mode=ExecutionMode.SEQUENTIAL,
        ))
    return subtasks, Confidence.LOW, "heuristic:chunks"


# -----------------------------------------------------------------------------
# Validation
# -----------------------------------------------------------------------------
def find_cycle_members(subtasks: List[SubTask]) -> List[str]:
    """Ids that can never be scheduled (Kahn's algorithm leftovers)."""
    ids = {s.subtask_id for s in subtasks}
    pending = {s.subtask_id: {d for d in s.dependencies if d in ids} for s in subtasks}
    done = set()
    progressed = True
    while progressed:
        progressed = False
        for sid, deps in list(pending.items()):
            if deps <= done:
                done.add(sid)
                del pending[sid]
                progressed = True
    return sorted(pending)


def validate_graph(subtasks: List[SubTask]) -> Tuple[List[SubTask], List[str]]:
    """
    Check a subtask graph.

    Duplicate ids are renamed with a numeric suffix so ids are always unique.

    Returns:
        (subtasks with unique ids, list of validation errors)
    """
    errors: List[str] = []

    counts = Counter(s.subtask_id for s in subtasks)
    seen: Dict[str, int] = {}
    unique: List[SubTask] = []
    for s in subtasks:
        if counts[s.subtask_id] > 1:
            seen[s.subtask_id] = seen.get(s.subtask_id, 0) + 1
            if seen[s.subtask_id] > 1:
                new_id = f"{s.subtask_id}_{seen[s.subtask_id]}"
                errors.append(f"Duplicate subtask id '{s.subtask_id}' renamed to '{new_id}'")
                s = replace(s, subtask_id=new_id)
        unique.append(s)

    ids = {s.subtask_id for s in unique}
    for s in unique:
        for dep in s.dependencies:
            if dep not in ids:
                errors.append(f"Subtask '{s.subtask_id}' depends on unknown '{dep}'")
            elif dep == s.subtask_id:
                errors.append(f"Subtask '{s.subtask_id}' depends on itself")

    cyclic = find_cycle_members(unique)
    if cyclic:
        errors.append(f"Dependency cycle among: {', '.join(cyclic)}")

    return unique, errors


def flatten(subtasks: List[SubTask]) -> List[SubTask]:
    return [replace(s, dependencies=()) for s in subtasks]


# -----------------------------------------------------------------------------
# Deep Analysis Parsing
# -----------------------------------------------------------------------------
def parse_deep_analysis(text: str, fallback: ComplexityEstimate) -> Optional[Tuple[ComplexityEstimate, List[SubTask]]]:
    """
    Parse the reasoning service's JSON reply.

    Returns None when the reply is unusable.
    """
    match = _JSON_OBJECT.search(text or "")
    if not match:
        return None
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict):
        return None

    raw_subtasks = data.get("subtasks")
    if not isinstance(raw_subtasks, list) or not raw_subtasks:
        return None

    try:
        subtasks = [
            SubTask(
                subtask_id=str(item["id"]),
                description=str(item.get("description", "")),
                estimated_iterations=max(int(item.get("estimatedIterations", 5)), 1),
                dependencies=tuple(str(d) for d in item.get("dependencies") or []),
                priority=int(item.get("priority", 5)),
                mode=ExecutionMode.PARALLEL if item.get("canRunInParallel") else ExecutionMode.SEQUENTIAL,
            )
            for item in raw_subtasks
        ]
    except (KeyError, TypeError, ValueError, AttributeError):
        return None

    try:
        tier = ComplexityTier(data.get("complexity", fallback.tier.value))
    except ValueError:
        tier = fallback.tier
    try:
        recommended = max(int(data.get("estimatedIterations", fallback.recommended)), 1)
    except (TypeError, ValueError):
        recommended = fallback.recommended

    estimate = ComplexityEstimate(
        tier=tier,
        recommended=recommended,
        min_iterations=min(fallback.min_iterations, recommended),
        max_iterations=max(fallback.max_iterations, recommended),
        confidence=Confidence.MEDIUM,
        reasoning=str(data.get("reasoning") or fallback.reasoning),
        requires_decomposition=bool(data.get("requiresDecomposition", True)),
    )
    return estimate, subtasks


# -----------------------------------------------------------------------------
# Decomposer
# -----------------------------------------------------------------------------
class TaskDecomposer:
    """
    Builds subtask graphs.

    Args:
        reasoning_client: Optional client for deep analysis
    """

    def __init__(self, reasoning_client: Optional[ReasoningClient] = None):
        self.reasoning_client = reasoning_client

    async def decompose(self, goal: str, estimate: ComplexityEstimate) -> Decomposition:
        subtasks, confidence, source = heuristic_decomposition(goal, estimate)
        chosen_estimate = estimate

        if self.reasoning_client is not None and confidence != Confidence.HIGH:
            deep = await self._deep_analysis(goal, estimate)
            if deep is not None:
                chosen_estimate, subtasks = deep
                source = "deep_analysis"

        unique, errors = validate_graph(subtasks)
        if errors:
            for error in errors:
                logger.warning(f"Decomposition of '{goal[:60]}' ({source}): {error}")
            return Decomposition(chosen_estimate, tuple(flatten(unique)), source, flattened=True)

        logger.info(f"Decomposed '{goal[:60]}' into {len(unique)} subtasks ({source})")
        return Decomposition(chosen_estimate, tuple(unique), source)

    async def _deep_analysis(
        self, goal: str, estimate: ComplexityEstimate
    ) -> Optional[Tuple[ComplexityEstimate, List[SubTask]]]:
        prompt = DEEP_ANALYSIS_PROMPT.format(goal=goal)
        try:
            response = await self.reasoning_client.complete([{"role": "user", "content": prompt}])
        except Exception as e:
            logger.warning(f"Deep analysis failed, using heuristic: {type(e).__name__}: {e}")
            return None

        parsed = parse_deep_analysis(response.text, estimate)
        if parsed is None:
            logger.warning("Deep analysis reply was not usable JSON, using heuristic")
        return parsed
