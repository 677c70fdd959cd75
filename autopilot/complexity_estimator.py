"""
Complexity Estimator

Cheap, synchronous classification of a goal into a complexity tier and an
iteration budget.

Rule classes are evaluated in a fixed order and the first match wins:
1. Simple single-operation phrasing
2. Listing / retrieval without multi-step connectors
3. Create / update (budget scales with item count)
4. Analysis
5. Multi-step or looping work (requires decomposition)
6. Task-type hint table
7. Default

CONSTRAINTS:
- Pure function: no I/O, no randomness, same input = same estimate
- Never raises: unmatched input resolves to the default estimate
- Keywords match on word boundaries ("repositories" does not contain "and")
"""

import re
from typing import Dict, List, Optional, Pattern, Tuple

from .task_model import ComplexityEstimate, ComplexityTier, Confidence


# -----------------------------------------------------------------------------
# Rule Tables
# -----------------------------------------------------------------------------
SIMPLE_PATTERNS: List[Pattern] = [
    re.compile(r"^(get|show|display|list|find) (the |my )?[a-z]+$"),
    re.compile(r"^check [a-z]+ status$"),
    re.compile(r"^delete (this |that |the )?[a-z]+$"),
    re.compile(r"^stop [a-z]+$"),
    re.compile(r"^start [a-z]+$"),
]

LISTING_KEYWORDS = [
    "list", "show", "display", "get", "fetch", "view", "see", "find",
    "search", "retrieve", "pull", "tell me about", "information about",
    "details about", "what", "look at",
]

CREATE_KEYWORDS = [
    "create", "make", "add", "new", "update", "modify", "change", "edit",
    "rename", "move",
]

ANALYSIS_KEYWORDS = [
    "analyze", "review", "examine", "inspect", "summarize", "compare",
    "evaluate", "assess",
]

LOOP_INDICATORS = [
    "for each", "go through", "iterate", "all the", "every", "each of",
    "then", "after that", "next", "and also", "in addition",
]

# (recommended, min, max, confidence)
TASK_TYPE_BUDGETS: Dict[str, Tuple[int, int, int, Confidence]] = {
    "terminal": (5, 3, 8, Confidence.HIGH),
    "trello": (5, 3, 8, Confidence.HIGH),
    "api_call": (8, 5, 12, Confidence.HIGH),
    "analysis": (12, 8, 18, Confidence.MEDIUM),
    "coding": (20, 15, 30, Confidence.MEDIUM),
    "deployment": (15, 10, 25, Confidence.MEDIUM),
}

NUMBER_WORDS = {
    "one": 1, "two": 2, "three": 3, "four": 4, "five": 5, "six": 6,
    "seven": 7, "eight": 8, "nine": 9, "ten": 10, "eleven": 11,
    "twelve": 12, "thirteen": 13, "fourteen": 14, "fifteen": 15,
    "sixteen": 16, "seventeen": 17, "eighteen": 18, "nineteen": 19,
    "twenty": 20,
}

MAX_ITEM_COUNT = 20
DIRECT_EXECUTION_THRESHOLD = 15
BASE_ITERATION_LIMIT = 15
TIER_EXTRA_ITERATIONS = {
    ComplexityTier.SIMPLE: 0,
    ComplexityTier.MODERATE: 5,
    ComplexityTier.COMPLEX: 10,
    ComplexityTier.VERY_COMPLEX: 15,
}
VERY_COMPLEX_FROM = 24


# -----------------------------------------------------------------------------
# Matching Helpers
# -----------------------------------------------------------------------------
def _phrase_pattern(phrase: str) -> Pattern:
    return re.compile(r"\b" + re.escape(phrase) + r"\b")


_LISTING = [_phrase_pattern(k) for k in LISTING_KEYWORDS]
_CREATE = [_phrase_pattern(k) for k in CREATE_KEYWORDS]
_ANALYSIS = [_phrase_pattern(k) for k in ANALYSIS_KEYWORDS]
_LOOP = [_phrase_pattern(k) for k in LOOP_INDICATORS]
_CONNECTOR = re.compile(r"\b(and|then)\b")
_NUMBER = re.compile(r"\b(\d+)\b")
_NUMBER_WORD = re.compile(r"\b(" + "|".join(NUMBER_WORDS) + r")\b")


def _any_match(patterns: List[Pattern], text: str) -> bool:
    return any(p.search(text) for p in patterns)


def normalize_goal(goal: str) -> str:
    text = (goal or "").lower().strip()
    return re.sub(r"[.!?]+$", "", text).strip()


def connector_count(text: str) -> int:
    """Number of multi-step connectors ("and", "then") in normalized text."""
    return len(_CONNECTOR.findall(text))


def explicit_number(text: str) -> Optional[int]:
    """First number in the text, as digits or a word, capped at 20."""
    match = _NUMBER.search(text)
    if match:
        return max(1, min(int(match.group(1)), MAX_ITEM_COUNT))
    match = _NUMBER_WORD.search(text)
    if match:
        return NUMBER_WORDS[match.group(1)]
    return None


def extract_item_count(goal: str) -> int:
    """
    How many items a goal talks about.

    Explicit numbers win, then quantifiers.
    """
    text = normalize_goal(goal)

    number = explicit_number(text)
    if number is not None:
        return number

    if re.search(r"\b(all|every)\b", text):
        return 10
    if re.search(r"\b(few|couple)\b", text):
        return 3
    if re.search(r"\bseveral\b", text):
        return 5
    if re.search(r"\bmany\b", text):
        return 8
    return 1


# -----------------------------------------------------------------------------
# Estimation
# -----------------------------------------------------------------------------
def estimate_complexity(goal: str, task_type: Optional[str] = None) -> ComplexityEstimate:
    """
    Classify a goal.

    Args:
        goal: Natural-language goal text
        task_type: Optional hint (terminal, trello, api_call, analysis, coding, deployment)

    Returns:
        ComplexityEstimate from the first matching rule
    """
    text = normalize_goal(goal)
    tokens = text.split()
    connectors = connector_count(text)

    # 1. Simple
    if len(tokens) <= 3 or any(p.match(text) for p in SIMPLE_PATTERNS):
        return ComplexityEstimate(
            tier=ComplexityTier.SIMPLE,
            recommended=5,
            min_iterations=3,
            max_iterations=8,
            confidence=Confidence.HIGH,
            reasoning="Simple single-operation task",
        )

    # 2. Listing / retrieval
    if _any_match(_LISTING, text) and connectors == 0:
        return ComplexityEstimate(
            tier=ComplexityTier.SIMPLE,
            recommended=4,
            min_iterations=3,
            max_iterations=6,
            confidence=Confidence.HIGH,
            reasoning="List/display operation",
        )

    # 3. Create / update
    if _any_match(_CREATE, text):
        count = extract_item_count(text)
        return ComplexityEstimate(
            tier=ComplexityTier.MODERATE,
            recommended=min(8 + 2 * count, 15),
            min_iterations=6,
            max_iterations=15,
            confidence=Confidence.HIGH,
            reasoning=f"Create/update operation on {count} item(s)",
        )

    # 4. Analysis
    if _any_match(_ANALYSIS, text):
        return ComplexityEstimate(
            tier=ComplexityTier.MODERATE,
            recommended=12,
            min_iterations=8,
            max_iterations=18,
            confidence=Confidence.MEDIUM,
            reasoning="Analysis task requiring examination",
        )

    # 5. Multi-step / looping
    if connectors >= 2 or _any_match(_LOOP, text):
        count = extract_item_count(text)
        recommended = min(15 + 3 * count, 30)
        tier = ComplexityTier.VERY_COMPLEX if recommended >= VERY_COMPLEX_FROM else ComplexityTier.COMPLEX
        return ComplexityEstimate(
            tier=tier,
            recommended=recommended,
            min_iterations=12,
            max_iterations=30,
            confidence=Confidence.MEDIUM,
            reasoning=f"Multi-step task over {count} item(s)",
            requires_decomposition=True,
        )

    # 6. Task-type hint
    if task_type and task_type.lower() in TASK_TYPE_BUDGETS:
        recommended, low, high, confidence = TASK_TYPE_BUDGETS[task_type.lower()]
        return ComplexityEstimate(
            tier=ComplexityTier.SIMPLE if recommended <= 5 else ComplexityTier.MODERATE,
            recommended=recommended,
            min_iterations=low,
            max_iterations=high,
            confidence=confidence,
            reasoning=f"Based on task type: {task_type.lower()}",
        )

    # 7. Default
    return ComplexityEstimate(
        tier=ComplexityTier.MODERATE,
        recommended=8,
        min_iterations=5,
        max_iterations=12,
        confidence=Confidence.LOW,
        reasoning="Moderate complexity task (default)",
    )


def needs_decomposition(estimate: ComplexityEstimate) -> bool:
    """Whether a goal should go through the decomposer before execution."""
    if estimate.tier == ComplexityTier.SIMPLE:
        return False
    if estimate.requires_decomposition:
        return True
    return (
        estimate.recommended > DIRECT_EXECUTION_THRESHOLD
        and estimate.confidence in (Confidence.LOW, Confidence.MEDIUM)
    )


def iteration_limit(estimate: ComplexityEstimate) -> int:
    """Hard iteration ceiling for running a goal as a single loop."""
    limit = BASE_ITERATION_LIMIT + TIER_EXTRA_ITERATIONS[estimate.tier]
    return max(limit, estimate.max_iterations)
