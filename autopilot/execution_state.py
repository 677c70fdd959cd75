"""
Execution State Machine

Pure transition function for the execution loop:

    transition(state, event) -> (next_state, effects)

No I/O happens here. The effect runner in execution_loop.py performs the
effects and feeds the resulting events back in.

States:
    START -> READY -> AWAITING_RESPONSE -> EXECUTING_TOOLS -> READY ...
                                        -> COMPLETED
                                        -> FAILED

READY is the iteration boundary. The runner either stops there or reports
RequestSent, and only a sent request counts as an iteration.

CONSTRAINTS:
- The iteration budget is a hard ceiling. Reaching it is a reported failure.
- Tool results are appended to the transcript before the next request.
- An event that does not fit the current state fails the loop; it never raises.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional, Dict, List, Any, Tuple, Union

from .reasoning_client import ReasoningResponse, StopReason, ToolUseRequest
from .tools import ToolResult


class LoopPhase(str, Enum):
    START = "start"
    READY = "ready"
    AWAITING_RESPONSE = "awaiting_response"
    EXECUTING_TOOLS = "executing_tools"
    COMPLETED = "completed"
    FAILED = "failed"


class FailureReason(str, Enum):
    MAX_ITERATIONS = "max_iterations"
    LENGTH_LIMIT = "length_limit"
    ERROR = "error"


@dataclass(frozen=True)
class LoopState:
    max_iterations: int
    transcript: List[Dict[str, Any]] = field(default_factory=list)
    phase: LoopPhase = LoopPhase.START
    iteration: int = 0
    tool_call_count: int = 0
    final_message: Optional[str] = None
    failure: Optional[FailureReason] = None

    @property
    def is_terminal(self) -> bool:
        return self.phase in (LoopPhase.COMPLETED, LoopPhase.FAILED)


# -----------------------------------------------------------------------------
# Events
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class Started:
    pass


@dataclass(frozen=True)
class RequestSent:
    pass


@dataclass(frozen=True)
class ResponseReceived:
    response: ReasoningResponse


@dataclass(frozen=True)
class ToolResultsReady:
    results: List[ToolResult]


@dataclass(frozen=True)
class InternalError:
    message: str


Event = Union[Started, RequestSent, ResponseReceived, ToolResultsReady, InternalError]


# -----------------------------------------------------------------------------
# Effects
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class ReadyToRequest:
    """Iteration boundary: stop here, or answer with RequestSent."""
    iteration: int


@dataclass(frozen=True)
class RequestCompletion:
    """Send the transcript to the reasoning service."""
    messages: List[Dict[str, Any]]


@dataclass(frozen=True)
class DispatchTools:
    """Run these tool calls in order."""
    requests: List[ToolUseRequest]


@dataclass(frozen=True)
class Notify:
    kind: str
    message: str


@dataclass(frozen=True)
class CheckpointDue:
    """Iteration boundary: the runner may checkpoint here."""
    iteration: int


Effect = Union[ReadyToRequest, RequestCompletion, DispatchTools, Notify, CheckpointDue]


# -----------------------------------------------------------------------------
# Transition
# -----------------------------------------------------------------------------
def initial_state(goal_or_transcript: Union[str, List[Dict[str, Any]]], max_iterations: int) -> LoopState:
    if isinstance(goal_or_transcript, str):
        transcript = [{"role": "user", "content": goal_or_transcript}]
    else:
        transcript = list(goal_or_transcript)
    return LoopState(max_iterations=max_iterations, transcript=transcript)


def _fail(state: LoopState, reason: FailureReason, message: str) -> Tuple[LoopState, List[Effect]]:
    return (
        replace(state, phase=LoopPhase.FAILED, failure=reason, final_message=message),
        [Notify("failed", message)],
    )


def _ready(state: LoopState, transcript: List[Dict[str, Any]]) -> Tuple[LoopState, List[Effect]]:
    next_state = replace(state, phase=LoopPhase.READY, transcript=transcript)
    return next_state, [ReadyToRequest(state.iteration)]


def _send(state: LoopState) -> Tuple[LoopState, List[Effect]]:
    iteration = state.iteration + 1
    next_state = replace(state, phase=LoopPhase.AWAITING_RESPONSE, iteration=iteration)
    return next_state, [
        Notify("iteration", f"Iteration {iteration}/{state.max_iterations}"),
        RequestCompletion(state.transcript),
    ]


def transition(state: LoopState, event: Event) -> Tuple[LoopState, List[Effect]]:
    """Compute the next state and the effects to perform."""
    if state.is_terminal:
        return state, []

    if isinstance(event, InternalError):
        return _fail(state, FailureReason.ERROR, event.message)

    if state.phase == LoopPhase.START and isinstance(event, Started):
        if state.max_iterations <= 0:
            return _fail(state, FailureReason.MAX_ITERATIONS, "Task exceeded maximum iterations (0)")
        return _ready(state, state.transcript)

    if state.phase == LoopPhase.READY and isinstance(event, RequestSent):
        return _send(state)

    if state.phase == LoopPhase.AWAITING_RESPONSE and isinstance(event, ResponseReceived):
        response = event.response
        transcript = state.transcript + [response.to_message()]

        if response.stop_reason == StopReason.LENGTH_LIMIT:
            next_state = replace(state, transcript=transcript)
            return _fail(next_state, FailureReason.LENGTH_LIMIT, "Response hit token limit")

        if response.tool_uses:
            next_state = replace(
                state,
                phase=LoopPhase.EXECUTING_TOOLS,
                transcript=transcript,
                tool_call_count=state.tool_call_count + len(response.tool_uses),
            )
            effects: List[Effect] = [
                Notify("tool_call", f"Calling {t.name}") for t in response.tool_uses
            ]
            effects.append(DispatchTools(list(response.tool_uses)))
            return next_state, effects

        final = response.text or "Task completed"
        next_state = replace(state, phase=LoopPhase.COMPLETED, transcript=transcript, final_message=final)
        return next_state, [Notify("completed", final)]

    if state.phase == LoopPhase.EXECUTING_TOOLS and isinstance(event, ToolResultsReady):
        transcript = state.transcript + [
            {"role": "user", "content": [r.to_block() for r in event.results]}
        ]
        effects = [
            Notify("tool_result", f"{r.name}: {'ok' if r.success else r.error}")
            for r in event.results
        ]
        if state.iteration >= state.max_iterations:
            next_state = replace(state, transcript=transcript)
            failed_state, fail_effects = _fail(
                next_state,
                FailureReason.MAX_ITERATIONS,
                f"Task exceeded maximum iterations ({state.max_iterations})",
            )
            return failed_state, effects + fail_effects

        next_state, request_effects = _ready(state, transcript)
        return next_state, effects + [CheckpointDue(state.iteration)] + request_effects

    return _fail(
        state,
        FailureReason.ERROR,
        f"Unexpected event {type(event).__name__} in state {state.phase.value}",
    )
