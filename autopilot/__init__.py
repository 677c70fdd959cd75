"""
Autopilot - Autonomous Task Execution Core

Takes a natural-language goal and drives it to a verified completion.

Components:
- Complexity Estimator: classifies a goal into a tier and iteration budget
- Task Decomposer: builds a dependency graph of subtasks for structured goals
- Execution Planner: orders subtasks into dependency-respecting batches
- Execution Loop: iterative reasoning/tool-calling state machine per task
- Checkpoint Manager: periodic snapshots and resumability decisions
- Shutdown Coordinator: checkpoints every running task within a time budget
- Outcome Verifier: independent evidence and a confidence score for a completion claim

Supporting services:
- Task Manager: wires the components together and resumes work on startup
- Notification Engine: best-effort delivery with delivery counters
- Reasoning Client: generic request/response contract for the reasoning service
- Tools: closed, typed tool set dispatched through an exhaustive registry

All services are constructed once at process start (see main.py) and passed
to the components that need them. There are no module-level singletons.
"""

__version__ = "0.4.0"
