"""
Test Suite for Autopilot

One module per component of the task execution core, plus:
- test_task_manager - end-to-end task runs and resume after restart
- test_api - FastAPI surface
"""
