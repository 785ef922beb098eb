"""
Content Pipeline Orchestrator

Persistent stage-based workflow orchestration for the multi-stage AI content
pipeline: dependency-aware task scheduling, bounded concurrent execution,
retry policy, and stale-run recovery.
"""

__version__ = "1.0.0"
