"""Pluggable per-stage task handlers."""

from content_pipeline.handlers.base import FunctionHandler, HandlerRegistry, TaskHandler

__all__ = ["FunctionHandler", "HandlerRegistry", "TaskHandler"]
