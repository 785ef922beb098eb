"""HTTP API for the orchestrator."""

from content_pipeline.api.app import create_app

__all__ = ["create_app"]
