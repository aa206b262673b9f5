"""
CLI tools for docsync administration.

This module provides command-line tools for:
- inspect: show, read, clear, reconcile and import a stored document

Invariants:
    - Tools work offline (no running session required)
    - Operations are idempotent where possible
"""

from .inspect import InspectResult, InspectTool

__all__ = ["InspectTool", "InspectResult"]
