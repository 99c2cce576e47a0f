"""
workstore — local context store and ticket planner for coding assistants.

Public API for library usage::

    from workstore import Workstore, OperationResult

    store = Workstore.open()
    plan = store.get_execution_plan(project_id)
"""

from .api import OperationResult, Workstore
from .config import Config

__all__ = ["Workstore", "OperationResult", "Config"]
