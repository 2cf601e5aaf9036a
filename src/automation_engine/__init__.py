"""Workflow automation engine.

Stores declarative multi-step workflows, runs them on demand or on schedule,
and fires them proactively when a learned intent is confident enough.
"""

__version__ = "0.1.0"

from automation_engine.config import EngineSettings
from automation_engine.engine import AutomationEngine

__all__ = ["__version__", "AutomationEngine", "EngineSettings"]
