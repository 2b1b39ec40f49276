"""Configuration module."""

from coachflow.config.constants import ORCH, OrchestrationConstants
from coachflow.config.settings import Settings, get_settings

__all__ = ["Settings", "get_settings", "OrchestrationConstants", "ORCH"]
