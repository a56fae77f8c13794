"""
Haunting orchestration: device selection, settings validation, scene setup
and the random trigger loop.
"""
from .orchestrator import (
    AgentRunState,
    AgentState,
    Orchestrator,
    OrchestratorState,
    OrchestratorStateError,
    random_interval,
)
from .registry import OrchestratorRegistry, SessionStateError
from .scene_setup import SceneSetupSequencer
from .selector import calculate_device_weights, device_weight, select_random_device
from .settings_validator import (
    SettingsValidationError,
    ValidationResult,
    merge_settings,
    validate_settings,
)

__all__ = [
    "AgentRunState",
    "AgentState",
    "Orchestrator",
    "OrchestratorRegistry",
    "OrchestratorState",
    "OrchestratorStateError",
    "SceneSetupSequencer",
    "SessionStateError",
    "SettingsValidationError",
    "ValidationResult",
    "calculate_device_weights",
    "device_weight",
    "merge_settings",
    "random_interval",
    "select_random_device",
    "validate_settings",
]
