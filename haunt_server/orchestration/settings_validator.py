"""
Validation for orchestrator settings updates.

Updates are partial: a field that is not supplied is simply not being
changed, so it can never be the cause of an error. Every violation is
reported, in field order, so the caller can show them all at once.
"""
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping

from ..models import SETTINGS_CONSTRAINTS, OrchestratorSettings, utc_now_iso

# camelCase keys as sent by the web client
_FIELD_ALIASES = {
    "minTriggerInterval": "min_trigger_interval",
    "maxTriggerInterval": "max_trigger_interval",
    "epilepsyMode": "epilepsy_mode",
}

_INTERVAL_FIELDS = ("min_trigger_interval", "max_trigger_interval")


class SettingsValidationError(ValueError):
    """Raised when a settings update is rejected. Nothing has been applied."""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__(f"Invalid settings: {', '.join(self.errors)}")


@dataclass
class ValidationResult:
    is_valid: bool
    errors: List[str] = field(default_factory=list)


def normalize_settings_keys(update: Mapping[str, Any]) -> Dict[str, Any]:
    """Map camelCase keys onto their snake_case field names."""
    return {_FIELD_ALIASES.get(key, key): value for key, value in update.items()}


def _is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def validate_settings(update: Mapping[str, Any]) -> ValidationResult:
    """
    Validate a (possibly partial) settings update.

    Never raises and never mutates anything.

    Args:
        update: Fields to change, snake_case or camelCase keys.

    Returns:
        ValidationResult with one error string per violation.
    """
    values = normalize_settings_keys(update)
    errors: List[str] = []

    for name in _INTERVAL_FIELDS:
        if name not in values:
            continue
        value = values[name]
        bounds = SETTINGS_CONSTRAINTS[name]
        if not _is_number(value):
            errors.append(f"{name} must be a number")
        elif value < bounds["min"] or value > bounds["max"]:
            errors.append(
                f"{name} must be between {bounds['min']} and {bounds['max']} milliseconds"
            )

    if "epilepsy_mode" in values and not isinstance(values["epilepsy_mode"], bool):
        errors.append("epilepsy_mode must be a boolean")

    if (
        "min_trigger_interval" in values
        and "max_trigger_interval" in values
        and _is_number(values["min_trigger_interval"])
        and _is_number(values["max_trigger_interval"])
        and values["min_trigger_interval"] > values["max_trigger_interval"]
    ):
        errors.append("min_trigger_interval must be less than or equal to max_trigger_interval")

    return ValidationResult(is_valid=not errors, errors=errors)


def merge_settings(
    current: OrchestratorSettings, update: Mapping[str, Any]
) -> OrchestratorSettings:
    """
    Apply a validated partial update on top of the current settings.

    Raises:
        SettingsValidationError: if the update is invalid on its own, or if
            the merged result would have min > max.
    """
    result = validate_settings(update)
    if not result.is_valid:
        raise SettingsValidationError(result.errors)

    values = {
        key: value
        for key, value in normalize_settings_keys(update).items()
        if key in ("min_trigger_interval", "max_trigger_interval", "epilepsy_mode")
    }
    merged = current.model_copy(update={**values, "updated_at": utc_now_iso()})

    if merged.min_trigger_interval > merged.max_trigger_interval:
        raise SettingsValidationError(
            ["min_trigger_interval must be less than or equal to max_trigger_interval"]
        )

    # Intervals are whole milliseconds
    return merged.model_copy(
        update={
            "min_trigger_interval": int(merged.min_trigger_interval),
            "max_trigger_interval": int(merged.max_trigger_interval),
        }
    )
