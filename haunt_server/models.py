"""
Data models for devices, user configuration, orchestrator settings and
generated voice commands.

Every model serialises with camelCase aliases so stored documents and HTTP
payloads keep the shape the web client already speaks.
"""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field
from pydantic.alias_generators import to_camel


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


class CamelModel(BaseModel):
    """Base model accepting both snake_case and camelCase field names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DeviceType(str, Enum):
    """Device categories; each known category gets its own sub-agent."""
    LIGHT = "light"
    SPEAKER = "speaker"
    TV = "tv"
    SMART_PLUG = "smart_plug"
    UNKNOWN = "unknown"


class FrequencyLevel(str, Enum):
    """How often a device should be picked by the random trigger loop."""
    INFREQUENT = "infrequent"
    NORMAL = "normal"
    FREQUENT = "frequent"


FREQUENCY_WEIGHTS: Dict[FrequencyLevel, float] = {
    FrequencyLevel.INFREQUENT: 0.5,
    FrequencyLevel.NORMAL: 1.0,
    FrequencyLevel.FREQUENT: 2.0,
}

DEFAULT_PROMPTS: Dict[DeviceType, str] = {
    DeviceType.LIGHT: (
        "Set the lights to a dim, eerie setting with Halloween colors like deep purple, "
        "burnt orange, or flickering candlelight whites. Create an ominous atmosphere."
    ),
    DeviceType.SPEAKER: (
        "Play spooky atmospheric sounds such as crow caws, distant screams, ghostly whispers, "
        "howling wind, or the song 'Spooky Scary Skeletons'."
    ),
    DeviceType.TV: (
        "Find and play 'haunted house atmosphere' videos, focusing on creepy ambiance, "
        "flickering candles, or ghostly scenes."
    ),
    DeviceType.SMART_PLUG: (
        "Randomly turn the connected device on or off to create unexpected and unsettling moments."
    ),
    DeviceType.UNKNOWN: "Perform a spooky action appropriate for this device type.",
}

Platform = Literal["alexa", "google"]
Mode = Literal["simple", "connected"]


class Device(CamelModel):
    """A user's smart device. Read-mostly to the orchestrator."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: Optional[str] = None
    name: str
    formal_name: Optional[str] = None  # what the user says to the voice assistant
    type: DeviceType = DeviceType.UNKNOWN
    platform: Platform = "alexa"
    enabled: bool = True
    frequency: FrequencyLevel = FrequencyLevel.NORMAL
    default_prompt: str = ""
    custom_prompt: Optional[str] = None
    action_count: int = 0
    command_examples: List[str] = Field(default_factory=list)
    created_at: str = Field(default_factory=utc_now_iso)

    @computed_field
    @property
    def selection_weight(self) -> float:
        """Selection weight derived from the frequency tier; zero when disabled."""
        if not self.enabled:
            return 0.0
        return FREQUENCY_WEIGHTS.get(self.frequency, 0.0)

    @property
    def voice_name(self) -> str:
        return self.formal_name or self.name

    @property
    def behavior_prompt(self) -> str:
        """Custom prompt if the user wrote one, else the stored or built-in default."""
        return self.custom_prompt or self.default_prompt or DEFAULT_PROMPTS[self.type]


class UserConfig(CamelModel):
    """Per-user haunting preferences."""
    user_id: str
    platform: Platform = "alexa"
    mode: Mode = "simple"
    active_theme: str = "Classic Ghost"
    epilepsy_safe_mode: bool = False
    custom_prompts: Dict[str, str] = Field(default_factory=dict)
    created_at: str = Field(default_factory=utc_now_iso)
    updated_at: str = Field(default_factory=utc_now_iso)

    @property
    def assistant_name(self) -> str:
        return "Alexa" if self.platform == "alexa" else "Hey Google"


class VoiceCommand(CamelModel):
    """A generated directive waiting to be spoken to a voice assistant."""
    command_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    agent_type: DeviceType
    device_name: str
    command_text: str
    timestamp: str = Field(default_factory=utc_now_iso)
    spoken: bool = False
    reasoning: Optional[str] = None


SETTINGS_CONSTRAINTS: Dict[str, Dict[str, int]] = {
    "min_trigger_interval": {"min": 1000, "max": 300000},  # 1s to 5min
    "max_trigger_interval": {"min": 1000, "max": 600000},  # 1s to 10min
}


class OrchestratorSettings(CamelModel):
    """Trigger timing and safety settings. Intervals are milliseconds."""
    user_id: Optional[str] = None
    min_trigger_interval: int = 5000
    max_trigger_interval: int = 30000
    epilepsy_mode: bool = False
    created_at: str = Field(default_factory=utc_now_iso)
    updated_at: str = Field(default_factory=utc_now_iso)


class SetupProgress(CamelModel):
    """Scene setup progress, pollable while the setup pass runs."""
    total_devices: int = 0
    completed_devices: int = 0
    current_device: Optional[str] = None
    is_complete: bool = False


class SceneSetupResult(CamelModel):
    """Outcome of one scene setup pass."""
    commands: List[VoiceCommand] = Field(default_factory=list)
    duration_ms: int = 0
    devices_configured: int = 0
    final_progress: SetupProgress = Field(default_factory=SetupProgress)


class HauntingSession(CamelModel):
    """A persisted haunting session and its command queue."""
    user_id: str
    session_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    is_active: bool = True
    mode: Mode = "simple"
    started_at: str = Field(default_factory=utc_now_iso)
    stopped_at: Optional[str] = None
    command_queue: List[VoiceCommand] = Field(default_factory=list)
