"""
CommandGenerator - turns one device plus session context into one voice command.

A single generation call per attempt. Every failure (backend error, unknown
device type, unusable output) is logged and reported as None so the caller
can treat it as a skipped attempt.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from ..models import Device, UserConfig, VoiceCommand
from .extractor import extract_command
from .llm import PromptMessage, TextGenerator
from .prompts import (
    SCENE_SETUP_REQUEST,
    SCENE_SETUP_SUFFIX,
    TRIGGER_REQUEST,
    build_sub_agent_prompt,
    supports_device_type,
)

logger = logging.getLogger(__name__)


class GenerationMode(str, Enum):
    SCENE_SETUP = "scene_setup"
    TRIGGER = "trigger"


@dataclass
class GenerationContext:
    """Session-level inputs shared by every prompt."""
    platform: str = "alexa"
    theme: str = "Classic Ghost"
    epilepsy_safe_mode: bool = False

    @property
    def assistant_name(self) -> str:
        return "Alexa" if self.platform == "alexa" else "Hey Google"

    @classmethod
    def from_config(cls, config: UserConfig, epilepsy_mode: bool = False) -> "GenerationContext":
        """Build a context; epilepsy-safe mode is on if either the profile or settings ask for it."""
        return cls(
            platform=config.platform,
            theme=config.active_theme or "Classic Ghost",
            epilepsy_safe_mode=bool(config.epilepsy_safe_mode or epilepsy_mode),
        )


class CommandGenerator:
    """Builds device-specific prompts and parses the model's reply."""

    def __init__(
        self,
        text_generator: TextGenerator,
        scene_setup_temperature: float = 0.7,
        trigger_temperature: float = 0.8,
    ):
        self.text_generator = text_generator
        self.scene_setup_temperature = scene_setup_temperature
        self.trigger_temperature = trigger_temperature

    def temperature_for(self, mode: GenerationMode) -> float:
        if mode == GenerationMode.SCENE_SETUP:
            return self.scene_setup_temperature
        return self.trigger_temperature

    def build_messages(
        self, device: Device, context: GenerationContext, mode: GenerationMode
    ) -> List[PromptMessage]:
        """
        Render the system and user messages for one device.

        Raises:
            ValueError: if the device type has no sub-agent prompt.
        """
        system_prompt = build_sub_agent_prompt(
            device.type,
            [device],
            theme=context.theme,
            platform=context.platform,
            assistant_name=context.assistant_name,
            epilepsy_safe_mode=context.epilepsy_safe_mode,
        )
        system_prompt += f"\n\nDevice-specific behavior: {device.behavior_prompt}"

        if mode == GenerationMode.SCENE_SETUP:
            system_prompt += SCENE_SETUP_SUFFIX.format(device_name=device.name)
            request = SCENE_SETUP_REQUEST.format(device_name=device.name)
        else:
            request = TRIGGER_REQUEST

        return [
            PromptMessage(role="system", content=system_prompt),
            PromptMessage(role="user", content=request),
        ]

    async def generate(
        self,
        device: Device,
        context: GenerationContext,
        mode: GenerationMode = GenerationMode.TRIGGER,
    ) -> Optional[VoiceCommand]:
        """
        Generate one voice command for a device.

        Returns:
            A fresh, unspoken VoiceCommand, or None if the attempt failed.
        """
        if not supports_device_type(device.type):
            logger.warning(f"No sub-agent for device type {device.type.value!r} ({device.name}), skipping")
            return None

        messages = self.build_messages(device, context, mode)
        temperature = self.temperature_for(mode)

        try:
            raw_output = await self.text_generator.invoke(messages, temperature)
        except Exception as exc:
            logger.error(f"Text generation failed for {device.name} ({mode.value}): {exc}", exc_info=True)
            return None

        extracted = extract_command(raw_output)
        if extracted is None:
            logger.warning(f"Discarding unusable {mode.value} output for {device.name}")
            return None

        reasoning = extracted.reasoning
        device_name = extracted.device_name
        if mode == GenerationMode.SCENE_SETUP:
            # A setup command always belongs to the device being configured
            device_name = device.name
            if reasoning is None:
                reasoning = "Scene setup command"

        return VoiceCommand(
            agent_type=device.type,
            device_name=device_name,
            command_text=extracted.command_text,
            reasoning=reasoning,
        )
