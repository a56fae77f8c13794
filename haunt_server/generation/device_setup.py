"""
Conversational device setup.

The agent chats with the user until it knows a device's name, the name the
user says to the voice assistant, and its type. It then replies with a fenced
```json block carrying a "save_device" action.
"""
import json
import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..models import DeviceType
from .extractor import extract_fenced_block
from .llm import PromptMessage, TextGenerator
from .prompts import build_device_setup_prompt

logger = logging.getLogger(__name__)

SAVE_DEVICE_ACTION = "save_device"


class DeviceProposal(BaseModel):
    """Device details the setup agent asks to save."""
    name: str = Field(..., min_length=1)
    formal_name: Optional[str] = Field(default=None, alias="formalName")
    type: DeviceType
    command_examples: List[str] = Field(default_factory=list, alias="commandExamples")

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)


def extract_device_proposal(raw_text: Optional[str]) -> Optional[DeviceProposal]:
    """
    Pull a save_device proposal out of an agent reply.

    Only a fenced ```json block is considered; prose without one is an
    ordinary conversational turn.

    Returns:
        DeviceProposal, or None if the reply does not ask to save a device.
    """
    if not raw_text:
        return None
    block = extract_fenced_block(raw_text)
    if block is None:
        return None

    try:
        payload = json.loads(block)
    except json.JSONDecodeError:
        logger.warning(f"Device setup reply has an unparseable JSON block: {block[:200]!r}")
        return None

    if not isinstance(payload, dict) or payload.get("action") != SAVE_DEVICE_ACTION:
        return None
    device = payload.get("device")
    if not isinstance(device, dict):
        return None

    try:
        return DeviceProposal.model_validate(device)
    except ValidationError as exc:
        logger.warning(f"Rejected device proposal {device!r}: {exc.error_count()} error(s)")
        return None


@dataclass
class DeviceSetupReply:
    response: str
    proposal: Optional[DeviceProposal] = None


class DeviceSetupAgent:
    """One conversational turn of device setup per call."""

    def __init__(self, text_generator: TextGenerator, temperature: float = 0.7):
        self.text_generator = text_generator
        self.temperature = temperature

    def build_messages(
        self, message: str, history: Sequence[PromptMessage], platform: str
    ) -> List[PromptMessage]:
        messages = [PromptMessage(role="system", content=build_device_setup_prompt(platform))]
        # The client owns the transcript; a system turn from it is not trusted
        messages.extend(m for m in history if m.role != "system")
        messages.append(PromptMessage(role="user", content=message))
        return messages

    async def reply(
        self, message: str, history: Sequence[PromptMessage] = (), platform: str = "alexa"
    ) -> DeviceSetupReply:
        """
        Raises:
            GenerationError (or any backend error) if the model call fails.
        """
        response = await self.text_generator.invoke(
            self.build_messages(message, history, platform), self.temperature
        )
        proposal = extract_device_proposal(response)
        if proposal:
            logger.info(f"Device setup agent proposed {proposal.name!r} ({proposal.type.value})")
        return DeviceSetupReply(response=response, proposal=proposal)
