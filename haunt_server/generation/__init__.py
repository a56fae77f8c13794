"""
Voice command generation: prompts, the text generation boundary, and
parsing of model output.
"""
from .device_setup import DeviceProposal, DeviceSetupAgent, DeviceSetupReply, extract_device_proposal
from .extractor import ExtractedCommand, extract_command
from .generator import CommandGenerator, GenerationContext, GenerationMode
from .llm import (
    GenerationError,
    OllamaTextGenerator,
    OpenRouterTextGenerator,
    PromptMessage,
    TextGenerator,
    build_text_generator,
)

__all__ = [
    "CommandGenerator",
    "DeviceProposal",
    "DeviceSetupAgent",
    "DeviceSetupReply",
    "ExtractedCommand",
    "GenerationContext",
    "GenerationError",
    "GenerationMode",
    "OllamaTextGenerator",
    "OpenRouterTextGenerator",
    "PromptMessage",
    "TextGenerator",
    "build_text_generator",
    "extract_device_proposal",
    "extract_command",
]
