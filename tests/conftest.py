"""
Pytest configuration and shared fixtures for haunting server tests.
"""
import json
import os
import re
import tempfile
from typing import List, Optional

import pytest

from haunt_server.generation import CommandGenerator, PromptMessage, TextGenerator
from haunt_server.models import Device, DeviceType, FrequencyLevel, UserConfig

_DEVICE_LINE_RE = re.compile(r"^- (.+?) \(voice name:", re.MULTILINE)


class StubTextGenerator(TextGenerator):
    """
    Deterministic text generator for tests.

    Replies with a JSON command for whichever device the system prompt lists,
    and records every call. Set `fail_for` to device names that should raise,
    or `reply` to force a fixed raw response.
    """

    def __init__(self, reply: Optional[str] = None, fail_for: Optional[List[str]] = None):
        self.reply = reply
        self.fail_for = set(fail_for or [])
        self.calls: List[dict] = []

    async def invoke(self, messages: List[PromptMessage], temperature: float) -> str:
        system = messages[0].content
        match = _DEVICE_LINE_RE.search(system)
        device_name = match.group(1) if match else "unknown"
        self.calls.append({"device": device_name, "temperature": temperature, "messages": messages})

        if device_name in self.fail_for:
            raise RuntimeError(f"backend unavailable for {device_name}")
        if self.reply is not None:
            return self.reply
        return "Here you go:\n```json\n" + json.dumps({
            "commandText": f"Alexa, do something spooky with {device_name}",
            "deviceName": device_name,
            "reasoning": "test",
        }) + "\n```"


@pytest.fixture
def temp_db_path():
    """Provide a temporary database path for testing."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = f.name

    yield db_path

    # Cleanup
    if os.path.exists(db_path):
        os.remove(db_path)


@pytest.fixture
def make_device():
    """Factory for devices with sensible defaults."""
    def _make(
        name: str,
        device_type: DeviceType = DeviceType.LIGHT,
        frequency: FrequencyLevel = FrequencyLevel.NORMAL,
        enabled: bool = True,
        **kwargs,
    ) -> Device:
        return Device(
            id=kwargs.pop("id", name),
            user_id=kwargs.pop("user_id", "user-1"),
            name=name,
            type=device_type,
            frequency=frequency,
            enabled=enabled,
            **kwargs,
        )
    return _make


@pytest.fixture
def user_config():
    return UserConfig(user_id="user-1", platform="alexa", active_theme="Classic Ghost")


@pytest.fixture
def stub_llm():
    return StubTextGenerator()


@pytest.fixture
def command_generator(stub_llm):
    return CommandGenerator(stub_llm)
