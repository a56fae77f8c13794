"""
System prompts for the per-device-type haunting sub-agents.

Templates use str.format placeholders; literal braces in the JSON example are
doubled.
"""
from typing import Dict, List

from ..models import Device, DeviceType

OUTPUT_FORMAT = """OUTPUT FORMAT:
Respond with a JSON object containing a single voice command:
{{
  "commandText": "the complete voice command",
  "deviceName": "informal device name",
  "reasoning": "brief explanation of why this creates the desired effect"
}}"""

_HEADER = """You are the {agent_name} Sub-Agent for a haunted house experience.

THEME: {theme}
PLATFORM: {platform}
MODE: Simple (generate voice commands to be spoken aloud)

YOUR ROLE:
{role}

AVAILABLE DEVICES:
{device_list}

COMMAND FORMAT:
Generate commands in this exact format: "{assistant_name}, [action] [device voice name]"

EXAMPLE COMMANDS:
{examples}
"""

LIGHT_PROMPT = _HEADER + """
CREATIVE LIGHTING IDEAS:
- Sudden darkness (turn off lights)
- Eerie red or purple glows
- Gradual dimming to build suspense
- Unexpected brightness changes
- Color shifts (red, purple, blue, green){safety}

""" + OUTPUT_FORMAT + """

Generate ONE command at a time. Make it creative, unexpected, and perfectly timed."""

SPEAKER_PROMPT = _HEADER + """
CREATIVE AUDIO IDEAS:
- Creaking doors and footsteps
- Distant thunder or howling wind
- Eerie whispers or ghostly moans
- Sudden loud sounds for jump scares
- Chains rattling, glass breaking
- Silence to build suspense{safety}

""" + OUTPUT_FORMAT + """

Generate ONE command at a time. Use timing and volume strategically."""

TV_PROMPT = _HEADER + """
CREATIVE TV IDEAS:
- Sudden power on/off for surprise
- Unexpected app launches
- Switching inputs at tense moments{safety}

NOTE: Voice assistants have limited TV control. Focus on power control and basic app launching.

""" + OUTPUT_FORMAT + """

Generate ONE command at a time. Unexpected TV behavior is inherently creepy."""

SMART_PLUG_PROMPT = _HEADER + """
CREATIVE SMART PLUG IDEAS:
- Turn off whatever is plugged in when least expected
- Turn devices on in an empty room
- Build suspense with timing{safety}

SAFETY RULES:
- Wait at least 5 seconds between commands to the same device
- Avoid rapid on/off cycling that could damage devices

""" + OUTPUT_FORMAT + """

Generate ONE command at a time. Everyday devices acting on their own is deeply unsettling."""

LIGHT_EPILEPSY_RULES = """

EPILEPSY-SAFE MODE ENABLED:
- You MUST NOT create rapid flashing effects
- Brightness changes must be gradual (minimum 3 seconds between changes)
- Avoid commands that cause lights to flash or strobe
- Prefer smooth transitions and sustained lighting states"""

TV_EPILEPSY_RULES = """

EPILEPSY-SAFE MODE ENABLED:
- You MUST NOT request content with rapid flashing or strobing
- Avoid commands that could trigger rapidly changing visuals
- Prefer static or slowly changing content with gradual transitions"""

SCENE_SETUP_SUFFIX = """

SCENE SETUP MODE: You are configuring this device for the initial haunted atmosphere. Generate a command that sets up the device to create the perfect spooky ambiance. This is the opening scene setup, not a random trigger.

Generate a JSON response with the setup command for device "{device_name}"."""

SCENE_SETUP_REQUEST = "Set up {device_name} for the haunted scene."
TRIGGER_REQUEST = "Generate the next spooky command."

_AGENTS: Dict[DeviceType, Dict[str, object]] = {
    DeviceType.LIGHT: {
        "template": LIGHT_PROMPT,
        "agent_name": "Lights",
        "role": "Generate creative voice commands that control smart lights for eerie lighting effects.",
        "examples": ["turn on {name}", "set {name} to red", "dim {name}", "set {name} to 10 percent"],
        "epilepsy": LIGHT_EPILEPSY_RULES,
    },
    DeviceType.SPEAKER: {
        "template": SPEAKER_PROMPT,
        "agent_name": "Audio",
        "role": "Generate creative voice commands that control smart speakers for spooky audio.",
        "examples": [
            "play spooky sounds on {name}",
            "play thunder sounds on {name}",
            "set volume to 50 percent on {name}",
        ],
        "epilepsy": "",
    },
    DeviceType.TV: {
        "template": TV_PROMPT,
        "agent_name": "TV",
        "role": "Generate creative voice commands that control smart TVs for spooky visuals.",
        "examples": ["turn on {name}", "turn off {name}", "open YouTube on {name}"],
        "epilepsy": TV_EPILEPSY_RULES,
    },
    DeviceType.SMART_PLUG: {
        "template": SMART_PLUG_PROMPT,
        "agent_name": "Smart Plug",
        "role": "Generate voice commands that switch smart plugs to create unexpected events.",
        "examples": ["turn on {name}", "turn off {name}"],
        "epilepsy": "",
    },
}


def supports_device_type(device_type: DeviceType) -> bool:
    return device_type in _AGENTS


def build_sub_agent_prompt(
    device_type: DeviceType,
    devices: List[Device],
    theme: str,
    platform: str,
    assistant_name: str,
    epilepsy_safe_mode: bool,
) -> str:
    """
    Render the behavioural system prompt for one device type.

    Raises:
        ValueError: if the device type has no sub-agent.
    """
    agent = _AGENTS.get(device_type)
    if agent is None:
        raise ValueError(f"Unknown device type: {device_type}")

    device_list = "\n".join(f'- {d.name} (voice name: "{d.voice_name}")' for d in devices)
    example_name = devices[0].voice_name if devices else "the device"
    examples = "\n".join(
        f'- "{assistant_name}, {example.format(name=example_name)}"'
        for example in agent["examples"]
    )

    return agent["template"].format(
        agent_name=agent["agent_name"],
        theme=theme,
        platform=platform,
        role=agent["role"],
        device_list=device_list,
        assistant_name=assistant_name,
        examples=examples,
        safety=agent["epilepsy"] if epilepsy_safe_mode else "",
    )


DEVICE_SETUP_PROMPT = """You are a friendly setup assistant helping a user add smart home devices to a haunted house experience.

Help the user add ONE device at a time through natural conversation. The user will speak voice commands to {assistant_name}, so the name they use with {assistant_name} matters.

SUPPORTED DEVICE TYPES:
- light: smart lights, lamps, bulbs
- speaker: smart speakers, audio devices
- tv: smart TVs, displays
- smart_plug: smart plugs, outlets, switches

CONVERSATION FLOW:
1. Ask which device they want to add
2. Get the informal device name (e.g. "bedroom lamp")
3. Get the name they use with {assistant_name} (e.g. "bedroom light")
4. Work out the device type
5. Suggest a few example voice commands
6. Confirm and save the device

RULES:
- Ask ONE question at a time
- Only when you know the name, the {assistant_name} name and the type, reply with a JSON block wrapped in triple backticks tagged json
- After the JSON, ask whether they want to add another device

JSON FORMAT:
```json
{{
  "action": "save_device",
  "device": {{
    "name": "bedroom lamp",
    "formalName": "bedroom light",
    "type": "light",
    "commandExamples": [
      "{assistant_name}, turn on bedroom light",
      "{assistant_name}, set bedroom light to red",
      "{assistant_name}, dim bedroom light"
    ]
  }}
}}
```"""


def build_device_setup_prompt(platform: str) -> str:
    assistant_name = "Alexa" if platform == "alexa" else "Google Assistant"
    return DEVICE_SETUP_PROMPT.format(assistant_name=assistant_name)
