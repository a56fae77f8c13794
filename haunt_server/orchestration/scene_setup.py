"""
Scene setup: one ordered pass over the enabled devices before random
triggering starts.

Devices are configured strictly one after another. The setup commands
establish each device's baseline state, and overlapping calls for the same
device type could interleave.
"""
import logging
import time
from typing import Callable, List, Optional, Sequence

from ..generation import CommandGenerator, GenerationContext, GenerationMode
from ..models import Device, SceneSetupResult, SetupProgress, VoiceCommand

logger = logging.getLogger(__name__)


class SceneSetupSequencer:
    """Runs the opening ambiance pass and tracks its progress."""

    def __init__(
        self,
        generator: CommandGenerator,
        context_provider: Callable[[], GenerationContext],
    ):
        self.generator = generator
        self.context_provider = context_provider
        self._progress = SetupProgress()

    async def run(self, devices: Sequence[Device]) -> SceneSetupResult:
        enabled: List[Device] = [device for device in devices if device.enabled]
        started = time.monotonic()
        self._progress = SetupProgress(total_devices=len(enabled))
        logger.info(f"Scene setup starting for {len(enabled)} device(s)")

        commands: List[VoiceCommand] = []
        for device in enabled:
            self._progress.current_device = device.name
            command: Optional[VoiceCommand] = None
            try:
                command = await self.generator.generate(
                    device, self.context_provider(), GenerationMode.SCENE_SETUP
                )
            except Exception as exc:
                # A broken device must not block the rest of the scene
                logger.error(f"Scene setup failed for {device.name}: {exc}", exc_info=True)

            if command is not None:
                commands.append(command)
            else:
                logger.warning(f"No setup command produced for {device.name}")
            self._progress.completed_devices += 1

        self._progress.current_device = None
        self._progress.is_complete = True

        duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            f"Scene setup complete: {len(commands)}/{len(enabled)} device(s) configured in {duration_ms}ms"
        )
        return SceneSetupResult(
            commands=commands,
            duration_ms=duration_ms,
            devices_configured=len(commands),
            final_progress=self.get_setup_progress(),
        )

    def get_setup_progress(self) -> SetupProgress:
        """Snapshot of the current progress; safe to poll at any time."""
        return self._progress.model_copy()
