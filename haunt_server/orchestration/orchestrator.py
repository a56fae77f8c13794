"""
Orchestrator - owns one haunting session's command queue and trigger loop.

Lifecycle: STOPPED -> SCENE_SETUP -> ACTIVE -> STOPPED. A later start()
runs a fresh scene setup.

Everything here runs on a single asyncio event loop. The queue and the
per-type agent table are only touched from that loop, so no locks are
needed. The only concurrent fan-out is the initial per-type batch, where
each call owns its own AgentRunState.

stop() wakes the pending wait and bumps the run token. A generation call
already in flight is allowed to finish, but its result is dropped before it
reaches the queue.
"""
import asyncio
import logging
import random
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from ..generation import CommandGenerator, GenerationContext, GenerationMode
from ..models import Device, DeviceType, OrchestratorSettings, SetupProgress, UserConfig, VoiceCommand
from .scene_setup import SceneSetupSequencer
from .selector import select_random_device

logger = logging.getLogger(__name__)

DEFAULT_MIN_QUEUE_SIZE = 5


class OrchestratorStateError(RuntimeError):
    """Raised when an operation is not valid in the orchestrator's current state."""


class OrchestratorState(str, Enum):
    STOPPED = "stopped"
    SCENE_SETUP = "scene_setup"
    ACTIVE = "active"


class AgentState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


@dataclass
class AgentRunState:
    """Run state of one device-type sub-agent."""
    device_type: DeviceType
    devices: List[Device] = field(default_factory=list)
    state: AgentState = AgentState.IDLE
    last_fired_at: Optional[datetime] = None

    @property
    def is_running(self) -> bool:
        return self.state == AgentState.RUNNING

    def mark_running(self) -> None:
        self.state = AgentState.RUNNING
        self.last_fired_at = datetime.now(timezone.utc)

    def mark_idle(self) -> None:
        self.state = AgentState.IDLE


def random_interval(settings: OrchestratorSettings, rng: Optional[random.Random] = None) -> int:
    """Milliseconds until the next tick, uniform in [min, max]; exact when min == max."""
    rng = rng or random
    low = int(settings.min_trigger_interval)
    high = int(settings.max_trigger_interval)
    if high <= low:
        return low
    return rng.randint(low, high)


def build_agent_states(devices: Iterable[Device]) -> Dict[DeviceType, AgentRunState]:
    """One AgentRunState per device type among the enabled devices, excluding unknown."""
    states: Dict[DeviceType, AgentRunState] = {}
    for device in devices:
        if not device.enabled or device.type == DeviceType.UNKNOWN:
            continue
        state = states.setdefault(device.type, AgentRunState(device_type=device.type))
        state.devices.append(device)
    return states


class Orchestrator:
    """
    Drives scene setup and the random trigger loop for one user.

    Settings are read from `settings_provider` at every scheduling decision,
    so updates made while the session runs apply from the next tick.
    `queue_listener`, if given, receives a copy of the queue whenever a
    trigger adds a command.
    """

    def __init__(
        self,
        user_id: str,
        config: UserConfig,
        devices: Sequence[Device],
        generator: CommandGenerator,
        settings_provider: Optional[Callable[[], OrchestratorSettings]] = None,
        rng: Optional[random.Random] = None,
        fire_initial_batch: bool = True,
        min_queue_size: int = DEFAULT_MIN_QUEUE_SIZE,
        agent_timeout: Optional[float] = None,
        queue_listener: Optional[Callable[[List[VoiceCommand]], None]] = None,
    ):
        self.user_id = user_id
        self.config = config
        self.devices: List[Device] = list(devices)
        self.generator = generator
        self.fire_initial_batch = fire_initial_batch
        self.min_queue_size = min_queue_size
        self.agent_timeout = agent_timeout
        self.queue_listener = queue_listener

        self._settings_provider = settings_provider or (lambda: OrchestratorSettings(user_id=user_id))
        self._last_settings = OrchestratorSettings(user_id=user_id)
        self._rng = rng or random.Random()

        self.state = OrchestratorState.STOPPED
        self._queue: List[VoiceCommand] = []
        self._agent_states: Dict[DeviceType, AgentRunState] = build_agent_states(self.devices)
        self._run_token = 0
        self._stop_event: Optional[asyncio.Event] = None
        self._loop_task: Optional[asyncio.Task] = None

        self.scene_setup = SceneSetupSequencer(generator, self._current_context)

    @property
    def is_active(self) -> bool:
        return self.state != OrchestratorState.STOPPED

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> List[VoiceCommand]:
        """
        Run scene setup, fire the initial batch and start the trigger loop.

        Returns:
            The queue contents produced so far.

        Raises:
            OrchestratorStateError: if the orchestrator is already running.
        """
        if self.state != OrchestratorState.STOPPED:
            raise OrchestratorStateError(f"Orchestrator for {self.user_id} is already {self.state.value}")

        self._run_token += 1
        token = self._run_token
        if not self._agent_states:
            self._agent_states = build_agent_states(self.devices)
        self._stop_event = asyncio.Event()
        self.state = OrchestratorState.SCENE_SETUP
        logger.info(
            f"Starting orchestrator for {self.user_id} with {len(self._agent_states)} sub-agent(s)"
        )

        result = await self.scene_setup.run(self.devices)
        if token != self._run_token:
            logger.info(f"Orchestrator for {self.user_id} stopped during scene setup")
            return self.get_command_queue()
        self._append_commands(result.commands)

        if self.fire_initial_batch:
            await self._fire_initial_batch(token)
            if token != self._run_token:
                return self.get_command_queue()

        self.state = OrchestratorState.ACTIVE
        self._loop_task = asyncio.create_task(self._run_loop(token, self._stop_event))
        return self.get_command_queue()

    def stop(self) -> None:
        """Cancel pending ticks. A generation already in flight finishes but is discarded."""
        if self.state == OrchestratorState.STOPPED:
            return
        self._run_token += 1
        self.state = OrchestratorState.STOPPED
        if self._stop_event is not None:
            self._stop_event.set()
        self._agent_states = {}
        logger.info(f"Orchestrator for {self.user_id} stopped")

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def _read_settings(self) -> OrchestratorSettings:
        try:
            self._last_settings = self._settings_provider()
        except Exception as exc:
            logger.error(f"Failed to read settings for {self.user_id}, using last known: {exc}", exc_info=True)
        return self._last_settings

    def _current_context(self) -> GenerationContext:
        return GenerationContext.from_config(self.config, self._read_settings().epilepsy_mode)

    async def _run_loop(self, token: int, stop_event: asyncio.Event) -> None:
        while token == self._run_token:
            interval_ms = random_interval(self._read_settings(), self._rng)
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval_ms / 1000)
                return
            except asyncio.TimeoutError:
                pass

            if token != self._run_token:
                return
            try:
                await self.fire_random_device(token)
            except Exception as exc:
                logger.error(f"Trigger tick failed for {self.user_id}: {exc}", exc_info=True)

    async def _fire_initial_batch(self, token: int) -> None:
        agents = list(self._agent_states.values())
        results = await asyncio.gather(
            *(
                self._fire_agent(agent, select_random_device(agent.devices, self._rng), token)
                for agent in agents
            ),
            return_exceptions=True,
        )
        for agent, result in zip(agents, results):
            if isinstance(result, BaseException):
                logger.error(f"Initial command for {agent.device_type.value} agent failed: {result!r}")

    async def fire_random_device(self, token: Optional[int] = None) -> Optional[VoiceCommand]:
        """
        One scheduling tick: pick a weighted random device and fire its agent.

        Skips (returns None) when no device is enabled, the device type has
        no agent, or that agent is already generating.
        """
        token = self._run_token if token is None else token
        device = select_random_device(self.devices, self._rng)
        if device is None:
            logger.info(f"No enabled devices for {self.user_id}, skipping tick")
            return None

        agent = self._agent_states.get(device.type)
        if agent is None:
            logger.warning(f"No agent state for device type {device.type.value!r}, skipping tick")
            return None
        return await self._fire_agent(agent, device, token)

    async def _fire_agent(
        self, agent: AgentRunState, device: Optional[Device], token: int
    ) -> Optional[VoiceCommand]:
        if device is None:
            return None
        if agent.is_running:
            logger.info(f"Sub-agent {agent.device_type.value} is already running, skipping")
            return None

        agent.mark_running()
        try:
            command = await self._generate(device)
        finally:
            agent.mark_idle()

        if token != self._run_token:
            logger.info(f"Discarding command for {device.name}: orchestrator stopped while generating")
            return None

        if command is not None:
            self._append_commands([command])
            self._notify_queue_changed()
        device.action_count += 1
        return command

    async def _generate(self, device: Device) -> Optional[VoiceCommand]:
        call = self.generator.generate(device, self._current_context(), GenerationMode.TRIGGER)
        if self.agent_timeout is None:
            return await call
        try:
            return await asyncio.wait_for(call, timeout=self.agent_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Generation for {device.name} timed out after {self.agent_timeout}s")
            return None

    # ------------------------------------------------------------------
    # Queue
    # ------------------------------------------------------------------

    def _notify_queue_changed(self) -> None:
        if self.queue_listener is None:
            return
        try:
            self.queue_listener(self.get_command_queue())
        except Exception as exc:
            logger.error(f"Queue listener failed for {self.user_id}: {exc}", exc_info=True)

    def _append_commands(self, commands: Iterable[VoiceCommand]) -> None:
        known = {cmd.command_id for cmd in self._queue}
        for command in commands:
            if command.command_id in known:
                continue
            known.add(command.command_id)
            self._queue.append(command)

    def get_command_queue(self) -> List[VoiceCommand]:
        return list(self._queue)

    def update_command_queue(self, commands: Iterable[VoiceCommand]) -> None:
        """Replace the queue with an externally persisted copy (duplicates dropped)."""
        self._queue = []
        self._append_commands(commands)

    def mark_command_spoken(self, command_id: str) -> bool:
        """Mark a command spoken. Idempotent; returns False if the id is unknown."""
        for command in self._queue:
            if command.command_id == command_id:
                command.spoken = True
                return True
        return False

    def get_next_unspoken_command(self) -> Optional[VoiceCommand]:
        """A random unspoken command, so consumption order is not predictable."""
        unspoken = [cmd for cmd in self._queue if not cmd.spoken]
        if not unspoken:
            return None
        return self._rng.choice(unspoken)

    def get_unspoken_count(self) -> int:
        return sum(1 for cmd in self._queue if not cmd.spoken)

    def needs_regeneration(self) -> bool:
        """Advisory only: the trigger loop does not change pace based on this."""
        return self.get_unspoken_count() < self.min_queue_size

    def get_agent_states(self) -> Dict[DeviceType, AgentRunState]:
        return dict(self._agent_states)

    def get_setup_progress(self) -> SetupProgress:
        return self.scene_setup.get_setup_progress()
