"""
Haunted Home Orchestrator - FastAPI application.

Exposes haunting sessions, orchestrator settings, user configuration and
device management. The caller's identity arrives in the X-User-Id header;
authenticating it is the job of the gateway in front of this service.
"""
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import Body, Depends, FastAPI, Header, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import Field, ValidationError

from .config import settings
from .generation import (
    CommandGenerator,
    DeviceSetupAgent,
    PromptMessage,
    TextGenerator,
    build_text_generator,
)
from .models import CamelModel, Device, DeviceType, FrequencyLevel, Platform, VoiceCommand
from .orchestration import (
    Orchestrator,
    OrchestratorRegistry,
    OrchestratorStateError,
    SessionStateError,
    SettingsValidationError,
    calculate_device_weights,
)
from .storage import HauntingStore

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[
        logging.FileHandler(settings.log_file) if settings.log_file else logging.StreamHandler(),
        logging.StreamHandler()
    ]
)
logger = logging.getLogger(__name__)

# Global service instances
store: Optional[HauntingStore] = None
text_generator: Optional[TextGenerator] = None
registry: Optional[OrchestratorRegistry] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown."""
    global store, text_generator, registry

    # Startup
    logger.info("Starting Haunted Home Orchestrator...")

    registry = OrchestratorRegistry()

    try:
        store = HauntingStore(
            db_path=settings.haunt_db_path,
            default_min_trigger_interval=settings.default_min_trigger_interval,
            default_max_trigger_interval=settings.default_max_trigger_interval,
        )
    except Exception as exc:
        logger.error(f"Failed to initialize store: {exc}", exc_info=True)
        store = None

    try:
        text_generator = build_text_generator(settings)
        logger.info(f"Text generator initialized with provider: {settings.llm_provider}")
    except Exception as exc:
        logger.error(f"Failed to initialize text generator: {exc}", exc_info=True)
        text_generator = None

    yield

    # Shutdown
    logger.info("Shutting down Haunted Home Orchestrator...")
    if registry:
        registry.stop_all()
    if text_generator:
        await text_generator.close()


# Create FastAPI app
app = FastAPI(
    title="Haunted Home Orchestrator",
    description="Generates spooky voice commands for smart home devices",
    version="1.0.0",
    lifespan=lifespan
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class DeviceCreate(CamelModel):
    """Body of POST /devices."""
    name: str
    formal_name: Optional[str] = None
    type: DeviceType = DeviceType.UNKNOWN
    platform: Platform = "alexa"
    enabled: bool = True
    frequency: FrequencyLevel = FrequencyLevel.NORMAL
    custom_prompt: Optional[str] = None
    command_examples: List[str] = []


class DeviceChatRequest(CamelModel):
    """Body of POST /devices/chat."""
    message: str = Field(..., min_length=1)
    conversation_history: List[PromptMessage] = []


class DeviceUpdate(CamelModel):
    """Body of PATCH /devices/{device_id}; only supplied fields change."""
    name: Optional[str] = None
    formal_name: Optional[str] = None
    enabled: Optional[bool] = None
    frequency: Optional[FrequencyLevel] = None
    custom_prompt: Optional[str] = None
    command_examples: Optional[List[str]] = None


def get_user_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    """Caller identity, as established by the upstream gateway."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Unauthorized: No user ID found")
    return x_user_id


def _require_store() -> HauntingStore:
    if not store:
        raise HTTPException(status_code=503, detail="Store not available")
    return store


def _require_registry() -> OrchestratorRegistry:
    if registry is None:
        raise HTTPException(status_code=503, detail="Orchestrator registry not available")
    return registry


def _dump(model) -> Dict[str, Any]:
    return model.model_dump(mode="json", by_alias=True)


def _build_orchestrator(user_id: str, config, devices: List[Device]) -> Orchestrator:
    """Wire a new orchestrator to the configured generator and live settings."""
    if not text_generator:
        raise HTTPException(status_code=503, detail="Text generator not available")
    current_store = _require_store()
    if not config.active_theme:
        config = config.model_copy(update={"active_theme": settings.default_theme})
    generator = CommandGenerator(
        text_generator,
        scene_setup_temperature=settings.scene_setup_temperature,
        trigger_temperature=settings.trigger_temperature,
    )

    def sync_queue(queue: List[VoiceCommand]) -> None:
        # Before the session row exists the queue is saved by create_session
        session = current_store.get_active_session(user_id)
        if session:
            current_store.update_command_queue(user_id, session.session_id, queue)

    return Orchestrator(
        user_id=user_id,
        config=config,
        devices=devices,
        generator=generator,
        settings_provider=lambda: current_store.get_settings(user_id),
        fire_initial_batch=settings.fire_initial_batch,
        min_queue_size=settings.min_queue_size,
        agent_timeout=settings.agent_timeout_seconds,
        queue_listener=sync_queue,
    )


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Haunted Home Orchestrator",
        "version": "1.0.0",
        "status": "running"
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    healthy = store is not None and text_generator is not None
    return {
        "status": "healthy" if healthy else "degraded",
        "store": "connected" if store else "unavailable",
        "text_generator": settings.llm_provider if text_generator else "unavailable",
        "active_sessions": len(registry.active_users()) if registry else 0,
    }


# Haunting sessions

@app.post("/haunting/start")
async def start_haunting(user_id: str = Depends(get_user_id)):
    """
    Start a haunting session.

    Runs scene setup and the initial batch before responding, then leaves the
    random trigger loop running in the background.
    """
    current_store = _require_store()
    current_registry = _require_registry()

    # A second start for the same user waits here, then sees the active session
    async with current_registry.start_lock(user_id):
        existing = current_store.get_active_session(user_id)
        if existing:
            raise HTTPException(
                status_code=400,
                detail=f"A haunting session is already active: {existing.session_id}",
            )

        config = current_store.get_user_config(user_id)
        if not config:
            raise HTTPException(
                status_code=400,
                detail="User configuration not found. Please complete setup first.",
            )

        devices = [d for d in current_store.get_user_devices(user_id) if d.enabled]
        if not devices:
            raise HTTPException(status_code=400, detail="No enabled devices found. Please add devices first.")

        orchestrator = _build_orchestrator(user_id, config, devices)
        try:
            initial_commands = await orchestrator.start()
        except OrchestratorStateError as exc:
            raise HTTPException(status_code=409, detail=str(exc))

        current_registry.register(user_id, orchestrator)
        session = current_store.create_session(user_id, config.mode, initial_commands)

    return {
        "message": "Haunting started successfully",
        "sessionId": session.session_id,
        "commandsGenerated": len(initial_commands),
        "deviceCount": len(devices),
        "setupProgress": _dump(orchestrator.get_setup_progress()),
    }


@app.post("/haunting/stop")
async def stop_haunting(user_id: str = Depends(get_user_id)):
    """Stop the active haunting session and persist device action counts."""
    current_store = _require_store()
    current_registry = _require_registry()

    session = current_store.get_active_session(user_id)
    if not session:
        raise HTTPException(status_code=400, detail="No active haunting session found")

    orchestrator = current_registry.remove(user_id)
    if orchestrator:
        current_store.update_command_queue(user_id, session.session_id, orchestrator.get_command_queue())
        for device in orchestrator.devices:
            stored = current_store.get_device(user_id, device.id)
            if stored:
                current_store.save_device(stored.model_copy(update={"action_count": device.action_count}))

    try:
        current_store.stop_session(user_id, session.session_id)
    except SessionStateError as exc:
        raise HTTPException(status_code=404, detail=str(exc))

    return {
        "message": "Haunting stopped successfully",
        "sessionId": session.session_id,
    }


@app.get("/haunting/command")
async def get_next_command(user_id: str = Depends(get_user_id)):
    """
    Hand out the next unspoken command and mark it spoken.

    Falls back to the stored queue when this process holds no orchestrator
    for the user (for example after a restart).
    """
    current_store = _require_store()
    current_registry = _require_registry()

    session = current_store.get_active_session(user_id)
    if not session:
        raise HTTPException(status_code=404, detail="No active haunting session found")

    orchestrator = current_registry.get(user_id)
    try:
        if not orchestrator:
            next_command = next((cmd for cmd in session.command_queue if not cmd.spoken), None)
            if not next_command:
                return {
                    "command": None,
                    "message": "No commands available. Please restart the haunting.",
                }
            current_store.mark_command_spoken(user_id, session.session_id, next_command.command_id)
            unspoken = sum(1 for cmd in session.command_queue if not cmd.spoken)
            return {"command": _dump(next_command), "queueSize": unspoken - 1}

        next_command = orchestrator.get_next_unspoken_command()
        if not next_command:
            return {"command": None, "message": "No commands available"}

        orchestrator.mark_command_spoken(next_command.command_id)
        current_store.update_command_queue(user_id, session.session_id, orchestrator.get_command_queue())
    except SessionStateError as exc:
        raise HTTPException(status_code=404, detail=str(exc))

    unspoken_count = orchestrator.get_unspoken_count()
    needs_regeneration = orchestrator.needs_regeneration()
    if needs_regeneration:
        logger.info(f"Queue running low for {user_id} ({unspoken_count} unspoken commands)")

    return {
        "command": _dump(next_command),
        "queueSize": unspoken_count,
        "needsRegeneration": needs_regeneration,
    }


@app.get("/haunting/progress")
async def get_setup_progress(user_id: str = Depends(get_user_id)):
    """Scene setup progress of the user's orchestrator."""
    orchestrator = _require_registry().get(user_id)
    if not orchestrator:
        raise HTTPException(status_code=404, detail="No running orchestrator found")
    return _dump(orchestrator.get_setup_progress())


@app.get("/haunting/status")
async def get_haunting_status(user_id: str = Depends(get_user_id)):
    """Session and sub-agent state for debugging."""
    session = _require_store().get_active_session(user_id)
    orchestrator = _require_registry().get(user_id)
    return {
        "active": session is not None,
        "sessionId": session.session_id if session else None,
        "state": orchestrator.state.value if orchestrator else "stopped",
        "unspokenCount": orchestrator.get_unspoken_count() if orchestrator else 0,
        "agents": {
            device_type.value: agent.state.value
            for device_type, agent in (orchestrator.get_agent_states().items() if orchestrator else [])
        },
    }


# Orchestrator settings

@app.get("/settings")
async def get_settings(user_id: str = Depends(get_user_id)):
    """Get orchestrator settings (defaults are created on first read)."""
    return _dump(_require_store().get_settings(user_id))


@app.put("/settings")
async def update_settings(user_id: str = Depends(get_user_id), update: Dict[str, Any] = Body(...)):
    """
    Update orchestrator settings.

    Partial updates are allowed. A running orchestrator picks the new values
    up on its next tick.
    """
    try:
        updated = _require_store().update_settings(user_id, update)
    except SettingsValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return _dump(updated)


# User configuration

@app.get("/config")
async def get_config(user_id: str = Depends(get_user_id)):
    config = _require_store().get_user_config(user_id)
    if not config:
        raise HTTPException(status_code=404, detail="User configuration not found")
    return _dump(config)


@app.put("/config")
async def save_config(user_id: str = Depends(get_user_id), changes: Dict[str, Any] = Body(...)):
    try:
        config = _require_store().save_user_config(user_id, changes)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid configuration: {exc.error_count()} error(s)")
    return _dump(config)


# Devices

@app.get("/devices")
async def list_devices(user_id: str = Depends(get_user_id)):
    """List all devices of the user."""
    devices = _require_store().get_user_devices(user_id)
    return {
        "count": len(devices),
        "devices": [_dump(device) for device in devices]
    }


@app.get("/devices/weights")
async def get_device_weights(user_id: str = Depends(get_user_id)):
    """Current selection weight of each device."""
    return calculate_device_weights(_require_store().get_user_devices(user_id))


@app.post("/devices", status_code=201)
async def create_device(request: DeviceCreate, user_id: str = Depends(get_user_id)):
    device = Device(user_id=user_id, **request.model_dump())
    return _dump(_require_store().save_device(device))


@app.post("/devices/chat")
async def device_chat(request: DeviceChatRequest, user_id: str = Depends(get_user_id)):
    """
    One turn of the conversational device setup agent.

    When the agent has gathered a complete device it is saved for the user.
    """
    current_store = _require_store()
    if not text_generator:
        raise HTTPException(status_code=503, detail="Text generator not available")

    config = current_store.get_user_config(user_id)
    platform = config.platform if config else "alexa"

    agent = DeviceSetupAgent(text_generator, temperature=settings.device_setup_temperature)
    try:
        reply = await agent.reply(request.message, request.conversation_history, platform)
    except Exception as exc:
        logger.error(f"Device setup agent failed for {user_id}: {exc}", exc_info=True)
        raise HTTPException(status_code=502, detail=f"Device setup agent failed: {exc}")

    if not reply.proposal:
        return {"response": reply.response, "deviceSaved": False}

    device = current_store.save_device(Device(
        user_id=user_id,
        name=reply.proposal.name,
        formal_name=reply.proposal.formal_name,
        type=reply.proposal.type,
        platform=platform,
        command_examples=reply.proposal.command_examples,
    ))
    return {"response": reply.response, "deviceSaved": True, "device": _dump(device)}


@app.patch("/devices/{device_id}")
async def update_device(device_id: str, request: DeviceUpdate, user_id: str = Depends(get_user_id)):
    device = _require_store().update_device(user_id, device_id, request.model_dump(exclude_unset=True))
    if not device:
        raise HTTPException(status_code=404, detail=f"Device {device_id} not found")
    return _dump(device)


@app.delete("/devices/{device_id}")
async def delete_device(device_id: str, user_id: str = Depends(get_user_id)):
    if not _require_store().delete_device(user_id, device_id):
        raise HTTPException(status_code=404, detail=f"Device {device_id} not found")
    return {"status": "success", "message": f"Device {device_id} deleted"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "haunt_server.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.reload
    )
