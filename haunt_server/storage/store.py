"""
SQLite-based store for haunting sessions, devices, user configuration and
orchestrator settings.

Records are kept as JSON documents (camelCase, as the web client sees them)
keyed by user id.
"""
import json
import logging
import sqlite3
from typing import Any, Dict, List, Mapping, Optional

from ..models import (
    DEFAULT_PROMPTS,
    Device,
    HauntingSession,
    OrchestratorSettings,
    UserConfig,
    VoiceCommand,
    utc_now_iso,
)
from ..orchestration.registry import SessionStateError
from ..orchestration.settings_validator import merge_settings

logger = logging.getLogger(__name__)

_DEVICE_UPDATABLE_FIELDS = {"name", "formal_name", "enabled", "frequency", "custom_prompt", "command_examples"}


def _dump(model) -> str:
    return json.dumps(model.model_dump(mode="json", by_alias=True))


class HauntingStore:
    """SQLite-based storage for the haunting service."""

    def __init__(
        self,
        db_path: str = ":memory:",
        default_min_trigger_interval: int = 5000,
        default_max_trigger_interval: int = 30000,
    ):
        """
        Initialize the store.

        Args:
            db_path: Path to SQLite database file
            default_min_trigger_interval: Used when a user has no settings yet (ms)
            default_max_trigger_interval: Used when a user has no settings yet (ms)
        """
        self.db_path = db_path
        self.default_min_trigger_interval = default_min_trigger_interval
        self.default_max_trigger_interval = default_max_trigger_interval
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path)

    def _init_db(self):
        """Initialize database schema."""
        conn = self._connect()
        cursor = conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS sessions (
                session_id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                is_active INTEGER NOT NULL,
                started_at TEXT NOT NULL,
                document TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS devices (
                device_id TEXT NOT NULL,
                user_id TEXT NOT NULL,
                created_at TEXT NOT NULL,
                document TEXT NOT NULL,
                PRIMARY KEY (user_id, device_id)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS user_configs (
                user_id TEXT PRIMARY KEY,
                document TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS orchestrator_settings (
                user_id TEXT PRIMARY KEY,
                document TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_sessions_user_active
            ON sessions (user_id, is_active)
        """)

        conn.commit()
        conn.close()
        logger.info(f"Initialized haunting store at {self.db_path}")

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def _write_session(self, cursor: sqlite3.Cursor, session: HauntingSession) -> None:
        cursor.execute(
            """INSERT OR REPLACE INTO sessions (session_id, user_id, is_active, started_at, document)
               VALUES (?, ?, ?, ?, ?)""",
            (session.session_id, session.user_id, int(session.is_active), session.started_at, _dump(session)),
        )

    def create_session(
        self, user_id: str, mode: str, command_queue: List[VoiceCommand]
    ) -> HauntingSession:
        """
        Create and persist a new active session holding the initial queue.

        Any session still marked active for the user is stopped first, so a
        user has at most one active session.
        """
        session = HauntingSession(user_id=user_id, mode=mode, command_queue=list(command_queue))

        conn = self._connect()
        cursor = conn.cursor()
        cursor.execute(
            "SELECT document FROM sessions WHERE user_id = ? AND is_active = 1",
            (user_id,),
        )
        for row in cursor.fetchall():
            stale = HauntingSession.model_validate_json(row[0])
            logger.warning(f"Stopping stale active session {stale.session_id} for {user_id}")
            self._write_session(
                cursor, stale.model_copy(update={"is_active": False, "stopped_at": utc_now_iso()})
            )
        self._write_session(cursor, session)
        conn.commit()
        conn.close()

        logger.info(f"Created haunting session {session.session_id} for {user_id}")
        return session

    def get_session(self, user_id: str, session_id: str) -> Optional[HauntingSession]:
        conn = self._connect()
        cursor = conn.cursor()
        cursor.execute(
            "SELECT document FROM sessions WHERE user_id = ? AND session_id = ?",
            (user_id, session_id),
        )
        row = cursor.fetchone()
        conn.close()
        return HauntingSession.model_validate_json(row[0]) if row else None

    def get_active_session(self, user_id: str) -> Optional[HauntingSession]:
        """Most recently started active session for the user, if any."""
        conn = self._connect()
        cursor = conn.cursor()
        cursor.execute(
            """SELECT document FROM sessions
               WHERE user_id = ? AND is_active = 1
               ORDER BY started_at DESC
               LIMIT 1""",
            (user_id,),
        )
        row = cursor.fetchone()
        conn.close()
        return HauntingSession.model_validate_json(row[0]) if row else None

    def _require_session(self, user_id: str, session_id: str) -> HauntingSession:
        session = self.get_session(user_id, session_id)
        if session is None:
            raise SessionStateError(f"Session {session_id} not found")
        return session

    def stop_session(self, user_id: str, session_id: str) -> HauntingSession:
        """
        Mark a session stopped.

        Raises:
            SessionStateError: If session doesn't exist
        """
        session = self._require_session(user_id, session_id)
        session = session.model_copy(update={"is_active": False, "stopped_at": utc_now_iso()})

        conn = self._connect()
        cursor = conn.cursor()
        self._write_session(cursor, session)
        conn.commit()
        conn.close()

        logger.info(f"Stopped haunting session {session_id}")
        return session

    def update_command_queue(
        self, user_id: str, session_id: str, command_queue: List[VoiceCommand]
    ) -> None:
        """
        Replace the stored command queue of a session.

        Raises:
            SessionStateError: If session doesn't exist
        """
        session = self._require_session(user_id, session_id)
        session = session.model_copy(update={"command_queue": list(command_queue)})

        conn = self._connect()
        cursor = conn.cursor()
        self._write_session(cursor, session)
        conn.commit()
        conn.close()
        logger.debug(f"Synced {len(command_queue)} command(s) to session {session_id}")

    def mark_command_spoken(self, user_id: str, session_id: str, command_id: str) -> None:
        """
        Set spoken=True on one stored command. Idempotent.

        Raises:
            SessionStateError: If the session or its queue doesn't exist
        """
        session = self._require_session(user_id, session_id)
        if not session.command_queue:
            raise SessionStateError(f"Session {session_id} has no command queue")

        updated = [
            cmd.model_copy(update={"spoken": True}) if cmd.command_id == command_id else cmd
            for cmd in session.command_queue
        ]
        self.update_command_queue(user_id, session_id, updated)

    # ------------------------------------------------------------------
    # Devices
    # ------------------------------------------------------------------

    def save_device(self, device: Device) -> Device:
        """Insert or replace a device. A blank default prompt gets the per-type default."""
        if not device.user_id:
            raise ValueError("Device must belong to a user")
        if not device.default_prompt:
            device = device.model_copy(update={"default_prompt": DEFAULT_PROMPTS[device.type]})

        conn = self._connect()
        cursor = conn.cursor()
        cursor.execute(
            """INSERT OR REPLACE INTO devices (device_id, user_id, created_at, document)
               VALUES (?, ?, ?, ?)""",
            (device.id, device.user_id, device.created_at, _dump(device)),
        )
        conn.commit()
        conn.close()
        logger.debug(f"Saved device {device.id} ({device.name}) for {device.user_id}")
        return device

    def get_user_devices(self, user_id: str) -> List[Device]:
        """All devices of a user, oldest first."""
        conn = self._connect()
        cursor = conn.cursor()
        cursor.execute(
            "SELECT document FROM devices WHERE user_id = ? ORDER BY created_at ASC, rowid ASC",
            (user_id,),
        )
        rows = cursor.fetchall()
        conn.close()
        return [Device.model_validate_json(row[0]) for row in rows]

    def get_device(self, user_id: str, device_id: str) -> Optional[Device]:
        conn = self._connect()
        cursor = conn.cursor()
        cursor.execute(
            "SELECT document FROM devices WHERE user_id = ? AND device_id = ?",
            (user_id, device_id),
        )
        row = cursor.fetchone()
        conn.close()
        return Device.model_validate_json(row[0]) if row else None

    def update_device(self, user_id: str, device_id: str, changes: Mapping[str, Any]) -> Optional[Device]:
        """
        Apply a partial update to a device.

        Returns:
            The updated device, or None if it doesn't exist.
        """
        device = self.get_device(user_id, device_id)
        if device is None:
            return None

        merged = device.model_dump(by_alias=False)
        merged.update({k: v for k, v in changes.items() if k in _DEVICE_UPDATABLE_FIELDS})
        merged.pop("selection_weight", None)
        return self.save_device(Device.model_validate(merged))

    def delete_device(self, user_id: str, device_id: str) -> bool:
        """
        Delete a device.

        Returns:
            True if the device was deleted, False if not found
        """
        conn = self._connect()
        cursor = conn.cursor()
        cursor.execute(
            "DELETE FROM devices WHERE user_id = ? AND device_id = ?",
            (user_id, device_id),
        )
        deleted = cursor.rowcount > 0
        conn.commit()
        conn.close()

        if not deleted:
            logger.warning(f"Device {device_id} not found for deletion")
        return deleted

    # ------------------------------------------------------------------
    # User configuration
    # ------------------------------------------------------------------

    def get_user_config(self, user_id: str) -> Optional[UserConfig]:
        conn = self._connect()
        cursor = conn.cursor()
        cursor.execute("SELECT document FROM user_configs WHERE user_id = ?", (user_id,))
        row = cursor.fetchone()
        conn.close()
        return UserConfig.model_validate_json(row[0]) if row else None

    def save_user_config(self, user_id: str, changes: Mapping[str, Any]) -> UserConfig:
        """Merge a partial config update over the existing config (or defaults)."""
        existing = self.get_user_config(user_id)
        base: Dict[str, Any] = existing.model_dump() if existing else {}
        incoming = UserConfig.model_validate({"user_id": user_id, **changes}).model_dump(
            exclude_unset=True
        )
        base.update(incoming)
        base["user_id"] = user_id
        base["updated_at"] = utc_now_iso()
        if existing:
            base["created_at"] = existing.created_at
        config = UserConfig.model_validate(base)

        conn = self._connect()
        cursor = conn.cursor()
        cursor.execute(
            "INSERT OR REPLACE INTO user_configs (user_id, document) VALUES (?, ?)",
            (user_id, _dump(config)),
        )
        conn.commit()
        conn.close()
        logger.info(f"Saved configuration for {user_id}")
        return config

    # ------------------------------------------------------------------
    # Orchestrator settings
    # ------------------------------------------------------------------

    def _write_settings(self, settings: OrchestratorSettings) -> None:
        conn = self._connect()
        cursor = conn.cursor()
        cursor.execute(
            "INSERT OR REPLACE INTO orchestrator_settings (user_id, document) VALUES (?, ?)",
            (settings.user_id, _dump(settings)),
        )
        conn.commit()
        conn.close()

    def get_settings(self, user_id: str) -> OrchestratorSettings:
        """Settings for a user; defaults are created and saved on first read."""
        conn = self._connect()
        cursor = conn.cursor()
        cursor.execute("SELECT document FROM orchestrator_settings WHERE user_id = ?", (user_id,))
        row = cursor.fetchone()
        conn.close()

        if row:
            return OrchestratorSettings.model_validate_json(row[0])

        settings = OrchestratorSettings(
            user_id=user_id,
            min_trigger_interval=self.default_min_trigger_interval,
            max_trigger_interval=self.default_max_trigger_interval,
        )
        self._write_settings(settings)
        return settings

    def update_settings(self, user_id: str, update: Mapping[str, Any]) -> OrchestratorSettings:
        """
        Validate and apply a partial settings update.

        Raises:
            SettingsValidationError: if the update is rejected (nothing is saved)
        """
        settings = merge_settings(self.get_settings(user_id), update)
        self._write_settings(settings)
        logger.info(
            f"Updated settings for {user_id}: "
            f"{settings.min_trigger_interval}-{settings.max_trigger_interval}ms, "
            f"epilepsy_mode={settings.epilepsy_mode}"
        )
        return settings
