"""
Settings service with atomic writes and thread-safe access.
"""
import json
import os
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Set, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from watermeter.config import defaults


class SettingsSchema(BaseModel):
    """Complete settings schema"""

    model_config = ConfigDict(extra="allow")

    class SerialSettings(BaseModel):
        device: str = defaults.SERIAL_DEVICE
        baud: int = defaults.SERIAL_BAUD
        reconnect_delay: float = defaults.RECONNECT_DELAY
        read_timeout: float = defaults.READ_TIMEOUT

    class HttpSettings(BaseModel):
        host: str = defaults.HTTP_HOST
        port: int = defaults.HTTP_PORT

    class StorageSettings(BaseModel):
        enabled: bool = True
        path: str = defaults.STATE_FILE
        save_delay: float = defaults.SAVE_DELAY

    class RemoteSettings(BaseModel):
        enabled: bool = True
        base_url: str = defaults.OPENHAB_URL
        item: str = defaults.OPENHAB_ITEM
        timeout: float = defaults.OPENHAB_TIMEOUT

    class CalibrationSettings(BaseModel):
        auto_init: bool = True
        default_p0: int = defaults.DEFAULT_P0
        default_p1: int = defaults.DEFAULT_P1

    class ReconciliationSettings(BaseModel):
        command_delay: float = defaults.COMMAND_DELAY
        recent_usage_limit: float = defaults.RECENT_USAGE_LIMIT
        manual_tolerance: float = defaults.MANUAL_TOLERANCE

    class MetaSettings(BaseModel):
        version: int = 1
        updated_at: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    serial: SerialSettings = Field(default_factory=SerialSettings)
    http: HttpSettings = Field(default_factory=HttpSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    remote: RemoteSettings = Field(default_factory=RemoteSettings)
    calibration: CalibrationSettings = Field(default_factory=CalibrationSettings)
    reconciliation: ReconciliationSettings = Field(default_factory=ReconciliationSettings)
    meta: MetaSettings = Field(default_factory=MetaSettings)
    debug: bool = False

    @property
    def remote_active(self) -> bool:
        return self.remote.enabled and bool(self.remote.base_url.strip())


class SettingsService:
    """Thread-safe settings service with atomic writes"""

    def __init__(self, config_path: Path):
        self.config_path = config_path
        self._lock = threading.Lock()

    def _load_raw(self) -> Dict[str, Any]:
        """Load raw settings without validation"""
        if not self.config_path.exists():
            return {}

        try:
            with open(self.config_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError):
            return {}
        return data if isinstance(data, dict) else {}

    def _save_atomic(self, data: Dict[str, Any]) -> None:
        """Write settings atomically"""
        if not isinstance(data.get("meta"), dict):
            data["meta"] = {}
        data["meta"]["version"] = data["meta"].get("version", 0) + 1
        data["meta"]["updated_at"] = datetime.now(timezone.utc).isoformat()

        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.config_path.with_suffix(".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
            f.flush()
            os.fsync(f.fileno())

        os.chmod(tmp_path, 0o600)
        os.replace(tmp_path, self.config_path)

    def load(self) -> SettingsSchema:
        """Load and validate settings"""
        with self._lock:
            data = self._load_raw()
            try:
                return SettingsSchema(**data)
            except ValidationError:
                # Fall back to defaults
                return SettingsSchema()

    def save(self, updates: Dict[str, Any]) -> Tuple[SettingsSchema, Set[str]]:
        """
        Merge updates and return (updated settings, changed fields)
        """
        with self._lock:
            current_data = self._load_raw()
            changed_fields: Set[str] = set()

            for key, value in updates.items():
                if key == "meta":
                    continue
                current = current_data.get(key)
                if isinstance(current, dict) and isinstance(value, dict):
                    merged = {**current, **value}
                else:
                    merged = value
                if current != merged:
                    changed_fields.add(key)
                current_data[key] = merged

            # Validate before touching disk
            settings = SettingsSchema(**current_data)

            if not changed_fields:
                return settings, changed_fields

            self._save_atomic(current_data)
            return SettingsSchema(**current_data), changed_fields


_service_instance: Optional[SettingsService] = None
_service_lock = threading.Lock()


def default_config_path() -> Path:
    override = os.getenv("WATERMETER_CONFIG")
    if override:
        return Path(override)
    return Path.home() / ".watermeter" / "config.json"


def get_settings_service(config_path: Optional[Path] = None) -> SettingsService:
    """Return the shared settings service"""
    global _service_instance

    with _service_lock:
        if _service_instance is None:
            _service_instance = SettingsService(config_path or default_config_path())

        return _service_instance
