from pathlib import Path
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
import yaml

class AppSettings(BaseSettings):
    name: str = "Echelon"
    version: str = "1.0.0"

class PathSettings(BaseSettings):
    db_path: Path = Path("./data/echelon.db")

class SecuritySettings(BaseSettings):
    """
    Optional API guardrails. Authentication itself lives outside this service;
    the upstream auth layer forwards the authenticated user id in X-User-Id.
    """
    api_token: Optional[str] = None  # Bearer token or X-API-Key
    max_upload_mb: int = 2  # Content-Length guard
    sqlite_timeout_seconds: float = 10.0

class LoggingSettings(BaseSettings):
    log_requests: bool = True
    level: str = "INFO"

class HierarchySettings(BaseSettings):
    """
    Unit-level ordering and per-level leadership vocabulary.
    unit_levels is ordered from lowest to highest echelon.
    """
    unit_levels: list[str] = [
        "Team",
        "Squad",
        "Section",
        "Platoon",
        "Company",
        "Battalion",
        "Brigade",
        "Division",
    ]
    leadership_roles: dict[str, list[str]] = {
        "Battalion": ["Commander", "Executive Officer", "Command Sergeant Major", "Battalion Admin"],
        "Company": ["Commander", "Executive Officer", "First Sergeant", "Company Admin"],
        "Platoon": ["Platoon Leader", "Platoon Sergeant", "Platoon Admin"],
        "Squad": ["Squad Leader", "Assistant Squad Leader"],
        "Team": ["Team Leader"],
    }
    admin_override_enabled: bool = True
    manage_requires_leadership: bool = True
    referral_code_length: int = 8

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_nested_delimiter="__", env_file=".env", extra="ignore")
    app: AppSettings = AppSettings()
    paths: PathSettings = PathSettings()
    security: SecuritySettings = SecuritySettings()
    logging: LoggingSettings = LoggingSettings()
    hierarchy: HierarchySettings = HierarchySettings()

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "Settings":
        default_path = Path("config/settings.yaml")
        path = config_path or (default_path if default_path.exists() else None)

        if not path:
            return cls()

        with open(path, "r") as f:
            config_data = yaml.safe_load(f) or {}

        return cls(**config_data)

settings = Settings.load()
