import os
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

from interview_scheduling.core.paths import resolve_repo_path


def _env_files() -> list[str]:
    base = resolve_repo_path(".env")
    env = os.getenv("SCHED_ENVIRONMENT", "").strip().lower()
    files = [str(base)]
    if env and env != "development":
        files.append(str(resolve_repo_path(f".env.{env}")))
    else:
        files.append(str(resolve_repo_path(".env.local")))
    return files


class Settings(BaseSettings):
    app_name: str = "Interview Scheduling"
    environment: str = "development"

    database_url: str = "sqlite+aiosqlite:///./scheduling.db"

    auth_mode: Literal["dev", "header"] = "dev"

    enable_calendar: bool = False
    google_client_id: str = ""
    google_client_secret: str = ""
    google_token_uri: str = "https://oauth2.googleapis.com/token"
    google_application_credentials: str = ""
    calendar_id: str = "primary"
    microsoft_graph_url: str = "https://graph.microsoft.com/v1.0"
    calendar_request_timeout_seconds: float = 10.0

    default_timezone: str = "UTC"
    public_app_origin: str = ""
    public_app_base_path: str = ""

    enable_jobs: bool = True
    operation_retry_interval_minutes: int = 5

    model_config = SettingsConfigDict(env_prefix="SCHED_", env_file=_env_files(), extra="ignore")


settings = Settings()
