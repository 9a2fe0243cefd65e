from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

READ_BACKENDS = ("mongodb", "firestore")
SECRET_BACKENDS = ("gcp", "env")

DEFAULT_RULES_DIR = Path(__file__).resolve().parent / "rules"


def _flag(name: str, default: str = "1") -> bool:
    return os.getenv(name, default) not in {"0", "false", "False"}


@dataclass(frozen=True, slots=True)
class Settings:
    gcp_project_id: str
    secret_backend: str
    enable_mongodb: bool
    enable_firestore: bool
    read_from: str
    mongodb_database: str
    poster_api_url: str
    poster_timeout_s: float
    catalog_ttl_hours: float
    sync_max_idle_pages: int
    sync_max_pages: int
    rules_dir: Path
    log_level: str = "INFO"

    @classmethod
    def detect(cls) -> "Settings":
        read_from = os.getenv("READ_FROM", "mongodb")
        if read_from not in READ_BACKENDS:
            raise ValueError(f"READ_FROM must be one of {', '.join(READ_BACKENDS)}, got {read_from!r}.")

        secret_backend = os.getenv("SECRET_BACKEND", "gcp")
        if secret_backend not in SECRET_BACKENDS:
            raise ValueError(f"SECRET_BACKEND must be one of {', '.join(SECRET_BACKENDS)}, got {secret_backend!r}.")

        rules_dir = Path(os.getenv("POSTER_BRIDGE_RULES_DIR", str(DEFAULT_RULES_DIR)))

        return cls(
            gcp_project_id=os.getenv("GCP_PROJECT_ID", "caffe-control-prod"),
            secret_backend=secret_backend,
            enable_mongodb=_flag("ENABLE_MONGODB"),
            enable_firestore=_flag("ENABLE_FIRESTORE"),
            read_from=read_from,
            mongodb_database=os.getenv("MONGODB_DATABASE", "easy-control"),
            poster_api_url=os.getenv("POSTER_API_URL", "https://joinposter.com/api").rstrip("/"),
            poster_timeout_s=float(os.getenv("POSTER_TIMEOUT_S", "10")),
            catalog_ttl_hours=float(os.getenv("CATALOG_TTL_HOURS", "24")),
            sync_max_idle_pages=int(os.getenv("SYNC_MAX_IDLE_PAGES", "5")),
            sync_max_pages=int(os.getenv("SYNC_MAX_PAGES", "1000")),
            rules_dir=rules_dir,
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )
