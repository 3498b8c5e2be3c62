"""Runtime settings read from ``PROMPTFORGE_*`` environment variables."""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

DEFAULT_KDF_ITERATIONS = 100_000


def _bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    """Local storage locations, generation defaults and dispatch tuning."""

    data_dir: Path = Path("~/.promptforge").expanduser()
    sqlite_path: Optional[Path] = None
    kdf_iterations: int = DEFAULT_KDF_ITERATIONS
    stream: bool = True
    temperature: float = 0.7
    max_tokens: int = 2048
    retry_attempts: int = 2
    retry_delay: float = 1.0
    flush_interval: float = 0.5
    request_timeout: Optional[float] = 60.0
    ollama_host: str = "http://localhost:11434"
    history_limit: int = 50
    master_password: Optional[str] = None
    log_level: str = "INFO"

    def __post_init__(self):
        if self.kdf_iterations < 1:
            raise ValueError("kdf_iterations must be positive")
        if self.retry_attempts < 0:
            raise ValueError("retry_attempts cannot be negative")
        if self.retry_delay < 0 or self.flush_interval < 0:
            raise ValueError("retry_delay and flush_interval cannot be negative")

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        source = os.environ if env is None else env
        data_dir = Path(
            source.get("PROMPTFORGE_DATA_DIR", "~/.promptforge")
        ).expanduser()
        sqlite_path = Path(
            source.get("PROMPTFORGE_SQLITE_PATH", str(data_dir / "promptforge.sqlite"))
        ).expanduser()
        timeout = source.get("PROMPTFORGE_REQUEST_TIMEOUT", "60")
        return cls(
            data_dir=data_dir,
            sqlite_path=sqlite_path,
            kdf_iterations=int(
                source.get("PROMPTFORGE_KDF_ITERATIONS", DEFAULT_KDF_ITERATIONS)
            ),
            stream=_bool(source.get("PROMPTFORGE_STREAM", "true")),
            temperature=float(source.get("PROMPTFORGE_TEMPERATURE", "0.7")),
            max_tokens=int(source.get("PROMPTFORGE_MAX_TOKENS", "2048")),
            retry_attempts=int(source.get("PROMPTFORGE_RETRY_ATTEMPTS", "2")),
            retry_delay=float(source.get("PROMPTFORGE_RETRY_DELAY", "1.0")),
            flush_interval=float(source.get("PROMPTFORGE_FLUSH_INTERVAL", "0.5")),
            request_timeout=float(timeout) if timeout else None,
            ollama_host=source.get("PROMPTFORGE_OLLAMA_HOST", "http://localhost:11434"),
            history_limit=int(source.get("PROMPTFORGE_HISTORY_LIMIT", "50")),
            master_password=source.get("PROMPTFORGE_MASTER_PASSWORD") or None,
            log_level=source.get("LOG_LEVEL", "INFO").upper(),
        )

    def ensure_directories(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        if self.sqlite_path is not None:
            self.sqlite_path.parent.mkdir(parents=True, exist_ok=True)
