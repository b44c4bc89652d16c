"""Configuration loaded from environment (.env) and defaults."""

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

# Locate the project root .env file regardless of CWD
_THIS_DIR = Path(__file__).resolve().parent          # adgen/
_PROJECT_ROOT = _THIS_DIR.parent
_ENV_FILE = _PROJECT_ROOT / ".env"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=str(_ENV_FILE) if _ENV_FILE.exists() else ".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Generation service
    adgen_api_base_url: str = "http://localhost:5000"

    # Bearer token; normally supplied by the login flow, env is a convenience for the CLI
    adgen_api_token: str | None = None

    # Poll cadence in seconds
    adgen_poll_interval: float = 3.0

    # Consecutive transient poll failures tolerated before surfacing the error
    adgen_poll_retry_budget: int = 10

    # Per-request timeout in seconds (streams use it for connect and write only)
    adgen_request_timeout: float = 30.0

    # Idle time allowed between progress-stream chunks; unset waits indefinitely
    adgen_stream_read_timeout: float | None = None

    # EventSource-style servers expect the token in the query string
    adgen_stream_token_in_query: bool = True

    # Items per job shown unobscured without a paid subscription
    adgen_free_items_per_job: int = 2

    # Where saved creatives are downloaded
    adgen_download_dir: str = "./downloads"

    @property
    def api_base_url(self) -> str:
        return self.adgen_api_base_url.rstrip("/")

    @property
    def download_dir(self) -> Path:
        """Download directory as Path.

        Relative paths are resolved against the project root (not CWD).
        """
        p = Path(self.adgen_download_dir)
        if not p.is_absolute():
            return (_PROJECT_ROOT / p).resolve()
        return p.resolve()

    def ensure_dirs(self) -> None:
        """Ensure the download directory exists."""
        self.download_dir.mkdir(parents=True, exist_ok=True)


def get_settings() -> Settings:
    settings = Settings()
    settings.ensure_dirs()
    return settings
