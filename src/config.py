from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Central configuration loaded from environment / .env file."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    # Claude Code data directory (empty = $HOME/.claude)
    claude_dir: str = ""

    # Rolling windows scanned from the session logs
    session_window_hours: int = 5
    weekly_window_hours: int = 168  # 7 days

    # Refresh loop
    refresh_interval_seconds: int = 300  # 5 minutes
    fetch_days: int = 30

    # Usage provider: "ccusage" (external CLI) | "native" (local logs + pricing)
    usage_provider: str = "ccusage"
    ccusage_path: str = ""  # empty = auto-discover
    ccusage_timeout: float = 0  # seconds, 0 = wait forever

    # Rate limit estimation, used only for warnings.
    # Estimated caps, Anthropic does not publish exact numbers
    session_limit_tokens: int = 15_000_000
    weekly_limit_tokens: int = 150_000_000
    rate_limit_warn_percent: float = 80.0

    # API
    api_host: str = "127.0.0.1"
    api_port: int = 8000

    # Logging
    log_level: str = "INFO"

    # Notifications (optional, Slack / Telegram)
    slack_webhook_url: str = ""
    telegram_bot_token: str = ""
    telegram_chat_id: str = ""


settings = Settings()
