from pydantic_settings import BaseSettings
from pydantic import field_validator
from pathlib import Path


class Settings(BaseSettings):
    """Application settings - all configurable via environment variables"""

    # ==========================================
    # Application
    # ==========================================
    APP_NAME: str = "ForgeLoop"
    ENVIRONMENT: str = "development"
    DEBUG: bool = False

    # ==========================================
    # Logging
    # ==========================================
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "logs/forgeloop.log"  # Empty disables the file handler

    # ==========================================
    # Paths
    # ==========================================
    USER_PROJECTS_PATH: str = "./user-projects"
    DATA_DIR: str = "./data"
    STATE_FILE_NAME: str = "running-projects.json"

    # ==========================================
    # Ports
    # ==========================================
    BASE_PORT: int = 3002
    PORT_MAX_ATTEMPTS: int = 10
    PORT_PROBE_HOST: str = "127.0.0.1"

    # ==========================================
    # Project State Store
    # ==========================================
    STATE_PERSIST_INTERVAL: float = 30.0  # seconds
    STATE_CLEANUP_INTERVAL: float = 60.0  # seconds

    # ==========================================
    # Process Supervisor
    # ==========================================
    SERVER_READY_POLL_INTERVAL: float = 1.0
    SERVER_READY_MAX_ATTEMPTS: int = 10
    SERVER_STOP_GRACE_SECONDS: float = 5.0
    INSTALL_TIMEOUT: int = 300

    # ==========================================
    # Build validation / Repair loop
    # ==========================================
    BUILD_TIMEOUT: int = 300
    RUNTIME_PROBE_TIMEOUT: float = 15.0
    DEV_PREP_TIMEOUT: float = 30.0
    DEV_PREP_SETTLE_SECONDS: float = 2.0
    REPAIR_MAX_ATTEMPTS: int = 3
    MAX_ERRORS_IN_SUMMARY: int = 10
    QUICK_FIX_SETTLE_SECONDS: float = 1.0
    LLM_FIX_FAILURE_BACKOFF: float = 2.0

    # ==========================================
    # Generation
    # ==========================================
    TASK_DELAY_SECONDS: float = 1.0

    # ==========================================
    # AI API Keys
    # ==========================================
    ANTHROPIC_API_KEY: str = ""
    ANTHROPIC_BASE_URL: str = ""  # Empty means use default Anthropic URL

    # Claude Models
    CLAUDE_MODEL: str = "claude-sonnet-4-20250514"
    CLAUDE_MAX_TOKENS: int = 8192
    CLAUDE_TEMPERATURE: float = 0.3
    CLAUDE_REQUEST_TIMEOUT: int = 300
    CLAUDE_CONNECT_TIMEOUT: int = 60
    CLAUDE_MAX_RETRIES: int = 3
    CLAUDE_RETRY_BASE_DELAY: float = 2.0  # seconds
    CLAUDE_RETRY_MAX_DELAY: float = 30.0  # seconds

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignore extra fields in .env that aren't defined in Settings

    @field_validator("BASE_PORT")
    @classmethod
    def validate_base_port(cls, v: int) -> int:
        if not 0 < v < 65536:
            raise ValueError(f"BASE_PORT must be between 1 and 65535, got {v}")
        return v

    @field_validator("PORT_MAX_ATTEMPTS", "SERVER_READY_MAX_ATTEMPTS", "REPAIR_MAX_ATTEMPTS", "MAX_ERRORS_IN_SUMMARY")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Attempt counts and limits must be at least 1")
        return v

    @property
    def USER_PROJECTS_DIR(self) -> Path:
        return Path(self.USER_PROJECTS_PATH)

    @property
    def STATE_FILE(self) -> Path:
        return Path(self.DATA_DIR) / self.STATE_FILE_NAME


settings = Settings()
