"""Application configuration."""

from pathlib import Path

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

LEDGER_BACKENDS = ("memory", "redis")


class Settings(BaseSettings):
    """
    Application settings.

    Environment variables will be loaded and validated using Pydantic.
    """

    app_name: str = "Program Analysis Platform"
    version: str = "0.1.0"
    api_prefix: str = "/api/v1"

    # CORS Settings
    cors_origins: list[str] = ["*"]  # Default to allow all in development
    cors_allow_credentials: bool = False

    # Storage Settings
    STORE_PATH: Path = Path("data")

    # Ledger Settings
    LEDGER_BACKEND: str = "memory"
    LEDGER_LOCK_TIMEOUT: float = Field(default=5.0, gt=0)

    # Redis Settings (only used by the redis ledger backend)
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_QUEUE_KEY: str = "pap:queue"
    REDIS_LOCK_KEY: str = "pap:ledger-lock"
    REDIS_LEASE_PREFIX: str = "pap:lease:"

    # Sandbox Settings
    SANDBOX_SLOTS: int = 2
    SANDBOX_TIMEOUT_SECONDS: float = Field(default=300.0, gt=0)
    SANDBOX_COMMAND: list[str] = Field(
        default=[
            "docker",
            "run",
            "--rm",
            "--name",
            "{name}",
            "--network",
            "none",
            "--memory",
            "1g",
            "-v",
            "{workspace}:/test",
            "pap-analysis",
        ],
        description=(
            "Command run per attempt; {workspace} is the package directory "
            "and {name} a unique attempt name"
        ),
    )
    SANDBOX_TEARDOWN_COMMAND: list[str] = Field(
        default=["docker", "rm", "-f", "{name}"],
        description="Command run after every attempt to reclaim the sandbox",
    )
    SANDBOX_INTERFACE_HEADER: Path | None = None

    # Dispatch Settings
    MAX_ATTEMPTS: int = 3
    DISPATCH_POLL_INTERVAL: float = Field(default=0.5, gt=0)
    DISPATCHER_ENABLED: bool = True
    ATTEMPT_LEASE_SECONDS: float = Field(default=30.0, gt=0)
    RECOVERY_INTERVAL_SECONDS: float = Field(default=60.0, gt=0)

    # Admission Settings
    MAX_ARCHIVE_BYTES: int = Field(default=8 * 1024 * 1024, gt=0)
    MAX_ARCHIVE_ENTRIES: int = Field(default=512, gt=0)
    MAX_UNCOMPRESSED_BYTES: int = Field(default=16 * 1024 * 1024, gt=0)
    MAX_PROGRAM_BYTES: int = Field(default=256 * 1024, gt=0)
    MAX_TEST_CASE_BYTES: int = Field(default=1024, gt=0)

    # Logging Settings
    LOG_LEVEL: str = "INFO"
    JSON_LOGS: bool = True

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="allow",  # Allow extra fields in environment
    )

    @field_validator("LEDGER_BACKEND")
    @classmethod
    def validate_ledger_backend(cls, value: str) -> str:
        """Only known ledger backends are accepted."""
        value = value.lower()
        if value not in LEDGER_BACKENDS:
            raise ValueError(
                f"Unsupported ledger backend: {value}. "
                f"Supported backends: {', '.join(LEDGER_BACKENDS)}"
            )
        return value

    @field_validator("MAX_ATTEMPTS", "SANDBOX_SLOTS")
    @classmethod
    def validate_positive(cls, value: int) -> int:
        """Attempt limit and pool size must be at least one."""
        if value < 1:
            raise ValueError("must be at least 1")
        return value

    @model_validator(mode="after")
    def validate_origins(self) -> "Settings":
        """Validate CORS origins."""
        if self.cors_origins == ["*"]:
            self.cors_origins = [
                "http://localhost",
                "http://localhost:8000",
                "http://localhost:3000",
            ]
        return self

    @model_validator(mode="after")
    def use_test_configs_for_testing(self) -> "Settings":
        """Use test Redis database for tests to ensure isolation."""
        import os

        if os.getenv("TESTING") == "true":
            # Use TEST_REDIS_URL if provided, otherwise switch to database 1
            test_redis_url = os.getenv("TEST_REDIS_URL")
            if test_redis_url:
                self.REDIS_URL = test_redis_url
            elif self.REDIS_URL.endswith("/0"):
                self.REDIS_URL = self.REDIS_URL[:-2] + "/1"
            elif not self.REDIS_URL.endswith("/1"):
                if self.REDIS_URL.endswith("/"):
                    self.REDIS_URL = self.REDIS_URL + "1"
                else:
                    self.REDIS_URL = self.REDIS_URL + "/1"
        return self


# Create settings instance
settings = Settings()
