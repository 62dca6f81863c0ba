from pydantic_settings import BaseSettings
from pydantic import Field, validator
from dotenv import load_dotenv

load_dotenv("src/healing_dashboard/.env")

class Settings(BaseSettings):
    # Service Configuration
    PUBLIC_BASE_URL: str = Field(default="", description="Prefix for report/artifact URLs returned to the dashboard")

    # Test Runner Configuration
    TEST_CLASSES_DIR: str = Field(default="test-classes", description="Directory holding the <testClass>.spec.js files")
    RUNNER_COMMAND: str = Field(default="npx playwright test", description="Command used to launch the browser test runner")
    DEFAULT_BROWSER: str = Field(default="chromium", description="Browser project used when a request names none")

    # Repair Proposer Configuration
    REPAIR_PROPOSER_URL: str = Field(default="http://localhost:3009/fix-locator", description="Endpoint of the external locator repair proposer")
    REPAIR_PROPOSER_TIMEOUT: int = Field(default=60, description="Timeout for repair proposer calls (in seconds)")

    # Tracking Configuration
    TRACKING_CONFIG_PATH: str = Field(default="config/tracking.yaml", description="YAML file with watchdog/timeout tuning")
    LOG_LEVEL: str = Field(default="INFO", description="Root log level")
    LOG_DIR: str = Field(default="logs", description="Directory for rotating log files")

    @validator('DEFAULT_BROWSER')
    def validate_default_browser(cls, v):
        """Validate that DEFAULT_BROWSER is a known Playwright project."""
        if v.lower() not in ['chromium', 'firefox', 'webkit']:
            raise ValueError(f"DEFAULT_BROWSER must be 'chromium', 'firefox' or 'webkit', got '{v}'")
        return v.lower()

    @validator('LOG_LEVEL')
    def validate_log_level(cls, v):
        """Validate that LOG_LEVEL is a standard logging level name."""
        if v.upper() not in ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']:
            raise ValueError(f"LOG_LEVEL must be a standard logging level, got '{v}'")
        return v.upper()

    @validator('REPAIR_PROPOSER_TIMEOUT')
    def validate_repair_proposer_timeout(cls, v):
        """Validate that REPAIR_PROPOSER_TIMEOUT is positive."""
        if v <= 0:
            raise ValueError(f"REPAIR_PROPOSER_TIMEOUT must be positive, got {v}")
        return v

    class Config:
        env_file = ".env"
        env_file_encoding = 'utf-8'
        extra = 'allow'  # Allow extra fields from .env file

settings = Settings()
