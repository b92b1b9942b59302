"""Configuration management for the airgapctl application."""
import os
from dotenv import load_dotenv

# Load environment variables from .env file if it exists
load_dotenv()

class Config:
    """Application configuration with sensible defaults."""

    # Timeouts (in seconds)
    SSH_CONNECT_TIMEOUT: int = int(os.getenv("SSH_CONNECT_TIMEOUT", "10"))
    COMMAND_TIMEOUT: int = int(os.getenv("COMMAND_TIMEOUT", "600"))  # 10 minutes
    REGISTRY_TIMEOUT: int = int(os.getenv("REGISTRY_TIMEOUT", "30"))

    # Retry configuration (connection establishment only)
    SSH_CONNECT_RETRIES: int = int(os.getenv("SSH_CONNECT_RETRIES", "3"))
    RETRY_DELAY: float = float(os.getenv("RETRY_DELAY", "1.0"))

    # Concurrency
    MAX_WORKERS: int = int(os.getenv("MAX_WORKERS", "20"))

    # Remote layout
    REMOTE_TMP_DIR: str = os.getenv("REMOTE_TMP_DIR", "/tmp/k8s-offline-install")

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
    LOG_FILE: str = os.getenv("AIRGAPCTL_LOG_FILE", "")
    LOG_FORMAT: str = os.getenv(
        "LOG_FORMAT",
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    # Security
    REDACT_KEYS: tuple = ("password", "secret", "token", "certificate-key")

    @classmethod
    def redact(cls, text: str) -> str:
        """Mask values following sensitive flags in a command line."""
        parts = text.split()
        for i, part in enumerate(parts[:-1]):
            if any(part.lstrip("-").startswith(k) for k in cls.REDACT_KEYS):
                parts[i + 1] = "****"
        return " ".join(parts)
