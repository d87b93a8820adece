"""Centralized configuration management for panel-link."""

# Load the package .env before the Config class reads os.getenv()
from pathlib import Path
from dotenv import load_dotenv
import os

ENV_PATH = Path(__file__).resolve().parent / ".env"
if ENV_PATH.exists():
    load_dotenv(dotenv_path=ENV_PATH, override=False, encoding="utf-8")

from typing import Optional, List


# Passphrase used in development when no secret is configured.
INSECURE_DEV_PASSPHRASE = "panel-link-insecure-dev-key"

VERIFICATION_MODES = ("file", "shape")

DEVELOPMENT_ENVIRONMENTS = ("development", "dev", "local", "test")


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class Config:
    """panel-link configuration.

    Reads environment variables at instance creation time so tests can
    monkeypatch the environment and build a fresh instance.
    """

    def __init__(self):
        # =========================
        # Environment
        # =========================
        self._ENVIRONMENT = (
            os.getenv("ENVIRONMENT") or os.getenv("PANEL_LINK_ENV") or "development"
        ).lower()

        # =========================
        # Secrets
        # =========================
        self._ENCRYPTION_KEY = os.getenv("PANEL_LINK_ENCRYPTION_KEY") or os.getenv("ENCRYPTION_KEY")

        # =========================
        # Bot authentication
        # =========================
        self._AUTH_ENABLED = _env_bool("PANEL_LINK_AUTH_ENABLED", "true")
        self._API_TOKEN = os.getenv("PANEL_LINK_API_TOKEN")

        # =========================
        # Panel (Resource Provider API)
        # =========================
        self._PANEL_URL = (os.getenv("PTERODACTYL_URL") or "").rstrip("/") or None
        self._HTTP_TIMEOUT = float(os.getenv("PANEL_LINK_HTTP_TIMEOUT", "15"))

        # =========================
        # Database
        # =========================
        self._DATABASE_PATH = Path(os.getenv("PANEL_LINK_DATABASE_PATH", "panel_link.db"))

        # =========================
        # Status polling
        # =========================
        self._UPDATE_INTERVAL = int(os.getenv("PANEL_LINK_UPDATE_INTERVAL", "30"))
        self._CLEANUP_INTERVAL = int(os.getenv("PANEL_LINK_CLEANUP_INTERVAL", "300"))
        self._SUBSCRIPTION_TTL = int(os.getenv("PANEL_LINK_SUBSCRIPTION_TTL", "3600"))
        self._MAX_POLL_FAILURES = int(os.getenv("PANEL_LINK_MAX_POLL_FAILURES", "3"))
        self._MAX_CONCURRENT_POLLS = int(os.getenv("PANEL_LINK_MAX_CONCURRENT_POLLS", "8"))

        # =========================
        # Rate Limiting
        # =========================
        self._RATE_LIMIT_ENABLED = _env_bool("PANEL_LINK_RATE_LIMIT_ENABLED", "true")
        self._RATE_LIMIT_WINDOW = int(os.getenv("PANEL_LINK_RATE_LIMIT_WINDOW", "60"))
        self._RATE_LIMIT_MAX = int(os.getenv("PANEL_LINK_RATE_LIMIT_MAX", "10"))

        # =========================
        # Ownership verification
        # =========================
        self._VERIFICATION_MODE = os.getenv("PANEL_LINK_VERIFICATION_MODE", "file").lower()
        self._VERIFY_FILE = os.getenv("PANEL_LINK_VERIFY_FILE", "/.panel_link_verify")

        # =========================
        # Logging
        # =========================
        self._LOG_LEVEL = os.getenv("PANEL_LINK_LOG_LEVEL", "INFO").upper()
        self._JSON_LOGGING = _env_bool("PANEL_LINK_JSON_LOGGING", "false")

        # =========================
        # Monitoring
        # =========================
        self._METRICS_ENABLED = _env_bool("PANEL_LINK_METRICS_ENABLED", "true")

        # =========================
        # Server
        # =========================
        self._HOST = os.getenv("PANEL_LINK_HOST", "0.0.0.0")
        self._PORT = int(os.getenv("PANEL_LINK_PORT", "8000"))

    # ===== Properties =====
    @property
    def ENVIRONMENT(self) -> str:
        return self._ENVIRONMENT

    @property
    def ENCRYPTION_KEY(self) -> Optional[str]:
        return self._ENCRYPTION_KEY

    @property
    def AUTH_ENABLED(self) -> bool:
        return self._AUTH_ENABLED

    @property
    def API_TOKEN(self) -> Optional[str]:
        return self._API_TOKEN

    @property
    def PANEL_URL(self) -> Optional[str]:
        return self._PANEL_URL

    @property
    def HTTP_TIMEOUT(self) -> float:
        return self._HTTP_TIMEOUT

    @property
    def DATABASE_PATH(self) -> Path:
        return self._DATABASE_PATH

    @property
    def UPDATE_INTERVAL(self) -> int:
        return self._UPDATE_INTERVAL

    @property
    def CLEANUP_INTERVAL(self) -> int:
        return self._CLEANUP_INTERVAL

    @property
    def SUBSCRIPTION_TTL(self) -> int:
        return self._SUBSCRIPTION_TTL

    @property
    def MAX_POLL_FAILURES(self) -> int:
        return self._MAX_POLL_FAILURES

    @property
    def MAX_CONCURRENT_POLLS(self) -> int:
        return self._MAX_CONCURRENT_POLLS

    @property
    def RATE_LIMIT_ENABLED(self) -> bool:
        return self._RATE_LIMIT_ENABLED

    @property
    def RATE_LIMIT_WINDOW(self) -> int:
        return self._RATE_LIMIT_WINDOW

    @property
    def RATE_LIMIT_MAX(self) -> int:
        return self._RATE_LIMIT_MAX

    @property
    def VERIFICATION_MODE(self) -> str:
        return self._VERIFICATION_MODE

    @property
    def VERIFY_FILE(self) -> str:
        return self._VERIFY_FILE

    @property
    def LOG_LEVEL(self) -> str:
        return self._LOG_LEVEL

    @property
    def JSON_LOGGING(self) -> bool:
        return self._JSON_LOGGING

    @property
    def METRICS_ENABLED(self) -> bool:
        return self._METRICS_ENABLED

    @property
    def HOST(self) -> str:
        return self._HOST

    @property
    def PORT(self) -> int:
        return self._PORT

    def is_production(self) -> bool:
        return self._ENVIRONMENT in ("production", "prod")

    def is_development(self) -> bool:
        return self._ENVIRONMENT in DEVELOPMENT_ENVIRONMENTS

    def resolve_encryption_passphrase(self) -> str:
        """Return the vault passphrase.

        Only development environments fall back to the fixed development
        passphrase; anything else (staging, production, ...) must set a secret.
        """
        if self._ENCRYPTION_KEY:
            return self._ENCRYPTION_KEY
        if not self.is_development():
            raise RuntimeError(
                "PANEL_LINK_ENCRYPTION_KEY missing; refusing to store credentials "
                f"with the built-in development key in {self._ENVIRONMENT}."
            )
        return INSECURE_DEV_PASSPHRASE

    def validate(self) -> List[str]:
        warnings = []

        if not self._ENCRYPTION_KEY:
            warnings.append(
                "PANEL_LINK_ENCRYPTION_KEY not set. Credentials are encrypted with an "
                "insecure development key"
            )

        if self._VERIFICATION_MODE not in VERIFICATION_MODES:
            warnings.append(
                f"PANEL_LINK_VERIFICATION_MODE={self._VERIFICATION_MODE!r} is not one of "
                f"{list(VERIFICATION_MODES)}; falling back to 'file'"
            )
        elif self._VERIFICATION_MODE == "shape":
            warnings.append(
                "PANEL_LINK_VERIFICATION_MODE=shape only checks the code format. "
                "Ownership is NOT proven"
            )

        if self._AUTH_ENABLED and not self._API_TOKEN:
            warnings.append("PANEL_LINK_AUTH_ENABLED=true but PANEL_LINK_API_TOKEN is empty")

        if self._MAX_CONCURRENT_POLLS < 1:
            warnings.append("PANEL_LINK_MAX_CONCURRENT_POLLS must be >= 1; using 1")

        return warnings

    def check_startup(self) -> None:
        """Fail fast on settings that are unsafe outside development."""
        if self.is_development():
            return
        self.resolve_encryption_passphrase()
        if self._VERIFICATION_MODE == "shape":
            raise RuntimeError(
                f"PANEL_LINK_VERIFICATION_MODE=shape cannot be used in {self._ENVIRONMENT}"
            )
        if self._AUTH_ENABLED and not self._API_TOKEN:
            raise RuntimeError("PANEL_LINK_API_TOKEN missing; panel-link cannot start.")

    @property
    def effective_verification_mode(self) -> str:
        if self._VERIFICATION_MODE in VERIFICATION_MODES:
            return self._VERIFICATION_MODE
        return "file"


# Global config instance (created AFTER .env is loaded)
config = Config()
