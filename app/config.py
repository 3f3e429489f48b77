"""
Application configuration with automatic environment detection
"""
import os
from typing import List, Optional
from dotenv import load_dotenv

load_dotenv()

class Settings:
    """Application settings with automatic environment detection"""

    # Environment detection
    ENV = os.getenv("ENV", "DEV").upper()
    IS_PRODUCTION = ENV == "PROD" or ENV == "PRODUCTION"
    IS_DEVELOPMENT = not IS_PRODUCTION

    # Render sets RENDER=true, Railway sets RAILWAY_ENVIRONMENT
    RENDER = os.getenv("RENDER", "").lower() == "true"
    RAILWAY = bool(os.getenv("RAILWAY_ENVIRONMENT"))
    IS_CLOUD = RENDER or RAILWAY

    # Server configuration
    HOST = os.getenv("HOST", "0.0.0.0" if IS_CLOUD else "127.0.0.1")
    PORT = int(os.getenv("PORT", 8000))

    # Database
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./storesync.db")

    # Encryption
    ENCRYPTION_KEY = os.getenv("ENCRYPTION_KEY", "your-32-character-encryption-key!!")

    @property
    def ALLOWED_ORIGINS(self) -> List[str]:
        """Get allowed CORS origins from the ALLOWED_ORIGINS environment variable"""
        origins = []
        if self.IS_DEVELOPMENT:
            origins.extend([
                "http://localhost:3000",
                "http://127.0.0.1:3000",
            ])
        env_origins = os.getenv("ALLOWED_ORIGINS", "")
        for origin in env_origins.split(","):
            origin = origin.strip()
            if origin and origin not in origins:
                origins.append(origin)
        return origins

    # Tiendanube app (partner portal)
    TIENDANUBE_APP_ID = os.getenv("TIENDANUBE_APP_ID", "")
    # Signs webhook deliveries and authenticates the OAuth code exchange
    TIENDANUBE_APP_SECRET = os.getenv("TIENDANUBE_APP_SECRET", "")
    TIENDANUBE_API_BASE_URL = os.getenv("TIENDANUBE_API_BASE_URL", "https://api.tiendanube.com/2025-03").rstrip("/")
    TIENDANUBE_AUTH_URL = os.getenv("TIENDANUBE_AUTH_URL", "https://www.tiendanube.com/apps/authorize/token")
    TIENDANUBE_USER_AGENT = os.getenv("TIENDANUBE_USER_AGENT", "StoreSync (support@storesync.app)")

    # Single-tenant fallback credential (used when no stored credential exists for this store)
    TIENDANUBE_ACCESS_TOKEN = os.getenv("TIENDANUBE_ACCESS_TOKEN", "")
    TIENDANUBE_STORE_ID = os.getenv("TIENDANUBE_STORE_ID", "")

    # Webhooks
    WEBHOOK_BASE_URL = os.getenv("WEBHOOK_BASE_URL", "").strip().rstrip("/")
    # Platform retries a delivery for up to ~48h
    WEBHOOK_DEDUP_WINDOW_SECONDS = int(os.getenv("WEBHOOK_DEDUP_WINDOW_SECONDS", 60 * 60 * 48))
    # A RECEIVED ledger entry older than this is treated as abandoned by a crashed worker
    WEBHOOK_STALE_AFTER_SECONDS = int(os.getenv("WEBHOOK_STALE_AFTER_SECONDS", 300))

    # Sync
    SYNC_PAGE_SIZE = int(os.getenv("SYNC_PAGE_SIZE", 50))
    SYNC_MAX_PAGES = int(os.getenv("SYNC_MAX_PAGES", 1000))
    # Webhook deadline on the platform side is ~10s
    UPSTREAM_TIMEOUT = float(os.getenv("UPSTREAM_TIMEOUT", 8.0))

    # Background workers (0 = disabled)
    SYNC_INTERVAL_SEC = int(os.getenv("SYNC_INTERVAL_SEC", 0))
    REPLAY_INTERVAL_SEC = int(os.getenv("REPLAY_INTERVAL_SEC", 600))

    # Logging
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO" if IS_PRODUCTION else "DEBUG").upper()

    @property
    def DEFAULT_WEBHOOK_URL(self) -> Optional[str]:
        """Callback URL registered with the platform when none is supplied."""
        if not self.WEBHOOK_BASE_URL:
            return None
        return f"{self.WEBHOOK_BASE_URL}/api/webhooks/tiendanube"

    def __str__(self):
        return f"Settings(ENV={self.ENV}, IS_PRODUCTION={self.IS_PRODUCTION}, IS_CLOUD={self.IS_CLOUD})"

# Global settings instance
settings = Settings()
