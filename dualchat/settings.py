# dualchat/settings.py
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Manages the application's settings, loading from environment variables
    and .env files.

    A single instance is built by the entry point and handed to every
    component that needs it. Nothing in the package reads settings from a
    module-level global.
    """
    model_config = SettingsConfigDict(env_file='.env', env_file_encoding='utf-8', extra='ignore')

    # Application settings
    LOG_LEVEL: str = "INFO"
    SERVICE_NAME: str = "Dual-Transport Chat Server"
    SERVICE_VERSION: str = "2.0.0"
    DEFAULT_SENDER_ID: str = "demo-user"

    # Server settings
    SERVER_HOST: str = "0.0.0.0"
    HTTP_PORT: int = 3000
    WS_PORT: int = 3001

    # Content store (IPFS HTTP API) settings
    IPFS_API_URL: str = "http://ipfs:5001/api/v0"
    IPFS_TIMEOUT: float = 15.0
    IPFS_PUBSUB_ENABLE: bool = False
    PUBSUB_TIMEOUT: float = 2.0
    IPFS_GATEWAYS: str = "https://cloudflare-ipfs.com,https://ipfs.io"
    IPFS_LOCAL_GATEWAY: str = "http://localhost:8080"

    # Delivery settings
    HEALTH_INTERVAL: float = 30.0
    LIVE_SEND_TIMEOUT: float = 2.0
    DISPATCH_TIMEOUT: float = 20.0

    @property
    def gateway_list(self) -> List[str]:
        return [g.strip() for g in self.IPFS_GATEWAYS.split(",") if g.strip()]

    @property
    def content_store_enabled(self) -> bool:
        return bool(self.IPFS_API_URL.strip())
