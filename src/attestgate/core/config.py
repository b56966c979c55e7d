from typing import Literal

from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Env(BaseSettings):
    PORT: int | None = 8080

    # Attestation
    ATTESTATION_ENABLED: bool = False  # Master switch, disabled means pass-through
    APP_ATTEST_ENABLED: bool = True
    PLAY_INTEGRITY_ENABLED: bool = True
    CHALLENGE_EXPIRY_SECONDS: int = 300  # 5 minutes
    CHALLENGE_PURGE_INTERVAL_SECONDS: int = 60
    VERIFICATION_TIMEOUT_SECONDS: float = 10.0

    # App Attest
    APP_BUNDLE_ID: str = "org.example.app"
    APP_DEVELOPMENT_TEAM: str = "TEAMID1234"
    APP_ATTEST_PRODUCTION: bool = False
    APP_ATTEST_ROOT_CA_PATH: str = "Apple_App_Attestation_Root_CA.pem"

    # Play Integrity
    PLAY_INTEGRITY_PACKAGE_NAME: str = "org.example.app"
    PLAY_INTEGRITY_SERVICE_ACCOUNT_FILE: str = "service_account.json"
    PLAY_INTEGRITY_REQUIRE_STRONG: bool = False
    PLAY_INTEGRITY_REQUEST_TIMEOUT_SECONDS: float = 10.0

    # Storage
    # NOTE: "memory" is only correct for a single instance, every replica
    # needs to share "postgres" otherwise counters and challenges diverge
    STORAGE_BACKEND: Literal["memory", "postgres"] = "memory"
    ATTESTATION_DB_NAME: str = "attestation"
    DB_USERNAME: str = "attestgate"
    DB_PASSWORD: str = "attestgate"
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    PG_POOL_MIN_SIZE: int = 1
    PG_POOL_MAX_SIZE: int = 10
    PG_DB_URL: str | None = None

    # HTTPX
    HTTPX_CONNECT_TIMEOUT_SECONDS: float = 30
    HTTPX_WRITE_TIMEOUT_SECONDS: float = 30
    HTTPX_POOL_TIMEOUT_SECONDS: float = 30
    HTTPX_MAX_CONNECTIONS: int = 100
    HTTPX_MAX_KEEPALIVE_CONNECTIONS: int = 20
    HTTPX_KEEPALIVE_EXPIRY_SECONDS: float = 15

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "logs/attestgate.log"
    LOG_ROTATION: str = "500 MB"
    LOG_COMPRESSION: str = "zip"
    HTTPX_LOGGING: bool = False
    ASYNCPG_LOGGING: bool = False

    # Sentry
    SENTRY_DSN: str = ""

    model_config = ConfigDict(env_file=".env")

    def __init__(self):
        super().__init__()
        if not self.PG_DB_URL:
            self.PG_DB_URL = f"postgresql://{self.DB_USERNAME}:{self.DB_PASSWORD}@{self.DB_HOST}:{self.DB_PORT}"

    @property
    def app_attest_app_id(self) -> str:
        return f"{self.APP_DEVELOPMENT_TEAM}.{self.APP_BUNDLE_ID}"

    @property
    def app_attest_active(self) -> bool:
        return self.ATTESTATION_ENABLED and self.APP_ATTEST_ENABLED

    @property
    def play_integrity_active(self) -> bool:
        return self.ATTESTATION_ENABLED and self.PLAY_INTEGRITY_ENABLED


env = Env()

ERROR_RESPONSES = {
    400: {"description": "Unsupported platform or malformed request"},
    401: {"description": "Attestation required, or the key must be re-attested"},
    403: {"description": "Attestation, assertion or replay check failed"},
}
