import logging, os
from dataclasses import dataclass

from .errors import ConfigurationError

REQUIRED_ENV = ("TENANT_ID", "CLIENT_ID", "CLIENT_SECRET")

DEFAULT_ARM_ENDPOINT = "https://management.azure.com"
DEFAULT_LOGIN_AUTHORITY = "login.microsoftonline.com"
DEFAULT_METER_CATEGORY = "Microsoft Defender for Cloud"


@dataclass(frozen=True)
class Settings:
    tenant_id: str
    client_id: str
    client_secret: str
    arm_endpoint: str = DEFAULT_ARM_ENDPOINT
    login_authority: str = DEFAULT_LOGIN_AUTHORITY
    meter_category: str = DEFAULT_METER_CATEGORY
    top_resources_limit: int = 10
    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "INFO"

    @property
    def arm_scope(self) -> str:
        return self.arm_endpoint.rstrip("/") + "/.default"

    @staticmethod
    def from_env(environ=None) -> "Settings":
        env = os.environ if environ is None else environ
        missing = [k for k in REQUIRED_ENV if not env.get(k)]
        if missing:
            raise ConfigurationError(f"Missing required environment variables: {', '.join(missing)}")
        try:
            port = int(env.get("PORT", "8080"))
            limit = int(env.get("TOP_RESOURCES_LIMIT", "10"))
        except ValueError as e:
            raise ConfigurationError(f"Invalid numeric setting: {e}") from e
        log_level = env.get("LOG_LEVEL", "INFO").upper()
        if not isinstance(logging.getLevelName(log_level), int):
            raise ConfigurationError(f"Invalid LOG_LEVEL: {log_level}")
        return Settings(
            tenant_id=env["TENANT_ID"],
            client_id=env["CLIENT_ID"],
            client_secret=env["CLIENT_SECRET"],
            arm_endpoint=env.get("ARM_ENDPOINT", DEFAULT_ARM_ENDPOINT),
            login_authority=env.get("LOGIN_AUTHORITY", DEFAULT_LOGIN_AUTHORITY),
            meter_category=env.get("DEFENDER_METER_CATEGORY", DEFAULT_METER_CATEGORY),
            top_resources_limit=limit,
            host=env.get("HOST", "0.0.0.0"),
            port=port,
            log_level=log_level,
        )
