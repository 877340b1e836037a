"""Application configuration."""
import os
from dataclasses import dataclass


@dataclass
class CrmApiConfig:
    """CRM API configuration."""

    api_domain: str = "www.zohoapis.com"
    accounts_url: str = "https://accounts.zoho.com"
    client_id: str = ""
    client_secret: str = ""
    api_version: str = "v2"
    auth_scheme: str = "Zoho-oauthtoken"
    search_timeout: int = 15
    metadata_timeout: int = 30
    write_timeout: int = 60

    @property
    def base_url(self) -> str:
        return f"https://{self.api_domain}/crm/{self.api_version}"

    @classmethod
    def from_env(cls) -> "CrmApiConfig":
        """Load config from environment variables."""
        return cls(
            api_domain=os.getenv("CRM_API_DOMAIN", "www.zohoapis.com"),
            accounts_url=os.getenv("CRM_ACCOUNTS_URL", "https://accounts.zoho.com"),
            client_id=os.getenv("CRM_CLIENT_ID", ""),
            client_secret=os.getenv("CRM_CLIENT_SECRET", ""),
        )


@dataclass
class DeskApiConfig:
    """Helpdesk API configuration (region and organisation only)."""

    region: str = "com"
    org_id: str = ""
    timeout: int = 30

    @property
    def base_url(self) -> str:
        return f"https://desk.zoho.{self.region}/api/v1"

    @classmethod
    def from_env(cls) -> "DeskApiConfig":
        """Load config from environment variables."""
        return cls(
            region=os.getenv("DESK_REGION", "com"),
            org_id=os.getenv("DESK_ORG_ID", ""),
        )


@dataclass
class SyncConfig:
    """Sync engine configuration."""

    store_path: str = "./data/sync-store.json"
    webhook_secret: str = ""
    require_signature: bool = False
    sweep_stale_after: int = 3600
    manual_sync_days: int = 30
    history_limit: int = 500

    @classmethod
    def from_env(cls) -> "SyncConfig":
        """Load config from environment variables."""
        return cls(
            store_path=os.getenv("SYNC_STORE_PATH", "./data/sync-store.json"),
            webhook_secret=os.getenv("SYNC_WEBHOOK_SECRET", ""),
            require_signature=os.getenv("SYNC_REQUIRE_SIGNATURE", "").lower() in ("1", "true", "yes"),
            sweep_stale_after=int(os.getenv("SYNC_SWEEP_STALE_AFTER", "3600")),
            manual_sync_days=int(os.getenv("SYNC_MANUAL_DAYS", "30")),
            history_limit=int(os.getenv("SYNC_HISTORY_LIMIT", "500")),
        )


@dataclass
class AppConfig:
    """Application configuration."""

    crm: CrmApiConfig = None
    desk: DeskApiConfig = None
    sync: SyncConfig = None

    def __post_init__(self):
        """Fill in defaults."""
        if self.crm is None:
            self.crm = CrmApiConfig.from_env()
        if self.desk is None:
            self.desk = DeskApiConfig.from_env()
        if self.sync is None:
            self.sync = SyncConfig.from_env()

    @classmethod
    def from_env(cls) -> "AppConfig":
        """Load config from environment variables."""
        return cls(
            crm=CrmApiConfig.from_env(),
            desk=DeskApiConfig.from_env(),
            sync=SyncConfig.from_env(),
        )


# Global instance
app_config = AppConfig()
