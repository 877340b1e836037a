"""Tests for environment based configuration"""

from config import AppConfig, CrmApiConfig, DeskApiConfig, SyncConfig


class TestFromEnv:

    def test_defaults(self, monkeypatch):
        for name in ("CRM_API_DOMAIN", "DESK_REGION", "SYNC_REQUIRE_SIGNATURE", "SYNC_MANUAL_DAYS"):
            monkeypatch.delenv(name, raising=False)

        config = AppConfig.from_env()

        assert config.crm.base_url == "https://www.zohoapis.com/crm/v2"
        assert config.desk.base_url == "https://desk.zoho.com/api/v1"
        assert not config.sync.require_signature
        assert config.sync.manual_sync_days == 30

    def test_overrides(self, monkeypatch):
        monkeypatch.setenv("CRM_API_DOMAIN", "www.zohoapis.eu")
        monkeypatch.setenv("DESK_REGION", "eu")
        monkeypatch.setenv("DESK_ORG_ID", "42")
        monkeypatch.setenv("SYNC_REQUIRE_SIGNATURE", "true")
        monkeypatch.setenv("SYNC_MANUAL_DAYS", "7")
        monkeypatch.setenv("SYNC_HISTORY_LIMIT", "50")

        assert CrmApiConfig.from_env().base_url == "https://www.zohoapis.eu/crm/v2"
        desk = DeskApiConfig.from_env()
        assert (desk.base_url, desk.org_id) == ("https://desk.zoho.eu/api/v1", "42")
        sync = SyncConfig.from_env()
        assert sync.require_signature
        assert (sync.manual_sync_days, sync.history_limit) == (7, 50)

    def test_missing_sections_filled(self):
        config = AppConfig(sync=SyncConfig(store_path="x.json"))
        assert config.sync.store_path == "x.json"
        assert isinstance(config.crm, CrmApiConfig)
