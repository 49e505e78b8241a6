"""
Settings and schema configuration.
"""
from nook.core.config import Settings, settings
from nook.schemas.base import BaseSchema
from nook.schemas.device import Device

def test_settings_read_overrides_from_the_environment(monkeypatch):
    monkeypatch.setenv("SIMPLEMDM_BASE_URL", "https://mdm.example.test/api/v1")

    assert Settings().SIMPLEMDM_BASE_URL == "https://mdm.example.test/api/v1"
    assert settings.DATABASE_URL.startswith("sqlite")

def test_settings_use_model_config():
    assert Settings.model_config["case_sensitive"] is True
    assert Settings.model_config["env_file"] == ".env"
    assert Settings.model_config["extra"] == "ignore"

def test_schemas_read_from_attributes():
    assert BaseSchema.model_config["from_attributes"] is True
    assert BaseSchema.model_config["populate_by_name"] is True

    class Row:
        id = 3
        family_id = 1
        name = "Emma's iPhone"
        profile_id = None
        simplemdm_device_id = "dev-1"
        created_at = None
        updated_at = None

    assert Device.model_validate(Row()).simplemdm_device_id == "dev-1"
