"""
Root conftest: every test starts from an unconfigured client.

PARLEY_TOKEN, PARLEY_NAME and PARLEY_CONFIG are removed from the process
environment, and Settings stops reading .env, so a developer's real session
token or config path never reaches a test.
"""
import pytest

_PARLEY_ENV_VARS = [
    "PARLEY_TOKEN",
    "PARLEY_NAME",
    "PARLEY_CONFIG",
]


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch):
    for var in _PARLEY_ENV_VARS:
        monkeypatch.delenv(var, raising=False)

    import parley.config.settings as settings_module
    from pydantic_settings import SettingsConfigDict

    monkeypatch.setattr(
        settings_module.Settings,
        "model_config",
        SettingsConfigDict(
            **{**settings_module.Settings.model_config, "env_file": None}
        ),
    )
