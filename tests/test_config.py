import stat
from pathlib import Path

import pytest

from ynabcli.config import (
    AppConfig,
    ConfigError,
    load_config,
    load_or_default,
    resolve_budget_id,
    resolve_token,
    save_config,
)


def test_valid_config(tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
        api:
          base_url: https://api.ynab.com/v1/
          max_retries: 5
        auth:
          access_token: secret-token
          default_budget_id: b1
        obs:
          log_jsonl: false
        """,
        encoding="utf-8",
    )

    loaded = load_config(config_path)
    assert loaded.config.api.base_url == "https://api.ynab.com/v1"
    assert loaded.config.api.max_retries == 5
    assert loaded.config.api.rate_limit_default_wait_s == 60
    assert loaded.config.api.max_total_wait_s is None
    assert loaded.config.auth.access_token == "secret-token"
    assert loaded.config.obs.log_jsonl is False


def test_defaults_match_retry_contract() -> None:
    config = AppConfig()

    assert config.api.max_retries == 3
    assert config.api.backoff_base_s == 1
    assert config.api.timeout_s == 30


@pytest.mark.parametrize(
    "text",
    [
        "api:\n  base_url: 123\n",
        "api:\n  base_url: ftp://example.com\n",
        "api:\n  max_retries: -1\n",
        "api:\n  retries: 3\n",
        "obs:\n  log_level: loud\n",
        "- just\n- a list\n",
        "api: [unclosed\n",
    ],
)
def test_invalid_config(tmp_path: Path, text: str) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text(text, encoding="utf-8")

    with pytest.raises(ConfigError):
        load_config(config_path)


def test_missing_config(tmp_path: Path) -> None:
    with pytest.raises(ConfigError):
        load_config(tmp_path / "absent.yaml")

    loaded = load_or_default(tmp_path / "absent.yaml")
    assert loaded.config == AppConfig()
    assert loaded.path is None


def test_save_config_round_trip_with_private_permissions(tmp_path: Path) -> None:
    config_path = tmp_path / ".ynab" / "config.yaml"
    config = AppConfig.model_validate({"auth": {"access_token": "tok", "default_budget_id": "b1"}})

    save_config(config, config_path)

    assert stat.S_IMODE(config_path.stat().st_mode) == 0o600
    assert load_config(config_path).config == config


def test_token_resolution_prefers_config(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("YNAB_ACCESS_TOKEN", "env-token")
    monkeypatch.setenv("YNAB_DEFAULT_BUDGET_ID", "env-budget")

    assert resolve_token(AppConfig()) == "env-token"
    assert resolve_budget_id(AppConfig()) == "env-budget"

    configured = AppConfig.model_validate({"auth": {"access_token": "file-token", "default_budget_id": "b1"}})
    assert resolve_token(configured) == "file-token"
    assert resolve_budget_id(configured) == "b1"


def test_token_missing_everywhere(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("YNAB_ACCESS_TOKEN", raising=False)

    assert resolve_token(AppConfig()) is None
