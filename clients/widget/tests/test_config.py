import pytest

from chat_sync.config import MIN_POLL_INTERVAL_MS, SyncConfig, load_sync_config_from_env

_ENV_NAMES = (
    "CHAT_SYNC_POLL_INTERVAL_MS",
    "CHAT_SYNC_MIN_BODY_LENGTH",
    "CHAT_SYNC_AUTOSCROLL_THRESHOLD_PX",
    "CHAT_SYNC_BANNER_DISMISS_PX",
    "CHAT_SYNC_SCROLL_DEBOUNCE_MS",
    "CHAT_SYNC_SUPERSEDE_WINDOW_MS",
    "CHAT_SYNC_ELIGIBILITY_TTL_MS",
    "CHAT_SYNC_REQUEST_TIMEOUT_S",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in _ENV_NAMES:
        monkeypatch.delenv(name, raising=False)


def test_defaults_match_widget_behaviour():
    config = SyncConfig()
    assert config.poll_interval_ms == 2000
    assert config.poll_interval_s == 2.0
    assert config.min_body_length == 5
    assert config.autoscroll_threshold_px == 150
    assert config.banner_dismiss_px == 100
    assert config.supersede_window_ms == 30_000
    assert load_sync_config_from_env() == config


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("CHAT_SYNC_POLL_INTERVAL_MS", "5000")
    monkeypatch.setenv("CHAT_SYNC_MIN_BODY_LENGTH", "1")
    monkeypatch.setenv("CHAT_SYNC_ELIGIBILITY_TTL_MS", "15000")

    config = load_sync_config_from_env()

    assert config.poll_interval_ms == 5000
    assert config.min_body_length == 1
    assert config.eligibility_ttl_ms == 15000
    assert config.scroll_debounce_ms == 500


def test_poll_interval_is_clamped(monkeypatch):
    monkeypatch.setenv("CHAT_SYNC_POLL_INTERVAL_MS", "0")
    assert load_sync_config_from_env().poll_interval_ms == MIN_POLL_INTERVAL_MS
    assert SyncConfig(poll_interval_ms=1).poll_interval_s == MIN_POLL_INTERVAL_MS / 1000


@pytest.mark.parametrize("raw", ["abc", "-1", "1.5"])
def test_invalid_values_raise(monkeypatch, raw):
    monkeypatch.setenv("CHAT_SYNC_SCROLL_DEBOUNCE_MS", raw)
    with pytest.raises(ValueError, match="CHAT_SYNC_SCROLL_DEBOUNCE_MS"):
        load_sync_config_from_env()


def test_empty_value_uses_default(monkeypatch):
    monkeypatch.setenv("CHAT_SYNC_BANNER_DISMISS_PX", "")
    assert load_sync_config_from_env().banner_dismiss_px == 100
