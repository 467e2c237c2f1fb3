import config
import pytest
from config import BeatweaverSettings
from pydantic import ValidationError


@pytest.mark.parametrize(
    "overrides",
    [
        {"CONTEXT_TOKEN_BUDGET": 0},
        {"MAX_GENERATION_ATTEMPTS": 0},
        {"RETRY_BACKOFF_MULTIPLIER": 0.5},
        {"MAX_CORRECTION_DIRECTIVES": 0},
        {"VOICE_EMBEDDING_DIM": 0},
    ],
)
def test_invalid_limits_raise(overrides):
    with pytest.raises(ValidationError):
        BeatweaverSettings(**overrides)


def test_target_above_threshold_warns(monkeypatch):
    warnings: list[str] = []

    def fake_warning(msg: str, **_kw: object) -> None:
        warnings.append(msg)

    monkeypatch.setattr(config.logger, "warning", fake_warning)
    BeatweaverSettings(DETECTABILITY_TARGET=20.0, DETECTABILITY_THRESHOLD=10.0)
    assert any("Detectability target" in msg for msg in warnings)


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("MEMORY_CACHE_EVICTION", "fifo")
    monkeypatch.setenv("AGENT_LOG_LEVEL", "DEBUG")
    monkeypatch.setenv("CONTEXT_TOKEN_BUDGET", "6000")

    loaded = BeatweaverSettings()

    assert loaded.MEMORY_CACHE_EVICTION == "fifo"
    assert loaded.LOG_LEVEL_STR == "DEBUG"
    assert loaded.CONTEXT_TOKEN_BUDGET == 6000


def test_unknown_eviction_policy_rejected(monkeypatch):
    monkeypatch.setenv("MEMORY_CACHE_EVICTION", "random")
    with pytest.raises(ValidationError):
        BeatweaverSettings()


def test_defaults_match_generation_contract():
    defaults = BeatweaverSettings()
    assert defaults.CONTEXT_TOKEN_BUDGET == 8000
    assert defaults.MAX_GENERATION_ATTEMPTS == 3
    assert defaults.RETRY_BASE_BACKOFF_MS == 1000
    assert defaults.DETECTABILITY_THRESHOLD == 10.0
    assert defaults.MAX_CORRECTION_DIRECTIVES == 5
    assert defaults.MEMORY_CACHE_TTL_SECONDS == 300.0
