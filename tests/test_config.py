import os

from pollex import config


def test_state_dir_env_override(monkeypatch, tmp_path):
    monkeypatch.setenv("POLLEX_STATE_DIR", str(tmp_path / "custom"))

    assert config.PathsConfig().state_dir == str(tmp_path / "custom")


def test_state_dir_defaults_under_base_dir(monkeypatch):
    monkeypatch.delenv("POLLEX_STATE_DIR", raising=False)

    assert config.PathsConfig().state_dir == os.path.join(config.BASE_DIR, "pollex_state")


def test_job_limits():
    jobs = config.JobConfig(max_text_length=1500, stale_timeout_ms=150_000, request_timeout_s=70)

    assert jobs.max_history == 7
    assert jobs.error_max_length == 200
    assert jobs.tick_interval_s == 1.0
    assert jobs.stale_timeout_ms > jobs.request_timeout_s * 1000


def test_flat_aliases_match_structured_config():
    assert config.MAX_TEXT_LENGTH == config.JOBS.max_text_length
    assert config.MAX_HISTORY == config.JOBS.max_history
    assert config.DRAFT_DEBOUNCE_MS == 500
    assert config.API_KEY_HEADER == "X-API-Key"


def test_coordinator_url():
    c = config.CoordinatorConfig(host="10.0.0.2", port=9999)

    assert c.base_url() == "http://10.0.0.2:9999"
    assert config.get_coordinator_url() == config.COORDINATOR.base_url()
