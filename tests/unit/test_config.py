import pytest
from pydantic import ValidationError

from core.config import Settings, load_settings


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for name in Settings.model_fields:
        # setenv first so teardown also removes values a .env file loaded
        monkeypatch.setenv(f"DOXY_{name.upper()}", "")
        monkeypatch.delenv(f"DOXY_{name.upper()}")
    # keep a stray .env in the working directory out of the way
    monkeypatch.chdir(tmp_path)


def test_defaults(tmp_path):
    settings = load_settings(git_dir=str(tmp_path))

    assert settings.git_dir == tmp_path.resolve()
    assert settings.port == 5000
    assert settings.base_port == 8080
    assert settings.routing_mode == "subdomain"
    assert settings.domain_suffix == "telltale.xyz"
    assert settings.stop_replaced is False
    assert settings.skip_busy_ports is True
    assert settings.api_key is None


def test_environment_values(monkeypatch, tmp_path):
    monkeypatch.setenv("DOXY_GIT_DIR", str(tmp_path))
    monkeypatch.setenv("DOXY_BASE_PORT", "9000")
    monkeypatch.setenv("DOXY_ROUTING_MODE", "path")
    monkeypatch.setenv("DOXY_STOP_REPLACED", "true")
    monkeypatch.setenv("DOXY_DOMAIN_SUFFIX", ".example.com.")

    settings = load_settings()

    assert settings.base_port == 9000
    assert settings.routing_mode == "path"
    assert settings.stop_replaced is True
    assert settings.domain_suffix == "example.com"


def test_overrides_beat_environment(monkeypatch, tmp_path):
    monkeypatch.setenv("DOXY_GIT_DIR", str(tmp_path))
    monkeypatch.setenv("DOXY_PORT", "6000")

    assert load_settings(port=7000).port == 7000
    assert load_settings(port=None).port == 6000


def test_dotenv_file_is_read(tmp_path):
    (tmp_path / ".env").write_text(f"DOXY_GIT_DIR={tmp_path}\nDOXY_BASE_PORT=9100\n")

    settings = load_settings()

    assert settings.base_port == 9100


def test_missing_directory_rejected():
    with pytest.raises(ValidationError):
        load_settings()


def test_nonexistent_directory_rejected(tmp_path):
    with pytest.raises(ValidationError, match="does not exist"):
        load_settings(git_dir=str(tmp_path / "nope"))


def test_invalid_routing_mode(tmp_path):
    with pytest.raises(ValidationError):
        load_settings(git_dir=str(tmp_path), routing_mode="header")
