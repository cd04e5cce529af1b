# tests/conftest.py
import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

import httpx
import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from api.routes.doxy import limiter  # noqa: E402
from core.config import Settings  # noqa: E402
from core.pipeline import DeploymentPipeline  # noqa: E402
from core.registry import DeploymentRegistry  # noqa: E402


# ---------------------------------------------------------------------------
# Keep every test away from a real Docker daemon
# ---------------------------------------------------------------------------
@pytest.fixture(autouse=True)
def patch_docker():
    fake_client = MagicMock()
    fake_client.containers = MagicMock()
    fake_client.images = MagicMock()
    fake_client.images.build.return_value = (MagicMock(), [])

    with (
        patch("docker.from_env", return_value=fake_client),
        patch("docker.APIClient", return_value=MagicMock()),
    ):
        yield fake_client


@pytest.fixture(autouse=True)
def reset_rate_limits():
    limiter.reset()
    yield


# ---------------------------------------------------------------------------
# Upstream responses for httpx.MockTransport
# ---------------------------------------------------------------------------
class StreamedBody(httpx.AsyncByteStream):
    """A body that stays unread until the proxy streams it out."""

    def __init__(self, data: bytes):
        self._data = data

    async def __aiter__(self):
        yield self._data


@pytest.fixture
def streamed_response():
    def _make(status_code=200, body=b"", headers=None):
        if isinstance(body, str):
            body = body.encode()
        return httpx.Response(status_code, headers=headers, stream=StreamedBody(body))

    return _make


# ---------------------------------------------------------------------------
# Pipeline collaborators
# ---------------------------------------------------------------------------
@pytest.fixture
def settings(tmp_path):
    repo = tmp_path / "repo"
    repo.mkdir()
    return Settings(git_dir=repo, skip_busy_ports=False)


@pytest.fixture
def registry():
    return DeploymentRegistry()


@pytest.fixture
def fake_git():
    gm = MagicMock()
    gm.pull.return_value = "Already up to date."
    gm.checkout.return_value = ""
    gm.get_commit_hash.return_value = "abc1234"
    return gm


@pytest.fixture
def fake_engine():
    engine = MagicMock()
    engine.list_apps.return_value = []
    engine.build_image.side_effect = lambda path, tag, dockerfile="Dockerfile": tag

    counter = {"n": 0}

    def _deploy(app_name, image_tag, host_port, container_port):
        counter["n"] += 1
        container = MagicMock()
        container.id = f"container{counter['n']}"
        return container

    engine.deploy.side_effect = _deploy
    return engine


@pytest.fixture
def pipeline(settings, registry, fake_git, fake_engine):
    return DeploymentPipeline(settings, registry, git_manager=fake_git, engine=fake_engine)
