import asyncio
import shutil
import subprocess
from pathlib import Path

import jwt
import pytest
from fastapi.testclient import TestClient

from tubely.api import deps
from tubely.core.config import get_settings
from tubely.core.db import Base, create_all, create_engine
from tubely.main import create_app
from tests.fakes import FakeInspector, FakeRewriter

TEST_JWT_SECRET = "test-secret"
TEST_ISSUER = "tubely-test"
TEST_AUDIENCE = "tubely"


def pytest_configure(config):
    config.addinivalue_line(
        "markers",
        "no_default_env: disable the default Tubely environment bootstrap fixture for tests that manage their own .env",
    )


@pytest.fixture(autouse=True)
def configure_environment(request, monkeypatch, tmp_path):
    if request.node.get_closest_marker("no_default_env"):
        get_settings.cache_clear()
        yield
        get_settings.cache_clear()
        return
    db_path = tmp_path / "tubely_test.db"

    monkeypatch.setenv("TUBELY_ENV", "test")
    monkeypatch.setenv("TUBELY_LOG_LEVEL", "debug")
    monkeypatch.setenv("TUBELY_DB_URL", f"sqlite+aiosqlite:///{db_path}")
    monkeypatch.setenv("TUBELY_STORAGE_BACKEND", "local")
    monkeypatch.setenv("TUBELY_LOCAL_STORAGE_BASE_PATH", str(tmp_path / "assets"))
    monkeypatch.setenv("TUBELY_TEMP_DIR", str(tmp_path / "staging"))
    monkeypatch.setenv("TUBELY_PUBLIC_BASE_URL", "http://testserver")
    monkeypatch.setenv("TUBELY_JWT_SECRET", TEST_JWT_SECRET)
    monkeypatch.setenv("TUBELY_JWT_ISSUER", TEST_ISSUER)
    monkeypatch.setenv("TUBELY_JWT_AUDIENCE", TEST_AUDIENCE)
    monkeypatch.setenv("TUBELY_SIGNING_SECRET", "test-signing-secret")

    get_settings.cache_clear()
    settings = get_settings()
    engine = create_engine(settings)

    asyncio.run(create_all(engine))

    yield

    async def _teardown() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
        await engine.dispose()

    asyncio.run(_teardown())
    get_settings.cache_clear()


@pytest.fixture()
def staging_dir(tmp_path) -> Path:
    return tmp_path / "staging"


@pytest.fixture()
def fake_rewriter() -> FakeRewriter:
    return FakeRewriter()


@pytest.fixture()
def fake_inspector() -> FakeInspector:
    return FakeInspector(1920, 1080)


@pytest.fixture()
def client(configure_environment, fake_rewriter, fake_inspector):
    app = create_app()
    app.dependency_overrides[deps.get_rewriter] = lambda: fake_rewriter
    app.dependency_overrides[deps.get_inspector] = lambda: fake_inspector
    with TestClient(app) as client:
        yield client


def build_token(user_id: str, *, scopes: list[str] | None = None, secret: str = TEST_JWT_SECRET) -> str:
    payload = {"sub": user_id, "iss": TEST_ISSUER, "aud": TEST_AUDIENCE}
    if scopes:
        payload["scopes"] = scopes
    return jwt.encode(payload, secret, algorithm="HS256")


@pytest.fixture()
def user_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {build_token('user-1')}"}


@pytest.fixture()
def other_user_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {build_token('user-2')}"}


@pytest.fixture()
def admin_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {build_token('admin-1', scopes=['admin'])}"}


requires_ffmpeg = pytest.mark.skipif(
    shutil.which("ffmpeg") is None or shutil.which("ffprobe") is None,
    reason="ffmpeg/ffprobe not installed",
)


def _generate_video(target: Path, size: str) -> Path:
    command = [
        "ffmpeg",
        "-nostdin",
        "-v", "error",
        "-f", "lavfi",
        "-i", f"color=c=black:s={size}:r=30",
        "-t", "1",
        "-pix_fmt", "yuv420p",
        str(target),
    ]
    subprocess.run(command, check=True, capture_output=True)
    return target


@pytest.fixture(scope="session")
def generated_video_file(tmp_path_factory) -> Path:
    """
    Generates a small 16:9 MP4 in a temporary directory. Skips when ffmpeg is absent.
    """
    if shutil.which("ffmpeg") is None:
        pytest.skip("ffmpeg not installed")
    return _generate_video(tmp_path_factory.mktemp("data") / "landscape.mp4", "128x72")


@pytest.fixture(scope="session")
def generated_portrait_file(tmp_path_factory) -> Path:
    if shutil.which("ffmpeg") is None:
        pytest.skip("ffmpeg not installed")
    return _generate_video(tmp_path_factory.mktemp("data") / "portrait.mp4", "72x128")
