import io
import os
import tempfile
from typing import AsyncGenerator

# Settings are read at import time; point them at throwaway locations first.
_TEST_ROOT = tempfile.mkdtemp(prefix="proshot-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{_TEST_ROOT}/app.db")
os.environ.setdefault("LOCAL_STORAGE_PATH", os.path.join(_TEST_ROOT, "storage"))
os.environ.setdefault("STORAGE_BACKEND", "local")
os.environ.setdefault("LOG_FORMAT_JSON", "false")

import pytest
from httpx import AsyncClient, ASGITransport
from PIL import Image

from proshot.core.database import build_engine, build_session_maker, create_db_and_tables
from proshot.core.storage import LocalStorage
from proshot.modules.projects.models import ProjectRecord
from proshot.modules.projects.repository import ProjectRepository

BUCKET = "proshot-test.appspot.com"
OWNER_ID = "owner-1"


def _png(color=(200, 30, 30, 255), size=(16, 16)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGBA", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


def _record(project_id: str = "proj-1", file_name: str = "shoe.png", **overrides) -> ProjectRecord:
    fields = dict(
        owner_id=OWNER_ID,
        id=project_id,
        name="Shoe",
        storage_path=f"owners/{OWNER_ID}/uploads/{file_name}",
        original_url=f"http://test/static/{BUCKET}/owners/{OWNER_ID}/uploads/{file_name}",
    )
    fields.update(overrides)
    return ProjectRecord(**fields)


@pytest.fixture
def png_bytes() -> bytes:
    return _png()


@pytest.fixture
def png_factory():
    return _png


@pytest.fixture
def record_factory():
    return _record


@pytest.fixture
async def engine(tmp_path):
    db_engine = build_engine(f"sqlite+aiosqlite:///{tmp_path}/projects.db")
    await create_db_and_tables(db_engine)
    yield db_engine
    await db_engine.dispose()


@pytest.fixture
def repository(engine) -> ProjectRepository:
    return ProjectRepository(build_session_maker(engine), conditional_transitions=True)


@pytest.fixture
def unconditional_repository(engine) -> ProjectRepository:
    return ProjectRepository(build_session_maker(engine), conditional_transitions=False)


@pytest.fixture
def storage(tmp_path) -> LocalStorage:
    return LocalStorage(base_path=str(tmp_path / "storage"), public_base_url="http://test/static")


@pytest.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    from proshot.main import app

    # Trigger lifespan events (startup/shutdown)
    async with app.router.lifespan_context(app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            yield ac
