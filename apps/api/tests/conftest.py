import sys
from pathlib import Path

import pytest
import pytest_asyncio
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool


def _configure_path() -> None:
    src_path = Path(__file__).resolve().parents[1] / "src"
    if src_path.exists():
        sys.path.insert(0, str(src_path))


_configure_path()

from mealpass_api.app import create_app  # noqa: E402
from mealpass_api.db.base import Base  # noqa: E402
from mealpass_api.db.session import get_session  # noqa: E402
from mealpass_api.observability.issuance import get_issuance_store  # noqa: E402
from mealpass_api.observability.scheduler import get_job_scheduler_store  # noqa: E402
from mealpass_api.services.credentials.signing import load_signing_key  # noqa: E402


@pytest.fixture(autouse=True)
def reset_observability_stores():
    get_issuance_store().reset()
    get_job_scheduler_store().reset()
    yield


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def file_session_factory(tmp_path):
    """Sessions backed by a SQLite file, each holding its own connection."""

    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'mealpass.db'}",
        poolclass=NullPool,
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest.fixture(scope="session")
def signing_pem() -> str:
    private_key = ec.generate_private_key(ec.SECP256R1())
    return private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")


@pytest.fixture
def signing_key(signing_pem):
    return load_signing_key(signing_pem)


@pytest_asyncio.fixture
async def app_with_db(session_factory):
    app = create_app()
    app.state.session_factory = session_factory

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session

    try:
        yield app, session_factory
    finally:
        app.dependency_overrides.clear()
