# Test configuration

import os
import sys
from io import BytesIO

import pytest
from PIL import Image
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from mediaflow.catalog.database import init_db  # noqa: E402
from mediaflow.catalog.models import Album, Visibility  # noqa: E402
from mediaflow.ledger.memory import InMemoryJobLedger  # noqa: E402
from mediaflow.media.transforms import ImageTransformer  # noqa: E402
from mediaflow.pipeline.orchestrator import ProcessingOrchestrator  # noqa: E402
from mediaflow.storage.filesystem import FilesystemObjectStore  # noqa: E402
from tests.fakes import (  # noqa: E402
    FakeAnalyzer, FakeProfileNotifier, FakeTranscoder, FakeVideoProbe
)


def make_jpeg(width=120, height=80, color=(200, 40, 40)) -> bytes:
    """Small real JPEG for transform tests."""
    buffer = BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format="JPEG")
    return buffer.getvalue()


@pytest.fixture
def test_settings(tmp_path):
    """Override settings for testing"""
    from mediaflow.config.settings import Settings
    return Settings(
        database_url="sqlite://",
        storage_backend="fs://",
        storage_path=str(tmp_path / "objects"),
        ledger_backend="memory",
        queue_backend="inproc",
        dlq_path=str(tmp_path / "dlq"),
        profile_service_url="http://identity.test",
        profile_service_api_key="test-key",
    )


@pytest.fixture
def engine():
    """In-memory SQLite shared by every session of one test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)


@pytest.fixture
def store(tmp_path):
    return FilesystemObjectStore(
        base_path=str(tmp_path / "objects"),
        public_base_url="https://cdn.test",
    )


@pytest.fixture
def ledger():
    return InMemoryJobLedger()


@pytest.fixture
def analyzer():
    return FakeAnalyzer()


@pytest.fixture
def transcoder():
    return FakeTranscoder()


@pytest.fixture
def notifier():
    return FakeProfileNotifier()


@pytest.fixture
def transformer():
    return ImageTransformer(
        thumbnail_size=(32, 32),
        optimized_width=64,
        rendition_widths=[16, 48],
    )


@pytest.fixture
def orchestrator(store, transformer, analyzer, transcoder, ledger, notifier, session_factory):
    return ProcessingOrchestrator(
        store=store,
        transformer=transformer,
        analyzer=analyzer,
        transcoder=transcoder,
        ledger=ledger,
        profile_notifier=notifier,
        video_probe=FakeVideoProbe(),
        session_factory=session_factory,
    )


@pytest.fixture
def make_album(session_factory):
    """Create an album and return its id."""
    def _make(owner_id="user-1", visibility=Visibility.PRIVATE, name="Holidays"):
        with session_factory() as db:
            album = Album(name=name, owner_id=owner_id, visibility=visibility)
            db.add(album)
            db.commit()
            return album.id
    return _make


@pytest.fixture
def jpeg_bytes():
    return make_jpeg()
