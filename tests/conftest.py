import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from billcountdown.db.models import Base
from billcountdown.services.notifications.channels import DeliveryChannels
from tests.factories import FakeEmailChannel, FakePushChannel, FakeSyncPipeline


@pytest.fixture
def test_engine(tmp_path):
    """
    File-backed SQLite so that separate sessions use separate connections and
    race on real rows.
    """
    engine = create_engine(
        f"sqlite:///{tmp_path / 'billcountdown-test.db'}",
        connect_args={"check_same_thread": False},
        echo=False,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> sessionmaker:
    return sessionmaker(bind=test_engine, class_=Session, expire_on_commit=False)


@pytest.fixture
def db_session(session_factory):
    """Create a database session for each test."""
    with session_factory() as session:
        yield session


@pytest.fixture
def fake_channels() -> DeliveryChannels:
    return DeliveryChannels(
        email=FakeEmailChannel(),
        web_push=FakePushChannel(),
        native_push=FakePushChannel(),
    )


@pytest.fixture
def fake_pipeline() -> FakeSyncPipeline:
    return FakeSyncPipeline()
