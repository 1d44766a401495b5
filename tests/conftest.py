"""Pytest fixtures for testing"""

from typing import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from coop_credit.api.main import create_app
from coop_credit.config import Settings
from coop_credit.infrastructure.database.models import Base
from coop_credit.infrastructure.database.session import create_db_engine, create_session_factory
from coop_credit.services.credit_engine import CreditEngine
from coop_credit.services.penalty_processor import PenaltyProcessor
from coop_credit.services.sweep import PenaltySweep
from coop_credit.services.unit_of_work import UnitOfWork


@pytest.fixture
def config(tmp_path) -> Settings:
    """Settings pointing at a throwaway SQLite file"""
    return Settings(
        database_url=f"sqlite:///{tmp_path}/test.db",
        cron_secret="test-secret",
        notification_webhook_url="http://notifications.test/events",
        webhook_max_retries=1,
        webhook_backoff_base=0.0,
    )


@pytest.fixture
def db_engine(config: Settings):
    engine = create_db_engine(config.database_url)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return create_session_factory(db_engine)


@pytest.fixture
def db(session_factory) -> Generator[Session, None, None]:
    """Session for seeding and inspecting state; commit after seeding"""
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def credit_engine(session_factory, config: Settings) -> CreditEngine:
    return CreditEngine(UnitOfWork(session_factory, max_retries=1), config)


@pytest.fixture
def processor(credit_engine: CreditEngine) -> PenaltyProcessor:
    return PenaltyProcessor(credit_engine)


@pytest.fixture
def sweep(credit_engine: CreditEngine, processor: PenaltyProcessor, db_engine) -> PenaltySweep:
    return PenaltySweep(credit_engine, processor, db_engine)


@pytest.fixture
def client(config: Settings, db_engine) -> TestClient:
    """Create FastAPI test client with test database"""
    app = create_app(config)
    return TestClient(app)
