import os

# settings are read at import time, configure them before the app is imported
os.environ.setdefault("ENCODE_KEY", "test-encode-key-0123456789abcdef0123456789")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ["NONCE_PURGE_INTERVAL_SECONDS"] = "0"

import pytest
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
from typing import Callable, Generator

from main import app
from app.core.auth_events import AuthEvent, auth_events
from app.db.session import get_db, init_db


def sign_message(account: LocalAccount, message: str) -> str:
    """personal_sign the way a browser wallet does, 0x prefixed hex"""
    signed = account.sign_message(encode_defunct(text=message))
    return "0x" + bytes(signed.signature).hex()


@pytest.fixture
def engine():
    """In-memory SQLite database, one per test"""
    test_engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture
def file_engine(tmp_path):
    """File backed SQLite database, for tests where threads need their own connections"""
    test_engine = create_engine(
        f"sqlite:///{tmp_path / 'race.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    init_db(test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture
def session_factory(engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(session_factory) -> Generator[TestClient, None, None]:
    """Create a test client for the FastAPI application"""

    def override_get_db() -> Generator:
        """Override database dependency for testing"""
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def wallet() -> LocalAccount:
    return Account.from_key("0x" + "11" * 32)


@pytest.fixture
def other_wallet() -> LocalAccount:
    return Account.from_key("0x" + "22" * 32)


@pytest.fixture
def third_wallet() -> LocalAccount:
    return Account.from_key("0x" + "33" * 32)


@pytest.fixture
def captured_events() -> Generator[list, None, None]:
    """Collect every auth event published during the test"""
    events: list[AuthEvent] = []
    unsubscribe = auth_events.subscribe(events.append)
    yield events
    unsubscribe()


@pytest.fixture
def sign_in(client: TestClient) -> Callable[[LocalAccount], dict]:
    """Run the full nonce -> sign -> verify cycle and return the verify response body"""

    def _sign_in(account: LocalAccount) -> dict:
        nonce_response = client.get(f"/api/auth/nonce/{account.address}")
        assert nonce_response.status_code == 200
        message = nonce_response.json()["message"]
        response = client.post(
            "/api/auth/verify",
            json={
                "walletAddress": account.address,
                "signature": sign_message(account, message),
                "message": message,
            },
        )
        assert response.status_code == 200, response.text
        return response.json()

    return _sign_in
