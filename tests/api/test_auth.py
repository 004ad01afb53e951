import re
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from unittest.mock import patch

import jwt
import pytest
from fastapi import status
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from app.core.auth_events import AuthEventType
from app.core.config import settings
from app.core.errors import StorageError
from app.core.eth_auth import build_challenge_message, generate_nonce
from app.core.jwt_utils import create_access_token
from app.db.session import get_db
from app.models.auth import AuthNonce, WalletAddress
from app.models.users import User
from app.services.identity_resolver import IdentityResolver
from app.services.nonce_store import NonceStore
from main import app
from tests.conftest import sign_message


def _parse_iso(value: str) -> datetime:
    return datetime.strptime(value, "%Y-%m-%dT%H:%M:%S.%fZ").replace(tzinfo=timezone.utc)


def _verify(client: TestClient, account, message: str, signature: str = None, address: str = None):
    return client.post(
        "/api/auth/verify",
        json={
            "walletAddress": address or account.address,
            "signature": signature or sign_message(account, message),
            "message": message,
        },
    )


class TestNonceAPI:
    """Test cases for GET /api/auth/nonce/{walletAddress}"""

    def test_request_nonce_success(self, client: TestClient, wallet):
        response = client.get(f"/api/auth/nonce/{wallet.address}")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert set(data) == {"nonce", "message", "expiresAt"}
        assert re.fullmatch(r"[0-9a-f]{64}", data["nonce"])
        assert f"Nonce: {data['nonce']}\n" in data["message"]
        assert data["message"].startswith("Sign this message to authenticate with DilSe Matchify.\n\n")
        assert re.search(r"Timestamp: \d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}Z$", data["message"])

        expires_in = (_parse_iso(data["expiresAt"]) - datetime.now(timezone.utc)).total_seconds()
        assert 290 <= expires_in <= 300

    def test_request_nonce_stores_checksummed_address(self, client: TestClient, wallet, db):
        response = client.get(f"/api/auth/nonce/{wallet.address.lower()}")

        assert response.status_code == status.HTTP_200_OK
        record = db.query(AuthNonce).filter(AuthNonce.nonce == response.json()["nonce"]).one()
        assert record.wallet_address == wallet.address
        assert record.used is False

    @pytest.mark.parametrize("address", ["0x123", "hello", "0x" + "g" * 40])
    def test_request_nonce_invalid_address(self, client: TestClient, address):
        response = client.get(f"/api/auth/nonce/{address}")

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json() == {"error": "Invalid wallet address"}

    def test_request_nonce_storage_error(self, client: TestClient, wallet):
        failure = StorageError("connection reset by peer", public_message="Failed to generate nonce")
        with patch.object(NonceStore, "issue", side_effect=failure):
            response = client.get(f"/api/auth/nonce/{wallet.address}")

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert response.json() == {"error": "Failed to generate nonce"}


class TestVerifyAPI:
    """Test cases for POST /api/auth/verify"""

    def test_first_sign_in_creates_account(self, client: TestClient, wallet, sign_in):
        data = sign_in(wallet)

        assert data["success"] is True
        assert data["isNewUser"] is True
        assert data["walletAddress"] == wallet.address
        assert data["message"] == "Account created successfully"

        claims = jwt.decode(data["token"], settings.ENCODE_KEY, algorithms=[settings.ENCODE_ALGORITHM])
        assert claims["userId"] == data["userId"]
        assert claims["walletAddress"] == wallet.address
        assert claims["authMethod"] == "wallet"
        assert claims["exp"] - claims["iat"] == 7 * 24 * 3600

    def test_second_sign_in_with_fresh_nonce_is_login(self, client: TestClient, wallet, sign_in):
        first = sign_in(wallet)
        second = sign_in(wallet)

        assert second["isNewUser"] is False
        assert second["userId"] == first["userId"]
        assert second["message"] == "Login successful"

    def test_lowercase_wallet_address_is_accepted(self, client: TestClient, wallet):
        message = client.get(f"/api/auth/nonce/{wallet.address}").json()["message"]

        response = _verify(client, wallet, message, address=wallet.address.lower())

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["walletAddress"] == wallet.address

    def test_replayed_signature_is_rejected(self, client: TestClient, wallet):
        message = client.get(f"/api/auth/nonce/{wallet.address}").json()["message"]
        signature = sign_message(wallet, message)

        assert _verify(client, wallet, message, signature).status_code == status.HTTP_200_OK
        replay = _verify(client, wallet, message, signature)

        assert replay.status_code == status.HTTP_401_UNAUTHORIZED
        assert replay.json() == {"error": "Invalid or expired nonce"}

    def test_unknown_nonce_is_rejected(self, client: TestClient, wallet):
        client.get(f"/api/auth/nonce/{wallet.address}")
        forged = build_challenge_message(generate_nonce(), datetime.now(timezone.utc))

        response = _verify(client, wallet, forged)

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json() == {"error": "Invalid or expired nonce"}

    def test_nonce_issued_to_other_wallet_is_rejected(self, client: TestClient, wallet, other_wallet):
        message = client.get(f"/api/auth/nonce/{other_wallet.address}").json()["message"]

        response = _verify(client, wallet, message)

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json() == {"error": "Invalid or expired nonce"}

    def test_expired_nonce_is_rejected(self, client: TestClient, wallet, db):
        data = client.get(f"/api/auth/nonce/{wallet.address}").json()
        record = db.query(AuthNonce).filter(AuthNonce.nonce == data["nonce"]).one()
        record.expires_at = int(datetime.now(timezone.utc).timestamp()) - 1
        db.commit()

        response = _verify(client, wallet, data["message"])

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json() == {"error": "Nonce has expired"}

    def test_signature_from_other_wallet(self, client: TestClient, wallet, other_wallet):
        message = client.get(f"/api/auth/nonce/{wallet.address}").json()["message"]

        response = _verify(client, wallet, message, signature=sign_message(other_wallet, message))

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json() == {"error": "Signature does not match wallet address"}

    def test_failed_signature_does_not_burn_nonce(self, client: TestClient, wallet, other_wallet):
        message = client.get(f"/api/auth/nonce/{wallet.address}").json()["message"]

        bad = _verify(client, wallet, message, signature=sign_message(other_wallet, message))
        good = _verify(client, wallet, message)

        assert bad.status_code == status.HTTP_401_UNAUTHORIZED
        assert good.status_code == status.HTTP_200_OK

    def test_malformed_signature(self, client: TestClient, wallet):
        message = client.get(f"/api/auth/nonce/{wallet.address}").json()["message"]

        response = _verify(client, wallet, message, signature="0xdeadbeef")

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json() == {"error": "Invalid signature"}

    @pytest.mark.parametrize("v", [0, 1, 37])
    def test_signature_with_other_recovery_id(self, client: TestClient, wallet, v):
        message = client.get(f"/api/auth/nonce/{wallet.address}").json()["message"]
        raw = bytearray.fromhex(sign_message(wallet, message)[2:])
        raw[64] = v

        response = _verify(client, wallet, message, signature="0x" + raw.hex())

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json() == {"error": "Invalid signature"}

    def test_tampered_message(self, client: TestClient, wallet):
        message = client.get(f"/api/auth/nonce/{wallet.address}").json()["message"]
        signature = sign_message(wallet, message)

        response = _verify(client, wallet, message.replace("DilSe", "Dilse"), signature)

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_message_without_nonce(self, client: TestClient, wallet):
        response = _verify(client, wallet, "Sign this message please")

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json() == {"error": "Invalid message format"}

    @pytest.mark.parametrize("missing", ["walletAddress", "signature", "message"])
    def test_missing_fields(self, client: TestClient, wallet, missing):
        body = {"walletAddress": wallet.address, "signature": "0x00", "message": "Nonce: ab"}
        del body[missing]

        response = client.post("/api/auth/verify", json=body)

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json() == {"error": "Missing required fields"}

    def test_body_is_not_json(self, client: TestClient):
        response = client.post(
            "/api/auth/verify", content="not json", headers={"content-type": "application/json"}
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json() == {"error": "Missing required fields"}

    def test_invalid_wallet_address(self, client: TestClient, wallet):
        response = client.post(
            "/api/auth/verify",
            json={"walletAddress": "0x123", "signature": "0x00", "message": "Nonce: ab"},
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json() == {"error": "Invalid wallet address"}

    def test_storage_error_does_not_leak_detail(self, client: TestClient, wallet):
        message = client.get(f"/api/auth/nonce/{wallet.address}").json()["message"]

        failure = StorageError("FATAL: password authentication failed for user postgres")
        with patch.object(IdentityResolver, "resolve", side_effect=failure):
            response = _verify(client, wallet, message)

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert response.json() == {"error": "Internal server error"}

    def test_unexpected_error_is_generic_500(self, client: TestClient, wallet):
        message = client.get(f"/api/auth/nonce/{wallet.address}").json()["message"]
        quiet_client = TestClient(app, raise_server_exceptions=False)

        with patch.object(IdentityResolver, "resolve", side_effect=RuntimeError("secret detail")):
            response = _verify(quiet_client, wallet, message)

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert "secret detail" not in response.text
        assert response.json() == {"error": "Internal server error"}

    def test_events_published(self, client: TestClient, wallet, sign_in, captured_events):
        first = sign_in(wallet)
        sign_in(wallet)

        assert [event.type for event in captured_events] == [
            AuthEventType.ACCOUNT_CREATED,
            AuthEventType.SIGNED_IN,
            AuthEventType.SIGNED_IN,
        ]
        assert {event.user_id for event in captured_events} == {first["userId"]}


class TestConcurrentFirstSignIn:
    """Several first sign-ins for one brand-new wallet at the same time"""

    def test_all_responses_share_one_account(self, file_engine, wallet):
        workers = 6
        factory = sessionmaker(autocommit=False, autoflush=False, bind=file_engine)

        def override_get_db():
            session = factory()
            try:
                yield session
            finally:
                session.close()

        app.dependency_overrides[get_db] = override_get_db
        try:
            setup_client = TestClient(app)
            messages = [
                setup_client.get(f"/api/auth/nonce/{wallet.address}").json()["message"]
                for _ in range(workers)
            ]
            barrier = threading.Barrier(workers)

            def attempt(message):
                thread_client = TestClient(app)
                signature = sign_message(wallet, message)
                barrier.wait()
                return _verify(thread_client, wallet, message, signature)

            with ThreadPoolExecutor(max_workers=workers) as pool:
                responses = list(pool.map(attempt, messages))
        finally:
            app.dependency_overrides.clear()

        assert [r.status_code for r in responses] == [status.HTTP_200_OK] * workers, [r.text for r in responses]
        bodies = [r.json() for r in responses]
        assert len({body["userId"] for body in bodies}) == 1
        assert sum(1 for body in bodies if body["isNewUser"]) == 1

        check = factory()
        assert check.query(User).count() == 1
        assert check.query(WalletAddress).count() == 1
        check.close()


class TestLinkWalletAPI:
    """Test cases for POST /api/auth/link-wallet"""

    def test_link_wallet_success(self, client: TestClient, wallet, other_wallet, sign_in, db, captured_events):
        session = sign_in(wallet)

        response = client.post(
            "/api/auth/link-wallet",
            json={
                "walletAddress": other_wallet.address.lower(),
                "userId": session["userId"],
                "authToken": session["token"],
            },
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {
            "success": True,
            "message": "Wallet linked successfully",
            "walletAddress": other_wallet.address,
        }
        link = db.query(WalletAddress).filter(WalletAddress.wallet_address == other_wallet.address).one()
        assert link.user_id == session["userId"]
        assert link.is_primary is False
        assert captured_events[-1].type == AuthEventType.WALLET_LINKED

    def test_linked_wallet_signs_in_to_same_account(self, client: TestClient, wallet, other_wallet, sign_in):
        session = sign_in(wallet)
        client.post(
            "/api/auth/link-wallet",
            json={
                "walletAddress": other_wallet.address,
                "userId": session["userId"],
                "authToken": session["token"],
            },
        )

        second = sign_in(other_wallet)

        assert second["userId"] == session["userId"]
        assert second["isNewUser"] is False

    def test_token_subject_differs_from_user_id(self, client: TestClient, wallet, other_wallet, third_wallet, sign_in):
        session = sign_in(wallet)
        intruder = sign_in(other_wallet)

        response = client.post(
            "/api/auth/link-wallet",
            json={
                "walletAddress": third_wallet.address,
                "userId": session["userId"],
                "authToken": intruder["token"],
            },
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert response.json() == {"error": "Unauthorized"}

    def test_invalid_token(self, client: TestClient, wallet, other_wallet, sign_in):
        session = sign_in(wallet)

        response = client.post(
            "/api/auth/link-wallet",
            json={
                "walletAddress": other_wallet.address,
                "userId": session["userId"],
                "authToken": session["token"] + "x",
            },
        )

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json() == {"error": "Invalid or expired token"}

    def test_already_linked_wallet(self, client: TestClient, wallet, other_wallet, sign_in):
        session = sign_in(wallet)
        sign_in(other_wallet)

        response = client.post(
            "/api/auth/link-wallet",
            json={
                "walletAddress": other_wallet.address,
                "userId": session["userId"],
                "authToken": session["token"],
            },
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json() == {"error": "Wallet already linked to another account"}

    def test_own_primary_wallet_is_already_linked(self, client: TestClient, wallet, sign_in):
        session = sign_in(wallet)

        response = client.post(
            "/api/auth/link-wallet",
            json={
                "walletAddress": wallet.address,
                "userId": session["userId"],
                "authToken": session["token"],
            },
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    @pytest.mark.parametrize("missing", ["walletAddress", "userId", "authToken"])
    def test_missing_fields(self, client: TestClient, wallet, missing):
        body = {"walletAddress": wallet.address, "userId": "u", "authToken": "t"}
        del body[missing]

        response = client.post("/api/auth/link-wallet", json=body)

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json() == {"error": "Missing required fields"}


class TestSessionAPI:
    """Test cases for GET /api/auth/me"""

    def test_me_lists_wallets(self, client: TestClient, wallet, other_wallet, sign_in):
        session = sign_in(wallet)
        client.post(
            "/api/auth/link-wallet",
            json={
                "walletAddress": other_wallet.address,
                "userId": session["userId"],
                "authToken": session["token"],
            },
        )

        response = client.get("/api/auth/me", headers={"Authorization": f"Bearer {session['token']}"})

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {
            "userId": session["userId"],
            "walletAddress": wallet.address,
            "authMethod": "wallet",
            "wallets": [
                {"walletAddress": wallet.address, "isPrimary": True},
                {"walletAddress": other_wallet.address, "isPrimary": False},
            ],
        }

    def test_me_accepts_plain_token(self, client: TestClient, wallet, sign_in):
        session = sign_in(wallet)

        response = client.get("/api/auth/me", headers={"Authorization": session["token"]})

        assert response.status_code == status.HTTP_200_OK

    def test_me_without_header(self, client: TestClient):
        response = client.get("/api/auth/me")

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json() == {"error": "Invalid or expired token"}

    def test_me_with_foreign_token(self, client: TestClient):
        token = jwt.encode(
            {"userId": "u", "walletAddress": "0x0", "exp": 4102444800},
            "not-our-key-0123456789abcdef0123456789abcdef",
            algorithm="HS256",
        )

        response = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_me_for_account_without_wallets(self, client: TestClient):
        token = create_access_token("orphan", "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed")

        response = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["wallets"] == []
