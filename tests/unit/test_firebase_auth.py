"""Tests for FirebaseAuth session persistence and token refresh."""
import json
import stat
import time

import httpx
import pytest

from fitjourney.cloud.auth import (
    FirebaseAuth,
    NotLoggedInError,
    SessionExpiredError,
)

SIGN_IN_RESPONSE = {
    "localId": "uid-42",
    "email": "me@example.com",
    "idToken": "id-1",
    "refreshToken": "refresh-1",
    "expiresIn": "3600",
}


def _auth(tmp_path, handler) -> FirebaseAuth:
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return FirebaseAuth("api-key", tmp_path / "session", http_client=client)


class TestPersistence:
    def test_no_session_initially(self, tmp_path):
        auth = _auth(tmp_path, lambda r: httpx.Response(500))
        assert not auth.has_session()
        with pytest.raises(NotLoggedInError):
            auth.current_user_id()

    def test_sign_in_saves_session_owner_only(self, tmp_path):
        auth = _auth(tmp_path, lambda r: httpx.Response(200, json=SIGN_IN_RESPONSE))
        session = auth.sign_in_and_save("me@example.com", "secret")

        assert session["user_id"] == "uid-42"
        assert auth.current_user_id() == "uid-42"
        session_file = tmp_path / "session" / "session.json"
        assert stat.S_IMODE(session_file.stat().st_mode) == 0o600
        assert stat.S_IMODE((tmp_path / "session").stat().st_mode) == 0o700
        assert "secret" not in session_file.read_text()

    def test_bad_credentials_raise(self, tmp_path):
        auth = _auth(tmp_path, lambda r: httpx.Response(400, json={"error": {"message": "INVALID_PASSWORD"}}))
        with pytest.raises(httpx.HTTPStatusError):
            auth.sign_in_and_save("me@example.com", "wrong")
        assert not auth.has_session()

    def test_clear_is_idempotent(self, tmp_path):
        auth = _auth(tmp_path, lambda r: httpx.Response(200, json=SIGN_IN_RESPONSE))
        auth.sign_in_and_save("me@example.com", "secret")
        auth.clear()
        auth.clear()
        assert not auth.has_session()


class TestIdToken:
    def _saved(self, tmp_path, handler, expires_at):
        auth = _auth(tmp_path, handler)
        auth.save({
            "user_id": "uid-42",
            "id_token": "old-token",
            "refresh_token": "refresh-1",
            "expires_at": expires_at,
        })
        return auth

    def test_valid_token_is_reused(self, tmp_path):
        auth = self._saved(tmp_path, lambda r: httpx.Response(500), time.time() + 3600)
        assert auth.id_token() == "old-token"

    def test_expired_token_is_refreshed_and_saved(self, tmp_path):
        auth = self._saved(
            tmp_path,
            lambda r: httpx.Response(200, json={
                "id_token": "new-token", "refresh_token": "refresh-2", "expires_in": "3600",
            }),
            time.time() - 10,
        )
        assert auth.id_token() == "new-token"
        saved = json.loads((tmp_path / "session" / "session.json").read_text())
        assert saved["refresh_token"] == "refresh-2"

    def test_rejected_refresh_token_raises_session_expired(self, tmp_path):
        auth = self._saved(tmp_path, lambda r: httpx.Response(400, json={}), time.time() - 10)
        with pytest.raises(SessionExpiredError):
            auth.id_token()


def test_delete_account_clears_session(tmp_path):
    calls = []

    def handler(request):
        calls.append(request.url.path)
        return httpx.Response(200, json={})

    auth = _auth(tmp_path, handler)
    auth.save({"user_id": "uid-42", "id_token": "t", "refresh_token": "r", "expires_at": time.time() + 3600})
    auth.delete_account()
    assert calls == ["/v1/accounts:delete"]
    assert not auth.has_session()
