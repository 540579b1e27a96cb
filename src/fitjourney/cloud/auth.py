"""
Firebase Authentication session with disk persistence.

Signing in with email + password through the Identity Toolkit REST API
returns an ID token (short-lived, ~1 hour) and a refresh token
(long-lived). We persist both, together with the Firebase user id:

    {
        "user_id": "<firebase uid>",
        "email": "you@example.com",
        "id_token": "...",
        "refresh_token": "...",
        "expires_at": 1735689600.0
    }

so the password is only needed once. Expired ID tokens are exchanged
for fresh ones through the Secure Token API; if Firebase rejects the
refresh token (password changed, account disabled) we raise
SessionExpiredError and ask the user to run `python -m fitjourney setup`
again.

The "signed-in user" for the sync engine and the services is simply the
user id stored in this session file.
"""
import json
import os
import stat
import time
from pathlib import Path
from typing import Any, Dict, Optional

import httpx

# ── Constants ─────────────────────────────────────────────────────────────────

SESSION_FILE_NAME = "session.json"
SIGN_IN_URL = "https://identitytoolkit.googleapis.com/v1/accounts:signInWithPassword"
DELETE_ACCOUNT_URL = "https://identitytoolkit.googleapis.com/v1/accounts:delete"
REFRESH_URL = "https://securetoken.googleapis.com/v1/token"
EXPIRY_MARGIN_SECONDS = 60


# ── Exceptions ────────────────────────────────────────────────────────────────

class NotLoggedInError(RuntimeError):
    """Raised when no user is signed in on this device."""


class SessionExpiredError(RuntimeError):
    """Raised when the saved refresh token is rejected by Firebase."""


# ── Main class ────────────────────────────────────────────────────────────────

class FirebaseAuth:
    """
    Manages the Firebase session for the single signed-in user.

    Usage:
        auth = FirebaseAuth(api_key, session_dir)
        if not auth.has_session():
            auth.sign_in_and_save(email, password)
        uid = auth.current_user_id()
        token = auth.id_token()        # refreshed transparently
    """

    def __init__(
        self,
        api_key: str,
        session_dir: Path,
        http_client: Optional[httpx.Client] = None,
    ):
        self._api_key = api_key
        self._session_dir = Path(session_dir)
        self._session_file = self._session_dir / SESSION_FILE_NAME
        self._http = http_client or httpx.Client(timeout=30.0)

    @property
    def session_dir(self) -> Path:
        return self._session_dir

    # ── Persistence ───────────────────────────────────────────────────────────

    def has_session(self) -> bool:
        """Return True if a session file exists on disk."""
        return self._session_file.exists()

    def save(self, session_data: Dict[str, Any]) -> None:
        """
        Persist session_data to disk with owner-only permissions.

        Directory: 0700 (rwx------)
        File:      0600 (rw-------)
        """
        self._session_dir.mkdir(parents=True, exist_ok=True)
        os.chmod(self._session_dir, stat.S_IRWXU)

        self._session_file.write_text(json.dumps(session_data, indent=2))
        os.chmod(self._session_file, stat.S_IRUSR | stat.S_IWUSR)

    def load(self) -> Dict[str, Any]:
        """
        Load session_data from disk.

        Raises:
            NotLoggedInError: if no session file exists.
        """
        if not self._session_file.exists():
            raise NotLoggedInError(
                f"No signed-in user (no session at {self._session_file}). "
                "Run `python -m fitjourney setup` to sign in."
            )
        return json.loads(self._session_file.read_text())

    def clear(self) -> None:
        """Delete the session file (does not raise if already absent)."""
        if self._session_file.exists():
            self._session_file.unlink()

    # ── Auth ──────────────────────────────────────────────────────────────────

    def sign_in_and_save(self, email: str, password: str) -> Dict[str, Any]:
        """
        Sign in with email + password and save the resulting tokens.

        Returns:
            The persisted session dict.

        Raises:
            httpx.HTTPStatusError: on bad credentials or API errors.
        """
        resp = self._http.post(
            SIGN_IN_URL,
            params={"key": self._api_key},
            json={"email": email, "password": password, "returnSecureToken": True},
        )
        resp.raise_for_status()
        data = resp.json()

        session = {
            "user_id": data["localId"],
            "email": data.get("email", email),
            "id_token": data["idToken"],
            "refresh_token": data["refreshToken"],
            "expires_at": time.time() + int(data.get("expiresIn", 3600)),
        }
        self.save(session)
        return session

    def current_user_id(self) -> str:
        """Return the signed-in Firebase user id.

        Raises:
            NotLoggedInError: if nobody is signed in.
        """
        return self.load()["user_id"]

    def id_token(self) -> str:
        """Return a valid ID token, refreshing it first if it is about to expire.

        Raises:
            NotLoggedInError: if nobody is signed in.
            SessionExpiredError: if the refresh token is no longer accepted.
        """
        session = self.load()
        if session.get("expires_at", 0) - EXPIRY_MARGIN_SECONDS > time.time():
            return session["id_token"]
        return self._refresh(session)["id_token"]

    def _refresh(self, session: Dict[str, Any]) -> Dict[str, Any]:
        resp = self._http.post(
            REFRESH_URL,
            params={"key": self._api_key},
            data={"grant_type": "refresh_token", "refresh_token": session["refresh_token"]},
        )
        if resp.status_code in (400, 401, 403):
            raise SessionExpiredError(
                "Firebase session has expired. "
                "Run `python -m fitjourney setup` to sign in again."
            )
        resp.raise_for_status()
        data = resp.json()

        session = dict(session)
        session["id_token"] = data["id_token"]
        session["refresh_token"] = data.get("refresh_token", session["refresh_token"])
        session["expires_at"] = time.time() + int(data.get("expires_in", 3600))
        self.save(session)
        return session

    def delete_account(self) -> None:
        """Delete the signed-in Firebase account and forget the local session."""
        resp = self._http.post(
            DELETE_ACCOUNT_URL,
            params={"key": self._api_key},
            json={"idToken": self.id_token()},
        )
        resp.raise_for_status()
        self.clear()
