"""
Interactive sign-in wizard for FitJourney.

Prompts for the Firebase email and password once, exchanges them for an
ID token and a refresh token, and saves the tokens to the session
directory (default ~/.fitjourney/) with owner-only permissions
(0700 dir / 0600 file).

The password itself is never written to disk. After setup the sync engine
and the scheduler act on behalf of the signed-in user.

Usage:
    python -m fitjourney setup
    python -m fitjourney.scripts.setup   (direct invocation)

Re-run if the session expires or you want to switch accounts.
"""
import getpass
import sys

from fitjourney.cloud.auth import FirebaseAuth
from fitjourney.config import get_settings
from fitjourney.db.engine import get_engine
from fitjourney.services.profile_service import ProfileService
from fitjourney.sync.queue import SyncQueue


def run_setup() -> None:
    settings = get_settings()
    auth = FirebaseAuth(settings.firebase_api_key, settings.session_dir)

    print("\nFitJourney - Cloud Sign-in\n")
    print("Your password will NOT be saved to disk.")
    print(f"Session tokens will be stored in: {auth.session_dir}\n")

    if not settings.firebase_api_key:
        print("Error: FIREBASE_API_KEY is not set (see .env).")
        sys.exit(1)

    if auth.has_session():
        print("An existing session was found.")
        overwrite = input("Sign in again and replace it? [y/N] ").strip().lower()
        if overwrite != "y":
            print("Setup cancelled. Existing session unchanged.")
            sys.exit(0)

    email = input("Email: ").strip()
    if not email:
        print("Error: email cannot be empty.")
        sys.exit(1)

    password = getpass.getpass("Password: ")
    if not password:
        print("Error: password cannot be empty.")
        sys.exit(1)

    print("\nSigning in...")
    try:
        session = auth.sign_in_and_save(email, password)
    except Exception as exc:
        print(f"\nSign-in failed: {exc}")
        print("Check your email and password and try again.")
        sys.exit(1)

    print(f"\nSigned in as {session.get('email', email)} (user {session['user_id']})")
    engine = get_engine()
    ProfileService(engine, SyncQueue(engine)).record_login(session["user_id"])

    print(f"Tokens saved to {auth.session_dir}")
    print("\nThe next sync will upload everything stored on this device.")
    print("If the session ever expires, just re-run:  python -m fitjourney setup\n")


if __name__ == "__main__":
    run_setup()
