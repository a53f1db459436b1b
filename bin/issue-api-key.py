"""Issue an API key for an existing user and print it.

Usage: python bin/issue-api-key.py <username>

The API key is printed once and only its hash is stored. Issuing a new key
replaces the previous one.
"""

import asyncio
import sys
from pathlib import Path

# Add backend to path for imports
sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "backend"))

from identity.db import Database, SqliteUserDirectory
from identity.errors import ApiError
from identity.password import get_hasher
from identity.service import AuthService
from identity.settings import AuthSettings


async def main() -> None:
    if len(sys.argv) != 2:
        print(f"Usage: {sys.argv[0]} <username>")
        sys.exit(1)

    username = sys.argv[1]
    # Only database_path and password_hasher are needed; placeholders for the
    # session secrets and issuer let the script run without them being set.
    auth_settings = AuthSettings(session_key="x" * 64, session_encryption_key="x" * 32, auth0_issuer="unused")

    db = Database(auth_settings.database_path)
    db.connect()

    try:
        auth_service = AuthService(
            SqliteUserDirectory(db),
            password_hasher=get_hasher(auth_settings.password_hasher),
        )
        user = await auth_service.find_user(username=username)
        if user is None:
            print(f"Error: no user named {username!r}")
            sys.exit(1)

        try:
            user, raw_api_key = await auth_service.issue_api_key(user)
        except ApiError as e:
            print(f"Error: {e}")
            sys.exit(1)

        print(f"API key issued for {user.username} (uuid: {user.uuid})")
        print(f"API key: {raw_api_key}")
        print("Save this key securely - it cannot be retrieved again.")
    finally:
        db.close()


if __name__ == "__main__":
    asyncio.run(main())
