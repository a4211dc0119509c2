"""whoami.py

Print the user behind the locally cached session, refreshing the access
credential when needed.  Exit status is ``0`` when a user was resolved and
``1`` otherwise.

The session file defaults to ``GALLERY_SESSION_FILE`` and the API base URL
to ``GALLERY_API_URL``.  Tokens are never printed.

Example
-------
    python scripts/whoami.py --api-url http://localhost:8000
    python scripts/whoami.py --logout
"""
from __future__ import annotations

import argparse
import asyncio
import json
import sys
from dataclasses import replace
from pathlib import Path

from gallery_auth.client import FileSessionStorage, SessionManager
from gallery_auth.utils.environment import ClientSettings
from gallery_auth.utils.logging import setup_logging


async def _run(settings: ClientSettings, storage: FileSessionStorage, logout: bool) -> int:
    async with SessionManager(settings, storage=storage) as session:
        if logout:
            await session.logout()
            print("Signed out.")
            return 0

        user = await session.get_current_user_profile()
        if user is None:
            print("Not signed in.", file=sys.stderr)
            return 1
        print(json.dumps(user.to_payload(), indent=2))
        return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Show the signed-in gallery user.")
    parser.add_argument("--api-url", default=None, help="Overrides GALLERY_API_URL")
    parser.add_argument("--session-file", type=Path, default=None)
    parser.add_argument("--logout", action="store_true", help="Discard the cached session")
    parser.add_argument("--log-level", default=None)
    args = parser.parse_args()

    setup_logging(args.log_level)
    settings = ClientSettings.from_env()
    if args.api_url:
        settings = replace(settings, api_url=args.api_url.rstrip("/"))
    storage = FileSessionStorage(args.session_file or settings.session_file)
    sys.exit(asyncio.run(_run(settings, storage, args.logout)))


if __name__ == "__main__":
    main()
