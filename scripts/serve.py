"""serve.py

Run the gallery auth API locally.

Configuration comes from the environment (``GALLERY_JWT_SECRET``,
``GITHUB_CLIENT_ID`` ...); ``--env-file`` loads KEY=VALUE pairs first without
overriding variables that are already set.

Example
-------
    python scripts/serve.py --port 8000 --env-file scripts/.env.local
"""
from __future__ import annotations

import argparse
import os
from pathlib import Path

import uvicorn

from gallery_auth.servers import create_app
from gallery_auth.utils.logging import setup_logging


def _load_env_file(env_path: Path | None) -> None:
    """Load KEY=VALUE pairs from a .env style file into *os.environ*."""
    if env_path is None or not env_path.exists():
        return

    for raw in env_path.read_text(encoding="utf-8").splitlines():
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, val = line.split("=", 1)
        key = key.strip()
        if key and key not in os.environ:
            os.environ[key] = val.strip()


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the gallery auth API.")
    parser.add_argument("--host", default=os.getenv("GALLERY_HOST", "127.0.0.1"))
    parser.add_argument("--port", type=int, default=int(os.getenv("GALLERY_PORT", "8000")))
    parser.add_argument("--env-file", type=Path, default=None)
    parser.add_argument("--log-level", default=None, help="Overrides GALLERY_LOG_LEVEL")
    args = parser.parse_args()

    _load_env_file(args.env_file)
    setup_logging(args.log_level)
    uvicorn.run(create_app(), host=args.host, port=args.port)


if __name__ == "__main__":
    main()
