"""Concurrency-safe, on-disk storage for local identities.

This module introduces a *narrow* persistence interface
(:class:`IdentityStore`) and a JSON-file implementation
(:class:`DiskIdentityStore`).  The design follows these goals:

* **Uniqueness** – one record file per provider id; creating it is an atomic
  hard link of a fully written temp file, which fails when the record exists.
* **Atomicity** – updates use *temp-file + os.replace*.
* **Concurrency** – losers of a creation race retry as an update under a
  per-record lock, so two simultaneous logins never yield two accounts.
* **Filename safety** – externally supplied identifiers are hashed before
  hitting the filesystem.

Email addresses are never used as a lookup key.

Environment variables
---------------------
GALLERY_IDENTITY_DIR
    Base directory for persisted identities.
    Defaults to ``~/.gallery-auth/identities`` when unset.
"""

from __future__ import annotations

import json
import logging
import os
import time
import uuid
from contextlib import contextmanager
from dataclasses import asdict
from hashlib import sha256
from pathlib import Path
from typing import Iterator, Protocol, runtime_checkable

from gallery_auth.core.clock import default_clock as _clock
from gallery_auth.core.models import ExternalIdentity, LocalIdentity

_LOG = logging.getLogger("gallery-auth.core.store")

# --------------------------------------------------------------------------- #
# helpers                                                                     #
# --------------------------------------------------------------------------- #


def _now() -> int:
    return int(_clock())


def _hash(text: str, length: int = 24) -> str:
    return sha256(text.encode()).hexdigest()[:length]


def _write_json(path: Path, data: dict) -> None:
    with path.open("w", encoding="utf-8") as fh:
        json.dump(data, fh, separators=(",", ":"), sort_keys=True)


def _atomic_write(path: Path, data: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(f"{path.suffix}.{uuid.uuid4().hex[:8]}.tmp")
    _write_json(tmp, data)
    os.replace(tmp, path)  # atomic on POSIX


def _atomic_create(path: Path, data: dict) -> bool:
    """Publish *data* at *path* only if nothing exists there yet.

    Returns ``False`` when another writer created the file first.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(f"{path.suffix}.{uuid.uuid4().hex[:8]}.tmp")
    _write_json(tmp, data)
    try:
        os.link(tmp, path)
        return True
    except FileExistsError:
        return False
    finally:
        tmp.unlink(missing_ok=True)


@contextmanager
def _file_lock(lock_path: Path, retries: int = 25, delay: float = 0.05) -> Iterator[None]:
    """Advisory file lock using ``os.O_EXCL`` temp-file creation."""
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    for attempt in range(retries + 1):
        try:
            fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_RDWR)
            os.close(fd)
            break
        except FileExistsError:
            if attempt == retries:
                raise TimeoutError(f"Could not acquire lock {lock_path}") from None
            time.sleep(delay)
    try:
        yield
    finally:
        lock_path.unlink(missing_ok=True)


# --------------------------------------------------------------------------- #
# public interface                                                            #
# --------------------------------------------------------------------------- #


@runtime_checkable
class IdentityStore(Protocol):
    """Minimal persistence contract for local identities."""

    def upsert(self, external: ExternalIdentity, *, now: int | None = None) -> LocalIdentity: ...

    def get(self, user_id: str) -> LocalIdentity | None: ...

    def get_by_provider_id(self, provider_id: str) -> LocalIdentity | None: ...


# --------------------------------------------------------------------------- #
# Disk implementation                                                         #
# --------------------------------------------------------------------------- #


class DiskIdentityStore(IdentityStore):
    """JSON-file implementation of :class:`IdentityStore`."""

    def __init__(self, base_dir: str | os.PathLike | None = None) -> None:
        self.base_dir = Path(
            base_dir
            or os.getenv("GALLERY_IDENTITY_DIR")
            or Path.home() / ".gallery-auth" / "identities"
        ).expanduser()
        self.base_dir.mkdir(parents=True, exist_ok=True)

    # ---------------- paths ---------------------------------------------- #
    def _record_path(self, provider_id: str) -> Path:
        return self.base_dir / "providers" / f"{_hash(provider_id)}.json"

    def _record_lock(self, provider_id: str) -> Path:
        return self._record_path(provider_id).with_suffix(".lock")

    def _id_index_path(self, user_id: str) -> Path:
        return self.base_dir / "ids" / f"{_hash(user_id)}.json"

    @staticmethod
    def _load(path: Path) -> LocalIdentity | None:
        if not path.exists():
            return None
        with path.open(encoding="utf-8") as fh:
            data = json.load(fh)
        return LocalIdentity(**data)

    # ---------------- reads ---------------------------------------------- #
    def get_by_provider_id(self, provider_id: str) -> LocalIdentity | None:
        return self._load(self._record_path(provider_id))

    def get(self, user_id: str) -> LocalIdentity | None:
        index = self._id_index_path(user_id)
        if not index.exists():
            return None
        with index.open(encoding="utf-8") as fh:
            provider_id = json.load(fh).get("provider_id")
        if not provider_id:
            return None
        identity = self.get_by_provider_id(provider_id)
        # The index may outlive a lost creation race; trust the record only.
        if identity is None or identity.id != user_id:
            return None
        return identity

    # ---------------- writes --------------------------------------------- #
    def upsert(self, external: ExternalIdentity, *, now: int | None = None) -> LocalIdentity:
        """Create or refresh the local identity for *external*.

        The record file acts as the unique constraint on ``provider_id``: the
        first writer wins the create, every later (or concurrent) login takes
        the update path and keeps ``id`` / ``created_at``.
        """
        if not external.provider_id:
            raise ValueError("external identity has no provider id")
        ts = _now() if now is None else int(now)
        path = self._record_path(external.provider_id)

        if not path.exists():
            created = LocalIdentity(
                id=uuid.uuid4().hex,
                provider_id=external.provider_id,
                login=external.login,
                display_name=external.display_name or external.login,
                email=external.email,
                avatar_url=external.avatar_url,
                created_at=ts,
                updated_at=ts,
                last_login_at=ts,
            )
            if _atomic_create(path, asdict(created)):
                self._write_index(created)
                _LOG.info(
                    "Created local identity id=%s**** login=%s",
                    created.id[:6],
                    created.login,
                )
                return created
            _LOG.debug("Identity create lost race; retrying as update")

        with _file_lock(self._record_lock(external.provider_id)):
            current = self._load(path)
            if current is None:  # pragma: no cover - records are never deleted
                raise RuntimeError("identity record vanished during update")
            updated = current.with_login(external, now=ts)
            _atomic_write(path, asdict(updated))
            # The creator may have died (or still be running) before indexing.
            if not self._index_matches(updated):
                self._write_index(updated)

        _LOG.debug("Refreshed local identity id=%s****", updated.id[:6])
        return updated

    def _write_index(self, identity: LocalIdentity) -> None:
        _atomic_write(
            self._id_index_path(identity.id),
            {"provider_id": identity.provider_id},
        )

    def _index_matches(self, identity: LocalIdentity) -> bool:
        index = self._id_index_path(identity.id)
        if not index.exists():
            return False
        try:
            with index.open(encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, ValueError):
            return False
        return isinstance(data, dict) and data.get("provider_id") == identity.provider_id


# --------------------------------------------------------------------------- #
# Convenience – default singleton                                            #
# --------------------------------------------------------------------------- #

_default_store: DiskIdentityStore | None = None


def default_store() -> DiskIdentityStore:
    """Return a process-wide singleton :class:`DiskIdentityStore`."""
    global _default_store  # noqa: PLW0603
    if _default_store is None:
        _default_store = DiskIdentityStore()
    return _default_store
