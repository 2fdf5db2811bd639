"""
Upload storage.

Every upload is written to a private staging file first and only linked into
the upload root under its public name once all bytes are on disk, so nothing
listing the directory ever sees a half-written file.
"""

import errno
import logging
import os
import tempfile
import threading
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path, PurePosixPath, PureWindowsPath
from typing import Collection

from werkzeug.utils import secure_filename

from .errors import MalformedRequestError, StorageError

logger = logging.getLogger(__name__)

STAGING_DIR_NAME = ".dropzone-staging"
FALLBACK_NAME = "upload"
MAX_NAME_LENGTH = 200

# ----------------------------
# Pure helpers
# ----------------------------

def format_bytes(num: int) -> str:
    """Human-readable file sizes."""
    units = ["B", "KB", "MB", "GB", "TB", "PB"]
    size = float(num)
    for unit in units:
        if size < 1024 or unit == units[-1]:
            if unit == "B":
                return f"{int(size)} {unit}"
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{num} B"

def sanitize_filename(raw_name: str) -> str:
    """
    Reduce a client-supplied filename to one safe path component.

    Directory parts are dropped for both separators (browsers on Windows send
    things like 'C:\\fakepath\\photo.jpg'), then werkzeug's secure_filename
    does the rest. Names that come out empty become 'upload'.
    """
    base = PureWindowsPath(PurePosixPath(raw_name or "").name).name
    name = secure_filename(base)
    if not name:
        return FALLBACK_NAME

    if len(name) > MAX_NAME_LENGTH:
        suffix = Path(name).suffix[:16]
        name = name[: MAX_NAME_LENGTH - len(suffix)].rstrip("._") + suffix
    return name

def resolve_name(requested: str, taken: Collection[str]) -> str:
    """Return requested, or 'name (n).ext' with the smallest n not in taken."""
    if requested not in taken:
        return requested
    path = Path(requested)
    stem, suffix = path.stem, path.suffix
    i = 1
    while True:
        candidate = f"{stem} ({i}){suffix}"
        if candidate not in taken:
            return candidate
        i += 1

def ensure_within_dir(base_dir: Path, target: Path) -> None:
    """Raise if target is not within base_dir (prevents path traversal)."""
    base_dir = base_dir.resolve()
    target = target.resolve()
    if base_dir not in target.parents:
        raise MalformedRequestError("Invalid filename")

def _publish(src: Path, dest: Path) -> None:
    """Make src visible as dest. Never replaces an existing dest."""
    try:
        os.link(src, dest)
    except FileExistsError:
        raise
    except OSError:
        # No hard links on this filesystem (FAT, some network mounts).
        if dest.exists():
            raise FileExistsError(errno.EEXIST, os.strerror(errno.EEXIST), str(dest))
        os.replace(src, dest)
        return
    os.unlink(src)

# ----------------------------
# Data
# ----------------------------

@dataclass(frozen=True)
class StoredFile:
    name: str
    path: Path
    size: int
    created_at: datetime


class UploadSession:
    """
    One in-flight upload.

    The session is also a minimal writable file object, so werkzeug's form
    parser can stream a multipart file part straight into it.
    """

    def __init__(self, sink: "StorageSink", requested_name: str, safe_name: str,
                 name: str, staging_path: Path, handle, client: str | None = None):
        self.sink = sink
        self.requested_name = requested_name
        self.safe_name = safe_name
        self.name = name
        self.staging_path = staging_path
        self.handle = handle
        self.client = client
        self.bytes_written = 0
        self.started_at = datetime.now()
        self.state = "open"

    @property
    def destination(self) -> Path:
        return self.sink.upload_root / self.name

    def write(self, data: bytes) -> int:
        self.sink.write_chunk(self, data)
        return len(data)

    def seek(self, offset: int, whence: int = os.SEEK_SET) -> int:
        if self.handle.closed:
            return 0
        return self.handle.seek(offset, whence)

    def tell(self) -> int:
        return self.bytes_written

    def flush(self) -> None:
        if not self.handle.closed:
            self.handle.flush()

    def close(self) -> None:
        self.handle.close()

    def __repr__(self) -> str:
        return f"<UploadSession {self.name!r} {self.state} {self.bytes_written} bytes>"

# ----------------------------
# Sink
# ----------------------------

class StorageSink:
    """Writes uploads under a single upload root."""

    def __init__(self, upload_root: Path):
        self.upload_root = Path(upload_root).resolve()
        self.staging_dir = self.upload_root / STAGING_DIR_NAME
        self.upload_root.mkdir(parents=True, exist_ok=True)
        self.staging_dir.mkdir(exist_ok=True)

        # Guards name reservation and publishing only, never data writes.
        self._lock = threading.Lock()
        self._reserved: set[str] = set()
        self._sweep_staging()

    def _sweep_staging(self) -> None:
        """Delete staging files left behind by a previous run that was killed."""
        for leftover in self.staging_dir.glob("upload-*.part"):
            try:
                leftover.unlink()
            except OSError as e:
                logger.warning("Cannot remove stale staging file %s: %s", leftover.name, e)
            else:
                logger.info("Removed stale staging file %s", leftover.name)

    def close(self) -> None:
        """Remove the staging directory if no upload is using it."""
        try:
            self.staging_dir.rmdir()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.debug("Keeping staging directory %s: %s", self.staging_dir, e)

    def _taken(self) -> set[str]:
        return set(os.listdir(self.upload_root)) | self._reserved

    def begin_upload(self, raw_filename: str, client: str | None = None) -> UploadSession:
        safe_name = sanitize_filename(raw_filename)

        with self._lock:
            name = resolve_name(safe_name, self._taken())
            ensure_within_dir(self.upload_root, self.upload_root / name)
            self._reserved.add(name)

        try:
            self.staging_dir.mkdir(exist_ok=True)
            fd, staging = tempfile.mkstemp(prefix="upload-", suffix=".part", dir=self.staging_dir)
            handle = os.fdopen(fd, "w+b")
        except OSError as e:
            self._release(name)
            raise StorageError(f"Cannot create staging file for {name!r}: {e}") from e

        logger.debug("Receiving %r as %r from %s", raw_filename, name, client)
        return UploadSession(self, raw_filename, safe_name, name, Path(staging), handle, client)

    def write_chunk(self, session: UploadSession, data: bytes) -> None:
        if session.state != "open":
            raise StorageError(f"Upload {session.name!r} is already {session.state}")
        try:
            session.handle.write(data)
        except OSError as e:
            raise StorageError(f"Writing {session.name!r} failed: {e}") from e
        session.bytes_written += len(data)

    def finalize(self, session: UploadSession) -> StoredFile:
        if session.state != "open":
            raise StorageError(f"Upload {session.name!r} is already {session.state}")
        try:
            session.handle.flush()
            os.fsync(session.handle.fileno())
            session.handle.close()
        except OSError as e:
            raise StorageError(f"Flushing {session.name!r} failed: {e}") from e

        tried = set()
        with self._lock:
            while True:
                dest = self.upload_root / session.name
                try:
                    _publish(session.staging_path, dest)
                    break
                except FileExistsError:
                    # Someone else created the name since we reserved it.
                    tried.add(session.name)
                    self._reserved.discard(session.name)
                    session.name = resolve_name(session.safe_name, self._taken() | tried)
                    self._reserved.add(session.name)
                except OSError as e:
                    raise StorageError(f"Cannot publish {session.name!r}: {e}") from e
            self._reserved.discard(session.name)

        session.state = "finalized"
        return StoredFile(
            name=session.name,
            path=dest,
            size=session.bytes_written,
            created_at=datetime.now(),
        )

    def abort(self, session: UploadSession) -> None:
        """Drop an unfinished upload. Safe to call more than once."""
        if session.state != "open":
            return
        session.state = "aborted"
        try:
            session.handle.close()
        except OSError as e:
            logger.warning("Closing staging file for %r failed: %s", session.name, e)
        session.staging_path.unlink(missing_ok=True)
        self._release(session.name)
        logger.info("Discarded incomplete upload %r after %s", session.name, format_bytes(session.bytes_written))

    def _release(self, name: str) -> None:
        with self._lock:
            self._reserved.discard(name)
