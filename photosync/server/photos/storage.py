"""Durable photo placement under {root}/{year}/{month}/{filename}.

Every filesystem access goes through PhotoStorage.resolve_absolute_path, which
rejects anything that would land outside the storage root.
"""

import logging
import os
import re
import uuid
from datetime import datetime
from pathlib import Path
from typing import BinaryIO, Iterable, List, Optional

from photosync.errors import FileTooLarge, InvalidPath, ValidationError
from photosync.server.config import get_settings

log = logging.getLogger(__name__)

MAX_FILENAME_LENGTH = 200
MAX_SUFFIX_ATTEMPTS = 9999
PLACEHOLDER = "_"
TEMP_SUFFIX = ".part"
_COPY_BUFFER = 80 * 1024

# Characters not allowed in a file name on common filesystems, plus control chars.
_UNSAFE_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f\x7f]')


def sanitize_filename(filename: str) -> str:
    """
    Return a safe leaf name: no directory part, unsafe characters replaced with '_',
    at most MAX_FILENAME_LENGTH characters with the extension preserved.
    Raises ValidationError if nothing usable remains.
    """
    name = (filename or "").replace("\\", "/").split("/")[-1].strip()
    if not name or name in (".", ".."):
        raise ValidationError(f"Invalid filename: {filename!r}")
    name = _UNSAFE_CHARS.sub(PLACEHOLDER, name)
    if len(name) > MAX_FILENAME_LENGTH:
        stem, ext = os.path.splitext(name)
        if len(ext) >= MAX_FILENAME_LENGTH:
            ext = ""
        name = stem[: MAX_FILENAME_LENGTH - len(ext)] + ext
    return name


def remaining_length(stream: BinaryIO) -> Optional[int]:
    """Bytes left in a seekable stream, or None if the length cannot be known up front."""
    try:
        if not stream.seekable():
            return None
        pos = stream.tell()
        end = stream.seek(0, os.SEEK_END)
        stream.seek(pos)
        return end - pos
    except (AttributeError, OSError):
        return None


class PhotoStorage:
    """File system photo storage with Year/Month folders and collision-free names."""

    def __init__(
        self,
        base_path: Path,
        allowed_extensions: Iterable[str],
        max_file_size_bytes: int,
    ) -> None:
        if not str(base_path).strip():
            raise ValueError("Base path cannot be empty")
        self._base = Path(base_path).expanduser().resolve()
        self._base.mkdir(parents=True, exist_ok=True)
        self._allowed = frozenset(e.lower() for e in allowed_extensions)
        self._max_bytes = max_file_size_bytes

    @property
    def base_path(self) -> Path:
        return self._base

    @property
    def max_file_size_bytes(self) -> int:
        return self._max_bytes

    def resolve_absolute_path(self, relative_path: str) -> Path:
        """
        Resolve a stored relative path (forward slashes) to an absolute path strictly
        inside the root. Raises InvalidPath otherwise; never leaks raw OS errors.
        """
        if not relative_path or not relative_path.strip():
            raise InvalidPath("Stored path cannot be empty")
        if "\x00" in relative_path:
            log.warning("Security: stored path with null byte rejected: %r", relative_path)
            raise InvalidPath("Invalid stored path")
        normalized = relative_path.replace("\\", "/")
        try:
            candidate = (self._base / normalized).resolve()
        except (OSError, ValueError, RuntimeError):
            log.warning("Security: unresolvable stored path rejected: %r", relative_path)
            raise InvalidPath("Invalid stored path") from None
        if candidate == self._base or not candidate.is_relative_to(self._base):
            log.warning("Security: path traversal rejected: %r -> %s", relative_path, candidate)
            raise InvalidPath("Invalid stored path - path traversal detected")
        return candidate

    def exists(self, relative_path: str) -> bool:
        """True if a stored file exists at relative_path. Never raises."""
        try:
            return self.resolve_absolute_path(relative_path).is_file()
        except Exception:
            return False

    def delete(self, relative_path: str) -> bool:
        """
        Delete a stored file. Returns False if it does not exist. Removes now-empty
        month/year folders up to (not including) the root.
        """
        if not relative_path or not relative_path.strip():
            return False
        target = self.resolve_absolute_path(relative_path)
        if not target.is_file():
            return False
        target.unlink()
        parent = target.parent
        while parent != self._base and parent.is_relative_to(self._base):
            try:
                if any(parent.iterdir()):
                    break
                parent.rmdir()
            except OSError:
                break
            parent = parent.parent
        return True

    def store(self, stream: BinaryIO, original_filename: str, date_taken: datetime) -> str:
        """
        Copy stream to {YYYY}/{MM}/{unique name} and return that relative path.
        Never overwrites: the final name is claimed with a create-only link after the
        bytes are fully written to a hidden temp file in the same folder.
        """
        length = remaining_length(stream)
        if length is not None:
            if length <= 0:
                raise ValidationError("File is empty")
            if length > self._max_bytes:
                raise FileTooLarge(self._max_bytes)

        filename = sanitize_filename(original_filename)
        stem, ext = os.path.splitext(filename)
        if ext.lower() not in self._allowed:
            raise ValidationError(f"File extension '{ext}' is not allowed")

        folder_rel = f"{date_taken.year:04d}/{date_taken.month:02d}"
        folder = self.resolve_absolute_path(folder_rel)
        folder.mkdir(parents=True, exist_ok=True)

        temp = folder / f".{uuid.uuid4().hex}{TEMP_SUFFIX}"
        try:
            try:
                self._copy_limited(stream, temp)
            except FileNotFoundError:
                # A concurrent delete pruned the empty folder between mkdir and open
                folder.mkdir(parents=True, exist_ok=True)
                self._copy_limited(stream, temp)
            for candidate in self._candidate_names(stem, ext, folder):
                rel = f"{folder_rel}/{candidate}"
                dest = self.resolve_absolute_path(rel)
                try:
                    os.link(temp, dest)
                except FileExistsError:
                    log.debug("store: %s taken at write time, trying next name", rel)
                    continue
                log.info("store: %s -> %s", original_filename, rel)
                return rel
        finally:
            temp.unlink(missing_ok=True)
        # Unreachable: the last candidate is a fresh uuid name
        raise OSError(f"Could not allocate a file name for {filename!r}")

    def _copy_limited(self, stream: BinaryIO, dest: Path) -> int:
        """Write stream to dest (create-only), enforcing the size limit while copying."""
        written = 0
        with open(dest, "xb") as out:
            while True:
                chunk = stream.read(_COPY_BUFFER)
                if not chunk:
                    break
                written += len(chunk)
                if written > self._max_bytes:
                    raise FileTooLarge(self._max_bytes)
                out.write(chunk)
            out.flush()
            os.fsync(out.fileno())
        if written == 0:
            raise ValidationError("File is empty")
        return written

    @staticmethod
    def _candidate_names(stem: str, ext: str, folder: Path):
        """Yield the plain name, then name_001 .. name_9999, then a uuid name.

        Names that already exist are skipped here; the link in store() is the final check.
        """
        first = f"{stem}{ext}"
        if not (folder / first).exists():
            yield first
        for counter in range(1, MAX_SUFFIX_ATTEMPTS + 1):
            candidate = f"{stem}_{counter:03d}{ext}"
            if not (folder / candidate).exists():
                yield candidate
        yield f"{stem}_{uuid.uuid4().hex}{ext}"

    def iter_files(self) -> List[str]:
        """Relative paths of all stored files (in-flight temp files excluded)."""
        result: List[str] = []
        try:
            for f in self._base.rglob("*"):
                if f.is_file() and not f.name.endswith(TEMP_SUFFIX):
                    try:
                        result.append(str(f.relative_to(self._base)).replace("\\", "/"))
                    except ValueError:
                        continue
        except OSError:
            pass
        return sorted(result)


def get_storage() -> PhotoStorage:
    """Build PhotoStorage from settings (FastAPI dependency)."""
    settings = get_settings()
    return PhotoStorage(
        settings.storage_base_path,
        settings.allowed_extensions_set,
        settings.max_file_size_bytes,
    )
