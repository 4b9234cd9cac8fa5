"""
ZIP archive access for EPUB containers.

Entries are looked up by exact path first and then case-insensitively, since
producers are inconsistent about the casing of container and OPF paths.
"""

import base64
import io
import logging
import re
import zipfile

from ..errors import MalformedContainerError

logger = logging.getLogger(__name__)

_URL_SCHEME_RE = re.compile(r"^[a-z]+://", re.IGNORECASE)


def strip_query_hash(value: str | None) -> str:
    return str(value or "").split("#", 1)[0].split("?", 1)[0]


def resolve_path(base_path: str, next_path: str) -> str:
    """
    Resolve ``next_path`` relative to the directory of ``base_path``.

    Handles ``.`` and ``..`` segments, treats a leading slash as archive
    root and passes absolute URLs through untouched.
    """
    safe_base = strip_query_hash(base_path)
    safe_next = strip_query_hash(next_path)
    if not safe_next:
        return ""
    if _URL_SCHEME_RE.match(safe_next):
        return safe_next

    base_segments = safe_base.split("/")[:-1] if "/" in safe_base else []
    next_segments = safe_next.lstrip("/").split("/")
    merged = next_segments if safe_next.startswith("/") else base_segments + next_segments

    resolved: list[str] = []
    for segment in merged:
        if not segment or segment == ".":
            continue
        if segment == "..":
            if resolved:
                resolved.pop()
            continue
        resolved.append(segment)
    return "/".join(resolved)


class EPUBArchive:
    """Read-only view of an EPUB's ZIP entries loaded from a byte buffer."""

    def __init__(self, zip_file: zipfile.ZipFile):
        self._zip = zip_file
        self._entries = {info.filename: info for info in zip_file.infolist()}

    @classmethod
    def from_bytes(cls, data: bytes) -> "EPUBArchive":
        try:
            return cls(zipfile.ZipFile(io.BytesIO(data)))
        except zipfile.BadZipFile as e:
            raise MalformedContainerError(f"Not a ZIP archive: {e}") from e

    @property
    def names(self) -> list[str]:
        return list(self._entries.keys())

    def find_entry(self, target_path: str | None) -> zipfile.ZipInfo | None:
        if not target_path:
            return None
        direct = self._entries.get(target_path)
        if direct is not None:
            return direct
        lowered = target_path.lower()
        for name, info in self._entries.items():
            if name.lower() == lowered:
                return info
        return None

    def read_bytes(self, target_path: str) -> bytes | None:
        entry = self.find_entry(target_path)
        if entry is None:
            return None
        return self._zip.read(entry)

    def read_text(self, target_path: str) -> str | None:
        data = self.read_bytes(target_path)
        if data is None:
            return None
        return data.decode("utf-8", errors="replace")

    def read_base64(self, target_path: str) -> str | None:
        data = self.read_bytes(target_path)
        if data is None:
            return None
        return base64.b64encode(data).decode("ascii")

    def close(self) -> None:
        self._zip.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
