"""Per-site file storage with atomic replacement.

Each site owns one directory named after its site_id (never its domain).
Uploaded file sets are written as immutable releases; a ``current`` symlink
points at the live one:

    <sites_dir>/<site_id>/
    +-- current -> releases/<release_id>
    +-- releases/
        +-- <release_id>/index.html ...

Replacing a site's files stages a complete new release and then repoints
``current`` with a single ``os.replace`` of a temporary symlink. Readers see
either the old file set or the new one, never a mix and never an empty site.
A failure while staging leaves the live release untouched.

Upload paths (zip entry names and individual filenames) are validated before
anything touches the disk. A single unsafe entry refuses the whole upload.
"""

from __future__ import annotations

import io
import logging
import os
import shutil
import threading
import uuid
import zipfile
import zlib
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path, PurePosixPath, PureWindowsPath

from .errors import AllocationError, FileNotFound, MalformedArchive, WriteError
from .paths import CURRENT_LINK, RELEASES_DIR, SITES_DIR, current_link, releases_dir, site_dir

_LOG = logging.getLogger(__name__)

INDEX_FILE: str = "index.html"
"""File served for the site root and as the fallback for unknown paths."""


# =============================================================================
# Upload Paths
# =============================================================================


def normalize_upload_path(name: str) -> str:
    """Validate an uploaded file name and return its normalized relative path.

    Backslashes are treated as separators and empty or ``.`` segments are
    dropped. Absolute paths, drive letters, NUL bytes and any ``..`` segment
    are rejected.

    Args:
        name: Zip entry name or uploaded filename.

    Returns:
        Relative POSIX path, e.g. "css/site.css".

    Raises:
        MalformedArchive: The name is empty or would escape the site directory.
    """
    if not name or "\x00" in name:
        raise MalformedArchive("Upload contains an empty or invalid file name")

    posix = name.replace("\\", "/")
    if posix.startswith("/") or PureWindowsPath(name).drive:
        raise MalformedArchive(f"Upload contains an absolute path: {name}")

    parts = [part for part in posix.split("/") if part not in ("", ".")]
    if ".." in parts:
        raise MalformedArchive(f"Upload contains path traversal: {name}")
    if not parts:
        raise MalformedArchive("Upload contains an empty or invalid file name")

    return str(PurePosixPath(*parts))


class FileSet:
    """Collection of relative path -> bytes making up a site.

    Later additions with the same path replace earlier ones.
    """

    def __init__(self) -> None:
        self._files: dict[str, bytes] = {}

    def __len__(self) -> int:
        return len(self._files)

    def items(self) -> Iterator[tuple[str, bytes]]:
        return iter(self._files.items())

    def paths(self) -> list[str]:
        return sorted(self._files)

    def add_file(self, name: str, content: bytes) -> str:
        """Add one file after validating its name.

        Returns:
            The normalized path the file was stored under.

        Raises:
            MalformedArchive: Unsafe name, or the name collides with a directory.
        """
        path = normalize_upload_path(name)
        self._check_conflict(path)
        self._files[path] = content
        return path

    def add_archive(self, data: bytes) -> int:
        """Add every file entry of a zip archive.

        All entry names are validated before any entry is read, so an unsafe
        archive adds nothing.

        Returns:
            Number of files added.
        """
        entries = read_archive(data)
        for path, content in entries.items():
            self._check_conflict(path)
            self._files[path] = content
        return len(entries)

    def _check_conflict(self, path: str) -> None:
        # "a" as a file and "a/b" cannot both exist on disk
        prefix = path + "/"
        parents = {str(parent) for parent in PurePosixPath(path).parents if str(parent) != "."}
        for existing in self._files:
            if existing.startswith(prefix) or existing in parents:
                raise MalformedArchive(f"Upload contains conflicting paths: {path}")


def read_archive(data: bytes) -> dict[str, bytes]:
    """Read a zip archive into a path -> content mapping.

    Directory entries are skipped. Every entry name is validated first and
    the whole archive is refused if any of them is unsafe.

    Args:
        data: Raw zip bytes.

    Returns:
        Mapping of normalized relative path to file content.

    Raises:
        MalformedArchive: Corrupt archive or unsafe entry name.
    """
    try:
        archive = zipfile.ZipFile(io.BytesIO(data))
    except zipfile.BadZipFile as e:
        raise MalformedArchive("Uploaded zip is not a valid archive") from e

    with archive:
        entries = [
            (normalize_upload_path(info.filename), info)
            for info in archive.infolist()
            if not info.is_dir()
        ]

        files: dict[str, bytes] = {}
        for path, info in entries:
            try:
                files[path] = archive.read(info)
            except (zipfile.BadZipFile, zlib.error, NotImplementedError, RuntimeError) as e:
                raise MalformedArchive(f"Could not read archive entry: {info.filename}") from e

    return files


# =============================================================================
# Site File Repository
# =============================================================================


@dataclass(frozen=True)
class ResolvedFile:
    """A file resolved for serving.

    Attributes:
        path: Relative path actually served (may be the index fallback).
        location: Absolute path of the file inside the release it was
            resolved from. Releases are immutable, so the file stays valid
            while it is streamed even if the site is replaced meanwhile.
    """

    path: str
    location: Path

    @property
    def content(self) -> bytes:
        return self.location.read_bytes()


class SiteFileRepository:
    """Stores and serves site files keyed by site_id."""

    def __init__(self, base_dir: Path | None = None) -> None:
        self.base_dir = Path(base_dir or SITES_DIR)
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def _site_lock(self, site_id: str) -> Iterator[None]:
        """Serialize writers for one site."""
        with self._locks_guard:
            lock = self._locks.setdefault(site_id, threading.Lock())
        with lock:
            yield

    def site_path(self, site_id: str) -> Path:
        return site_dir(site_id, self.base_dir)

    # =========================================================================
    # Writes
    # =========================================================================

    def allocate_site_storage(self, site_id: str) -> Path:
        """Create a site's directory with an empty live release.

        Safe to call again for an already-allocated site.

        Returns:
            The site's storage directory.

        Raises:
            AllocationError: The directory could not be created.
        """
        link = current_link(site_id, self.base_dir)
        with self._site_lock(site_id):
            if link.is_symlink():
                return link.parent
            release_id = uuid.uuid4().hex
            try:
                (releases_dir(site_id, self.base_dir) / release_id).mkdir(parents=True)
                self._swap(link, release_id)
            except OSError as e:
                _LOG.exception("Failed to allocate storage for site %s", site_id)
                raise AllocationError(f"Could not allocate storage for {site_id}: {e}") from e
        _LOG.info("Allocated storage for site %s", site_id)
        return link.parent

    def replace_files(self, site_id: str, file_set: FileSet) -> None:
        """Atomically replace a site's entire file set.

        The release that was live before the swap is kept until the next
        replacement, so a reader that resolved it just before the swap can
        still finish. Older releases are pruned.

        Raises:
            WriteError: Staging or swapping failed. The previous files are intact.
        """
        link = current_link(site_id, self.base_dir)
        if not link.is_symlink():
            self.allocate_site_storage(site_id)

        releases = releases_dir(site_id, self.base_dir)
        with self._site_lock(site_id):
            previous = self._linked_release(link)
            release_id = uuid.uuid4().hex
            staging = releases / release_id
            try:
                staging.mkdir(parents=True)
                for path, content in file_set.items():
                    self._write_file(staging, path, content)
                self._swap(link, release_id)
            except OSError as e:
                shutil.rmtree(staging, ignore_errors=True)
                _LOG.exception("Failed to replace files for site %s", site_id)
                raise WriteError(f"Could not write files for {site_id}: {e}") from e

            self._prune_releases(releases, keep={release_id, previous})

        _LOG.info("Replaced files for site %s (%d files)", site_id, len(file_set))

    @staticmethod
    def _write_file(release: Path, path: str, content: bytes) -> None:
        target = release / path
        # Security: ensure we stay within the release directory
        if not target.resolve().is_relative_to(release.resolve()):
            raise OSError(f"Refusing to write outside release: {path}")
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)

    @staticmethod
    def _linked_release(link: Path) -> str | None:
        """Name of the release ``current`` points at, if any."""
        try:
            return Path(os.readlink(link)).name
        except OSError:
            return None

    @staticmethod
    def _swap(link: Path, release_id: str) -> None:
        """Point ``current`` at a release with one atomic rename."""
        tmp_link = link.with_name(f".{CURRENT_LINK}.{release_id}")
        os.symlink(Path(RELEASES_DIR) / release_id, tmp_link, target_is_directory=True)
        try:
            os.replace(tmp_link, link)
        except OSError:
            tmp_link.unlink(missing_ok=True)
            raise

    @staticmethod
    def _prune_releases(releases: Path, keep: set[str | None]) -> None:
        """Remove every release not in ``keep``, including crash leftovers."""
        for release in releases.iterdir():
            if release.name in keep:
                continue
            try:
                shutil.rmtree(release)
            except OSError:
                _LOG.warning("Could not remove old release %s", release, exc_info=True)

    def discard(self, site_id: str) -> None:
        """Remove a site's storage entirely."""
        root = self.site_path(site_id)
        with self._site_lock(site_id):
            if root.exists():
                shutil.rmtree(root)
        _LOG.info("Discarded storage for site %s", site_id)

    # =========================================================================
    # Reads
    # =========================================================================

    @staticmethod
    def normalize_request_path(requested_path: str | None) -> str:
        """Map a request path to a relative file path inside a site.

        Empty and ``/`` map to index.html, a trailing ``/`` maps to the
        directory's index.html.

        Raises:
            FileNotFound: Traversal, absolute path, backslash or NUL byte.
        """
        path = requested_path or ""
        if path.startswith("/"):
            path = path[1:]
        if not path:
            return INDEX_FILE

        if (
            "\\" in path
            or "\x00" in path
            or path.startswith("/")
            or PureWindowsPath(path).drive
        ):
            raise FileNotFound()

        parts = path.split("/")
        if ".." in parts:
            raise FileNotFound()

        cleaned = [part for part in parts if part not in ("", ".")]
        if path.endswith("/") or not cleaned:
            cleaned.append(INDEX_FILE)
        return str(PurePosixPath(*cleaned))

    def _live_release(self, site_id: str) -> Path | None:
        try:
            link = current_link(site_id, self.base_dir)
        except ValueError:
            return None
        # Resolve once so every read in this request uses the same release
        release = Path(os.path.realpath(link))
        return release if release.is_dir() else None

    def resolve_file(self, site_id: str, requested_path: str | None) -> ResolvedFile:
        """Find the file a request path refers to.

        Falls back to the site's index.html when the path does not exist.

        Raises:
            FileNotFound: Unknown site, rejected path, or neither the file nor
                index.html exists.
        """
        release = self._live_release(site_id)
        if release is None:
            raise FileNotFound()

        path = self.normalize_request_path(requested_path)
        for candidate in (path, INDEX_FILE):
            target = (release / candidate).resolve()
            if target.is_relative_to(release) and target.is_file():
                return ResolvedFile(path=candidate, location=target)
        raise FileNotFound()
