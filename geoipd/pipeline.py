"""
Database update pipeline

Decides whether a fresh database is needed, downloads and verifies the
archive, installs the (data file, checksum sidecar) pair and opens a new
decoder handle over it. Nothing here touches the currently serving handle.
"""

import hashlib
import logging
import os
import posixpath
import re
import shutil
import tarfile
import tempfile
import zlib
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, NamedTuple, Optional, Union

from .config import CHECKSUM_URL_SUFFIX, DATABASE_EXT
from .decoder import open_database
from .errors import (
    ArchiveError,
    ChecksumMismatchError,
    EntryNotFoundError,
    StorageError,
    TransferError,
)
from .transport import redact_url

logger = logging.getLogger("geoipd.pipeline")

Fetch = Callable[[str], Iterable[bytes]]

_MD5_RE = re.compile(r"^[0-9a-f]{32}$")


@dataclass(frozen=True)
class DatabaseFiles:
    """Well-known paths of one edition under the data directory"""

    data_dir: Path
    edition: str

    @property
    def entry_name(self) -> str:
        return f"{self.edition}.{DATABASE_EXT}"

    @property
    def data_path(self) -> Path:
        return Path(self.data_dir) / self.entry_name

    @property
    def checksum_path(self) -> Path:
        return Path(self.data_dir) / f"{self.entry_name}.md5"

    def exists(self) -> bool:
        return self.data_path.is_file() and self.checksum_path.is_file()

    def read_checksum(self) -> str:
        try:
            return self.checksum_path.read_text(encoding="ascii").strip().lower()
        except (OSError, UnicodeDecodeError) as e:
            raise StorageError(f"failed to read {self.checksum_path}: {e}") from e


class Installed(NamedTuple):
    handle: object
    checksum: str
    downloaded: bool


class NoChangeNeeded(NamedTuple):
    checksum: str


RefreshResult = Union[Installed, NoChangeNeeded]


class UpdatePipeline:
    def __init__(self, files: DatabaseFiles, download_url: str, fetch: Fetch,
                 opener: Callable = open_database):
        self.files = files
        self.download_url = download_url
        self.fetch = fetch
        self.opener = opener

    def build_urls(self, license_key: str):
        url = (self.download_url
               .replace("@EDITION@", self.files.edition)
               .replace("@LICENSE_KEY@", license_key))
        return url, url + CHECKSUM_URL_SUFFIX

    def fetch_checksum(self, url: str) -> str:
        body = b"".join(self.fetch(url))
        try:
            checksum = body.decode("ascii").strip().lower()
        except UnicodeDecodeError:
            checksum = None
        if checksum is None or not _MD5_RE.match(checksum):
            raise TransferError(f"malformed checksum from {redact_url(url)}: {body[:64]!r}")
        return checksum

    def refresh(self, license_key: str, current_checksum: Optional[str] = None) -> RefreshResult:
        """Bring the installed database up to date.

        current_checksum is the archive checksum of the data being served, or
        None when nothing is open. Returns NoChangeNeeded only when the remote
        checksum equals both the installed sidecar and current_checksum;
        otherwise returns Installed with a freshly opened handle. Raises a
        RefreshError subclass on failure, leaving installed files untouched.
        """
        archive_url, checksum_url = self.build_urls(license_key)
        expected: Optional[str] = None

        if not self.files.exists():
            logger.info("either database or its last checksum is not present, will download new database",
                        extra={"component": "pipeline", "event": "missing", "edition": self.files.edition})
        else:
            logger.info("checking for database updates",
                        extra={"component": "pipeline", "event": "check", "edition": self.files.edition})
            local = self.files.read_checksum()
            remote = self.fetch_checksum(checksum_url)
            if remote == local:
                logger.info("no update found", extra={"component": "pipeline", "event": "up_to_date",
                                                      "checksum": local})
                if current_checksum == local:
                    return NoChangeNeeded(checksum=local)
                # Installed files are current but not what is being served
                return Installed(handle=self.opener(self.files.data_path), checksum=local, downloaded=False)
            logger.info("update available", extra={"component": "pipeline", "event": "stale",
                                                   "local": local, "remote": remote})
            expected = remote

        checksum = self._download_and_install(archive_url, checksum_url, expected)
        handle = self.opener(self.files.data_path)
        logger.info("database set up", extra={"component": "pipeline", "event": "installed",
                                              "checksum": checksum, "path": str(self.files.data_path)})
        return Installed(handle=handle, checksum=checksum, downloaded=True)

    def _download_and_install(self, archive_url: str, checksum_url: str, expected: Optional[str]) -> str:
        data_dir = Path(self.files.data_dir)
        try:
            data_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"failed to create data directory {data_dir}: {e}") from e

        archive_tmp = self._mktemp(".tar.gz.tmp")
        data_tmp = self._mktemp(".mmdb.tmp")
        checksum_tmp = self._mktemp(".md5.tmp")
        try:
            logger.info("downloading new database", extra={"component": "pipeline", "event": "download",
                                                           "url": redact_url(archive_url)})
            computed = self._download(archive_url, archive_tmp)

            if expected is None:
                expected = self.fetch_checksum(checksum_url)

            if computed != expected:
                logger.warning("%s != %s", computed, expected,
                               extra={"component": "pipeline", "event": "checksum_mismatch"})
                raise ChecksumMismatchError(computed, expected)

            self._extract(archive_tmp, data_tmp)
            logger.info("database downloaded", extra={"component": "pipeline", "event": "extracted"})
            self._discard(archive_tmp)

            try:
                checksum_tmp.write_text(expected, encoding="ascii")
                # Data file first: a crash before the second rename leaves a stale
                # sidecar, which only triggers a re-download next time.
                os.replace(data_tmp, self.files.data_path)
                os.replace(checksum_tmp, self.files.checksum_path)
            except OSError as e:
                raise StorageError(f"failed to install database files: {e}") from e
            return expected
        finally:
            for path in (archive_tmp, data_tmp, checksum_tmp):
                self._discard(path)

    def _mktemp(self, suffix: str) -> Path:
        try:
            fd, name = tempfile.mkstemp(prefix=f".{self.files.edition}.", suffix=suffix,
                                        dir=self.files.data_dir)
        except OSError as e:
            raise StorageError(f"failed to create temporary file in {self.files.data_dir}: {e}") from e
        os.close(fd)
        return Path(name)

    def _download(self, url: str, dest: Path) -> str:
        digest = hashlib.md5()
        try:
            with open(dest, "wb") as f:
                for chunk in self.fetch(url):
                    digest.update(chunk)
                    f.write(chunk)
        except OSError as e:
            raise StorageError(f"failed to write archive {dest}: {e}") from e
        return digest.hexdigest()

    def _extract(self, archive: Path, dest: Path) -> None:
        entry = self.files.entry_name
        try:
            with tarfile.open(archive, "r:gz") as tar:
                for member in tar:
                    if not member.isfile() or posixpath.basename(member.name) != entry:
                        continue
                    src = tar.extractfile(member)
                    with src, open(dest, "wb") as out:
                        shutil.copyfileobj(src, out)
                    return
        except (tarfile.TarError, zlib.error, EOFError) as e:
            raise ArchiveError(f"failed to read downloaded archive: {e}") from e
        except OSError as e:
            # gzip.BadGzipFile is an OSError
            raise ArchiveError(f"failed to unpack downloaded archive: {e}") from e
        raise EntryNotFoundError(entry)

    @staticmethod
    def _discard(path: Path) -> None:
        try:
            os.unlink(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("failed to delete temporary file %s: %s", path, e,
                           extra={"component": "pipeline", "event": "cleanup_failed"})
