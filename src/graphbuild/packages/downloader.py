"""Source archive download and extraction.

Used by the dependency bootstrapper to retrieve external framework sources.
Downloads stream to a ``.download`` temp file next to the destination and are
renamed only once complete (and checksum-verified when a sha256 is given), so
an interrupted fetch never looks like a finished one.

Failures are not retried: a broken fetch aborts configuration immediately.
"""

import hashlib
import logging
import shutil
import tarfile
import zipfile
from pathlib import Path
from typing import Optional

import requests
from tqdm import tqdm

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 64 * 1024


class DownloadError(Exception):
    """Raised when an archive cannot be downloaded or fails verification."""

    pass


class ExtractionError(Exception):
    """Raised when an archive cannot be extracted."""

    pass


def _cleanup_temp_file(temp_file: Path) -> None:
    try:
        temp_file.unlink(missing_ok=True)
    except OSError as e:
        logger.debug(f"Could not remove {temp_file}: {e}")


class PackageDownloader:
    """Downloads and unpacks source archives."""

    def __init__(self, timeout: float = 60.0, show_progress: bool = True):
        """Initialize the downloader.

        Args:
            timeout: Connect/read timeout for HTTP requests in seconds
            show_progress: Show a tqdm progress bar while downloading
        """
        self.timeout = timeout
        self.show_progress = show_progress

    def download(self, url: str, dest: Path, sha256: str = "") -> Path:
        """Download url to dest.

        Args:
            url: Archive URL
            dest: Destination file path
            sha256: Expected hex digest (skipped when empty)

        Returns:
            Path to the downloaded file

        Raises:
            DownloadError: On HTTP/network failure or checksum mismatch
        """
        dest.parent.mkdir(parents=True, exist_ok=True)
        temp_file = Path(str(dest) + ".download")
        digest = hashlib.sha256()

        try:
            with requests.get(url, stream=True, timeout=self.timeout) as response:
                response.raise_for_status()
                total = int(response.headers.get("content-length", 0) or 0)
                with open(temp_file, "wb") as f, tqdm(
                    total=total or None,
                    desc=dest.name,
                    unit="B",
                    unit_scale=True,
                    ncols=80,
                    leave=False,
                    disable=not self.show_progress,
                ) as pbar:
                    for chunk in response.iter_content(chunk_size=_CHUNK_SIZE):
                        if not chunk:
                            continue
                        f.write(chunk)
                        digest.update(chunk)
                        pbar.update(len(chunk))
        except requests.RequestException as e:
            _cleanup_temp_file(temp_file)
            raise DownloadError(f"Failed to download {url}: {e}") from e
        except OSError as e:
            _cleanup_temp_file(temp_file)
            raise DownloadError(f"Failed to write {temp_file}: {e}") from e

        if sha256 and digest.hexdigest().lower() != sha256.lower():
            _cleanup_temp_file(temp_file)
            raise DownloadError(f"Checksum mismatch for {url}: expected {sha256}, got {digest.hexdigest()}")

        temp_file.replace(dest)
        logger.debug(f"Downloaded {url} -> {dest}")
        return dest

    def extract(self, archive: Path, extract_dir: Path) -> Path:
        """Extract archive into extract_dir.

        A single top-level directory in the archive (GitHub's repo-ref/ layout)
        is stripped, so extract_dir ends up holding the source tree directly.

        Raises:
            ExtractionError: If the archive is corrupt or of an unknown format
        """
        temp_dir = extract_dir.parent / f"{extract_dir.name}.extracting"
        if temp_dir.exists():
            shutil.rmtree(temp_dir)
        temp_dir.mkdir(parents=True)

        try:
            name = archive.name.lower()
            if name.endswith(".zip"):
                with zipfile.ZipFile(archive) as zf:
                    zf.extractall(temp_dir)
            elif name.endswith((".tar.gz", ".tgz", ".tar.bz2", ".tar.xz", ".tar")):
                with tarfile.open(archive) as tf:
                    if hasattr(tarfile, "data_filter"):
                        tf.extractall(temp_dir, filter="data")
                    else:
                        tf.extractall(temp_dir)
            else:
                raise ExtractionError(f"Unsupported archive format: {archive.name}")
        except (tarfile.TarError, zipfile.BadZipFile, OSError) as e:
            shutil.rmtree(temp_dir, ignore_errors=True)
            raise ExtractionError(f"Failed to extract {archive}: {e}") from e

        entries = list(temp_dir.iterdir())
        root = entries[0] if len(entries) == 1 and entries[0].is_dir() else temp_dir

        if extract_dir.exists():
            shutil.rmtree(extract_dir)
        shutil.move(str(root), str(extract_dir))
        shutil.rmtree(temp_dir, ignore_errors=True)
        return extract_dir

    def download_and_extract(self, url: str, cache_dir: Path, extract_dir: Path, sha256: str = "") -> Path:
        """Download url into cache_dir and extract it to extract_dir.

        Returns:
            extract_dir
        """
        archive_name = archive_name_for(url) or "source.tar.gz"
        archive = self.download(url, cache_dir / archive_name, sha256=sha256)
        return self.extract(archive, extract_dir)


def archive_name_for(url: str) -> Optional[str]:
    """Archive file name a URL downloads to, or None if it has no file component."""
    name = Path(url.split("/")[-1].split("?")[0]).name
    return name or None
