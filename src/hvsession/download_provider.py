"""Network transports for the extension pack workflow.

Two collaborators are needed to install the extension pack: a trusted
source for the hypervisor configuration (which artifact to fetch and its
checksum) and a file download transport. Both are protocols so embedding
hosts can supply their own; HTTP implementations built on requests are
provided.

Public API (the "studs"):
    DownloadProvider / HttpDownloadProvider
    ConfigSource / HttpConfigSource / StaticConfigSource
    sha256_file: Hex SHA-256 digest of a file
"""

import hashlib
import json
import logging
import os
from pathlib import Path
from typing import Protocol, runtime_checkable
from urllib.parse import urlparse

import requests

from hvsession.errors import HypervisorError, HypervisorStatus
from hvsession.modules.progress import FiniteTask
from hvsession.retry_handler import (
    RetryableHTTPError,
    retry_with_exponential_backoff,
    should_retry_http_error,
)

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


def sha256_file(path: Path) -> str:
    """Hex SHA-256 digest of a file, read in chunks."""
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def url_filename(url: str) -> str:
    """Last path component of a URL ("" if the path is empty)."""
    return Path(urlparse(url).path).name


@runtime_checkable
class DownloadProvider(Protocol):
    """Fetches a remote file to local disk."""

    def download_file(self, url: str, destination: Path, progress: FiniteTask | None = None) -> None:
        """Download url into destination.

        Raises:
            HypervisorError: with the status describing the failure
        """
        ...


@runtime_checkable
class ConfigSource(Protocol):
    """Trusted source of the hypervisor configuration key/value map."""

    def fetch(self) -> dict[str, str]:
        """Return the configuration.

        Raises:
            HypervisorError: NOT_TRUSTED / NOT_VALIDATED for integrity
                failures, EXTERNAL_ERROR for anything else
        """
        ...


class HttpDownloadProvider:
    """Download files over HTTP(S) with requests.

    Transient connection failures and retryable HTTP status codes are
    retried with exponential backoff.
    """

    def __init__(self, timeout: float = 60, max_attempts: int = 3):
        self.timeout = timeout
        self.max_attempts = max_attempts

    def download_file(self, url: str, destination: Path, progress: FiniteTask | None = None) -> None:
        destination = Path(destination)
        logger.info(f"Downloading {url} to {destination}")

        fetch = retry_with_exponential_backoff(max_attempts=self.max_attempts)(self._fetch)
        try:
            fetch(url, destination, progress)
        except (requests.RequestException, RetryableHTTPError) as e:
            if progress is not None:
                progress.fail(f"Download failed: {e}", HypervisorStatus.EXTERNAL_ERROR)
            raise HypervisorError(f"Unable to download {url}: {e}") from e
        except OSError as e:
            if progress is not None:
                progress.fail(f"Unable to write {destination.name}", HypervisorStatus.IO_ERROR)
            raise HypervisorError(
                f"Unable to write {destination}: {e}", HypervisorStatus.IO_ERROR
            ) from e

        if progress is not None:
            progress.complete("Download completed")

    def _fetch(self, url: str, destination: Path, progress: FiniteTask | None) -> None:
        partial = destination.with_name(destination.name + ".part")
        with requests.get(url, stream=True, timeout=self.timeout) as response:
            if should_retry_http_error(response.status_code):
                raise RetryableHTTPError(response.status_code, url)
            response.raise_for_status()

            total = int(response.headers.get("Content-Length", 0) or 0)
            if progress is not None:
                progress.set_max(total)

            destination.parent.mkdir(parents=True, exist_ok=True)
            received = 0
            try:
                with open(partial, "wb") as f:
                    for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                        if not chunk:
                            continue
                        f.write(chunk)
                        received += len(chunk)
                        if progress is not None:
                            progress.update(received)
                os.replace(partial, destination)
            finally:
                if partial.exists():
                    partial.unlink()

        logger.debug(f"Downloaded {received} bytes from {url}")


class HttpConfigSource:
    """Fetch the hypervisor configuration from an https URL.

    The body is either a JSON object or "key=value" lines ('#' starts a
    comment line). When a checksum is pinned, the SHA-256 of the body must
    match it exactly.
    """

    def __init__(
        self,
        url: str,
        checksum: str | None = None,
        timeout: float = 30,
        max_attempts: int = 3,
    ):
        self.url = url
        self.checksum = checksum
        self.timeout = timeout
        self.max_attempts = max_attempts

    def fetch(self) -> dict[str, str]:
        if urlparse(self.url).scheme != "https":
            raise HypervisorError(
                f"Configuration URL is not https: {self.url}", HypervisorStatus.NOT_TRUSTED
            )

        get = retry_with_exponential_backoff(max_attempts=self.max_attempts)(self._get)
        try:
            body = get()
        except (requests.RequestException, RetryableHTTPError) as e:
            raise HypervisorError(f"Unable to fetch configuration: {e}") from e

        if self.checksum is not None:
            actual = hashlib.sha256(body).hexdigest()
            if actual != self.checksum:
                logger.warning(f"Configuration checksum {actual} != {self.checksum}")
                raise HypervisorError(
                    "Configuration checksum mismatch", HypervisorStatus.NOT_VALIDATED
                )

        return parse_config_body(body.decode("utf-8", errors="replace"))

    def _get(self) -> bytes:
        response = requests.get(self.url, timeout=self.timeout)
        if should_retry_http_error(response.status_code):
            raise RetryableHTTPError(response.status_code, self.url)
        response.raise_for_status()
        return response.content


class StaticConfigSource:
    """Configuration source backed by an in-memory mapping."""

    def __init__(self, data: dict[str, str]):
        self.data = dict(data)

    def fetch(self) -> dict[str, str]:
        return dict(self.data)


def parse_config_body(text: str) -> dict[str, str]:
    """Parse a configuration body (JSON object or key=value lines).

    Raises:
        HypervisorError: EXTERNAL_ERROR if a JSON body is not an object
    """
    stripped = text.strip()
    if stripped.startswith("{"):
        try:
            data = json.loads(stripped)
        except json.JSONDecodeError as e:
            raise HypervisorError(f"Invalid configuration JSON: {e}") from e
        if not isinstance(data, dict):
            raise HypervisorError("Configuration JSON is not an object")
        return {str(k): str(v) for k, v in data.items()}

    config: dict[str, str] = {}
    for line in stripped.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        key, found, value = line.partition("=")
        if found:
            config[key.strip()] = value.strip()
    return config


__all__ = [
    "ConfigSource",
    "DownloadProvider",
    "HttpConfigSource",
    "HttpDownloadProvider",
    "StaticConfigSource",
    "parse_config_body",
    "sha256_file",
    "url_filename",
]
