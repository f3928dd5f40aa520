import logging
import os
import socket
from pathlib import Path
from urllib.parse import urlparse

import requests
from requests.adapters import HTTPAdapter
from urllib3.exceptions import NameResolutionError
from urllib3.util.retry import Retry

from mcsp.core import ProgressSink
from mcsp.errors import (DownloadFailed, DownloadIntegrityFailure,
                         NetworkUnreachable)
from mcsp.model import DownloadProgress, Settings

DNS_ERROR_CODES = {socket.EAI_NONAME, socket.EAI_AGAIN}
if hasattr(socket, "EAI_NODATA"):
    DNS_ERROR_CODES.add(socket.EAI_NODATA)  # type: ignore[attr-defined]

CHUNK_SIZE = 64 * 1024


def create_session(settings: Settings) -> requests.Session:
    session = requests.Session()
    session.headers.update({
        "User-Agent": settings.user_agent,
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        "Accept-Language": "en-US,en;q=0.9",
        "Referer": settings.referer,
    })
    retry = Retry(total=settings.download_retries,
                  connect=settings.download_retries,
                  read=0,
                  status=settings.download_retries,
                  status_forcelist=(502, 503, 504),
                  allowed_methods=["GET"],
                  backoff_factor=0.5,
                  raise_on_status=False)
    adapter = HTTPAdapter(max_retries=retry)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session


def is_dns_failure(exc: BaseException) -> bool:
    """Walks exception chain looking for a name resolution error"""
    seen: set[int] = set()
    stack: list[BaseException] = [exc]
    while stack:
        e = stack.pop()
        if id(e) in seen:
            continue
        seen.add(id(e))
        if isinstance(e, NameResolutionError):
            return True
        if isinstance(e, socket.gaierror) and e.errno in DNS_ERROR_CODES:
            return True
        for nested in (e.__cause__, e.__context__, getattr(e, "reason", None)):
            if isinstance(nested, BaseException):
                stack.append(nested)
        for arg in e.args:
            if isinstance(arg, BaseException):
                stack.append(arg)
    return False


class Downloader:
    """Streams a single URL into a file, reporting byte progress"""

    def __init__(self, settings: Settings, session: requests.Session | None = None) -> None:
        self.settings = settings
        self.session = session or create_session(settings)
        self.logger = logging.getLogger("Downloader")

    @property
    def timeout(self) -> tuple[float, float]:
        t = self.settings.download_timeout
        return (t, t)

    def download(self, url: str, dest: Path, sink: ProgressSink | None = None) -> Path:
        dest.parent.mkdir(parents=True, exist_ok=True)
        part = dest.with_name(dest.name + ".part")
        self.logger.debug(f"Downloading {url} to {dest}")
        try:
            progress = self._stream(url, part, sink)
            if progress.total_bytes is not None and progress.current_bytes != progress.total_bytes:
                raise DownloadIntegrityFailure(
                    f"Download of {url} is incomplete: got {progress.current_bytes} of "
                    f"{progress.total_bytes} bytes", url=url)
            os.replace(part, dest)
        except requests.RequestException as e:
            if is_dns_failure(e):
                host = urlparse(url).hostname or url
                raise NetworkUnreachable(host, url) from e
            status = e.response.status_code if e.response is not None else None
            cause = f"HTTP {status}" if status else str(e)
            raise DownloadFailed(url, cause) from e
        except OSError as e:
            raise DownloadFailed(url, str(e)) from e
        finally:
            if sink:
                sink.finish()
            if part.exists():
                part.unlink()
        self.logger.debug(f"Downloaded {dest.name}")
        return dest

    def _stream(self, url: str, out: Path, sink: ProgressSink | None) -> DownloadProgress:
        with self.session.get(url, stream=True, timeout=self.timeout) as response:
            response.raise_for_status()
            length = response.headers.get("Content-Length")
            total = int(length) if length and length.isdigit() else None
            if response.headers.get("Content-Encoding", "identity") != "identity":
                # decoded size differs from Content-Length
                total = None
            progress = DownloadProgress(total_bytes=total)
            if sink:
                sink.progress(0, total, progress.percent)
            with open(out, "wb") as f:
                for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                    if not chunk:
                        continue
                    f.write(chunk)
                    progress.current_bytes += len(chunk)
                    if sink:
                        sink.progress(progress.current_bytes,
                                      total, progress.percent)
            return progress
