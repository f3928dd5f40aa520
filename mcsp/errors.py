"""Typed provisioning failures.

Every error keeps a ``context`` dict (url, directory, software type) so the
caller can act on it without re-deriving state. Messages are written for
operators, stack traces are only shown in debug mode.
"""
from typing import Any

from mcsp.utils import FriendlyException


class ProvisioningError(FriendlyException):
    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context: dict[str, Any] = {
            k: v for k, v in context.items() if v is not None}

    def with_context(self, **context: Any) -> "ProvisioningError":
        for k, v in context.items():
            if v is not None:
                self.context.setdefault(k, v)
        return self

    def __str__(self) -> str:
        return self.message


class UnsupportedSoftware(ProvisioningError):
    pass


class NetworkUnreachable(ProvisioningError):
    def __init__(self, hostname: str, url: str | None = None) -> None:
        super().__init__(
            f"DNS resolution failed for {hostname}. Your network might be blocking "
            "Minecraft downloads or your DNS provider is having issues. "
            "Please check your internet connection and DNS settings.",
            hostname=hostname, url=url)
        self.hostname = hostname


class UpstreamVersionNotFound(ProvisioningError):
    pass


class DownloadFailed(ProvisioningError):
    def __init__(self, url: str, cause: str) -> None:
        super().__init__(f"Download of {url} failed: {cause}", url=url)
        self.url = url
        self.cause = cause


class DownloadIntegrityFailure(ProvisioningError):
    pass


class ArchiveExtractionFailure(ProvisioningError):
    pass


class InstallerProcessFailed(ProvisioningError):
    def __init__(self, name: str, exit_code: int, stderr_tail: list[str],
                 directory: str | None = None) -> None:
        msg = f"{name} installer exited with code {exit_code}"
        if stderr_tail:
            msg += ":\n" + "\n".join(stderr_tail)
        super().__init__(msg, directory=directory, exit_code=exit_code)
        self.exit_code = exit_code
        self.stderr_tail = stderr_tail


class InvalidBuildIdentifier(ProvisioningError):
    def __init__(self, build: str) -> None:
        super().__init__(f"Invalid build identifier {build!r}", build=build)
        self.build = build
