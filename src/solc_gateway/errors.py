# solc_gateway/errors.py
from __future__ import annotations


class GatewayError(RuntimeError):
    """
    Base for every failure that aborts a compile request.

    Subclasses carry the context a caller needs to fix the request (the offending
    specifier or URL, the referring file, the limit that tripped). Nothing here is retried.
    """


class InvalidRequest(GatewayError):
    pass


class DisallowedHost(GatewayError):
    def __init__(self, url: str, host: str, *, specifier: str | None = None, referrer: str | None = None):
        msg = f"Disallowed host for imports: {host or '<none>'} ({url})"
        if specifier is not None:
            msg += f"; import {specifier!r} in {referrer or '<entry>'}"
        super().__init__(msg)
        self.url = url
        self.host = host
        self.specifier = specifier
        self.referrer = referrer


class UnsupportedSpecifier(GatewayError):
    def __init__(self, specifier: str, *, referrer: str | None = None, reason: str = "Unsupported import path"):
        super().__init__(f"{reason}: {specifier!r} in {referrer or '<entry>'}")
        self.specifier = specifier
        self.referrer = referrer


class MissingPackageVersion(GatewayError):
    def __init__(self, package: str, *, specifier: str, referrer: str | None = None):
        super().__init__(
            f'Missing version for package "{package}" (import {specifier!r} in {referrer or "<entry>"}). '
            f'Provide "packageVersions": {{"{package}": "<version>"}}'
        )
        self.package = package
        self.specifier = specifier
        self.referrer = referrer


class NoBaseContext(GatewayError):
    def __init__(self, specifier: str, *, referrer: str | None = None):
        super().__init__(
            f"Relative import {specifier!r} in {referrer or '<entry>'} has no base context "
            "(the entry file has no URL of its own)"
        )
        self.specifier = specifier
        self.referrer = referrer


class FetchFailed(GatewayError):
    def __init__(self, url: str, *, status: int | None = None, reason: str = ""):
        detail = f"{status} {reason}".strip() if status is not None else reason
        super().__init__(f"Fetch failed for {url}: {detail or 'unknown error'}")
        self.url = url
        self.status = status
        self.reason = reason


class ResourceLimitExceeded(GatewayError):
    def __init__(self, limit_name: str, limit_value: int, *, referrer: str | None = None, url: str | None = None):
        if limit_name == "max_sources":
            msg = f"Too many source files (> {limit_value})"
        else:
            msg = f"Total import size exceeded ({limit_value} bytes)"
        if url:
            msg += f" while fetching {url}"
        if referrer:
            msg += f" imported by {referrer}"
        super().__init__(msg)
        self.limit_name = limit_name
        self.limit_value = limit_value
        self.referrer = referrer
        self.url = url


class DeadlineExceeded(GatewayError):
    def __init__(self, timeout_s: float, *, url: str | None = None):
        msg = f"Request deadline exceeded ({timeout_s:g}s)"
        if url:
            msg += f" while fetching {url}"
        super().__init__(msg)
        self.timeout_s = timeout_s
        self.url = url


class UnsupportedCompilerVersion(GatewayError):
    def __init__(self, selector: str, reason: str = "Unsupported compilerVersion format"):
        super().__init__(f"{reason}: {selector}")
        self.selector = selector


class CompilerFailed(GatewayError):
    """The solc process itself failed (as opposed to reporting diagnostics)."""
