# solc_gateway/resolver.py
from __future__ import annotations

import re
from urllib.parse import urljoin, urlsplit, urlunsplit

from solc_gateway.config import DEFAULT_PORTS, host_of
from solc_gateway.errors import (
    DisallowedHost,
    MissingPackageVersion,
    NoBaseContext,
    UnsupportedSpecifier,
)
from solc_gateway.request import ResolutionContext

GITHUB_RAW_BASE = "https://raw.githubusercontent.com"

HTTP_URL_RE = re.compile(r"^https?://", re.I)

# github:owner/repo@ref/path/to/file.sol
GITHUB_SHORTHAND_RE = re.compile(r"^github:(?P<owner>[^/@\s]+)/(?P<repo>[^/@\s]+)@(?P<ref>[^/\s]+)/(?P<path>.+)$")

# <package>[@<version>]/<path>, package optionally scoped (@scope/name)
PACKAGE_PATH_RE = re.compile(
    r"^(?P<pkg>(?:@[^/@\s]+/)?[^/@\s]+)(?:@(?P<ver>[^/\s]+))?/(?P<path>.+)$"
)


def canonical_url(url: str) -> str:
    """
    Canonical form used as a source key:
    - scheme + host lower-cased, default port (:80 / :443) dropped
    - "." / ".." path segments removed
    - fragment dropped (query kept)
    """
    parts = urlsplit(url)
    scheme = parts.scheme.lower()
    netloc = parts.netloc.lower()
    default_port = DEFAULT_PORTS.get(scheme)
    if default_port and netloc.endswith(f":{default_port}"):
        netloc = netloc[: -len(f":{default_port}")]
    path = urljoin("/", parts.path) if parts.path else "/"
    return urlunsplit((scheme, netloc, path, parts.query, ""))


def assert_allowed(url: str, ctx: ResolutionContext, *, specifier: str | None = None, referrer: str | None = None) -> str:
    host = host_of(url)
    if not host or host not in ctx.allowed_hosts:
        raise DisallowedHost(url, host, specifier=specifier, referrer=referrer)
    return url


def expand_github_shorthand(spec: str) -> str | None:
    m = GITHUB_SHORTHAND_RE.match(spec)
    if not m:
        return None
    return f"{GITHUB_RAW_BASE}/{m['owner']}/{m['repo']}/{m['ref']}/{m['path']}"


def _is_bare_package_path(spec: str) -> bool:
    # "@scope/pkg/x.sol" or "pkg/x.sol"; no scheme, not relative, not absolute
    return bool(spec) and spec[0] not in "./" and ":" not in spec and "/" in spec


def expand_package_path(spec: str, ctx: ResolutionContext, *, referrer: str | None = None) -> str:
    """
    npm:<package>@<version>/<path> or <package>[@<version>]/<path> -> <cdn>/<package>@<version>/<path>.
    An explicit version wins; otherwise it comes from the request's packageVersions.
    """
    body = spec[len("npm:"):] if spec.startswith("npm:") else spec
    m = PACKAGE_PATH_RE.match(body)
    if not m:
        reason = "Invalid npm import" if spec.startswith("npm:") else "Invalid package import"
        raise UnsupportedSpecifier(spec, referrer=referrer, reason=reason)

    pkg = m["pkg"]
    version = m["ver"] or ctx.package_versions.get(pkg)
    if not version:
        raise MissingPackageVersion(pkg, specifier=spec, referrer=referrer)
    return f"{ctx.npm_cdn}/{pkg}@{version}/{m['path']}"


def resolve_specifier(
        raw: str,
        base: str | None,
        ctx: ResolutionContext,
        *,
        referrer: str | None = None,
) -> str:
    """
    Map one import specifier to a canonical absolute URL.

    Rules, first match wins:
      1. http(s) URL (joined against base when there is one)
      2. github:owner/repo@ref/path
      3. npm:pkg@ver/path, or a bare package path (pkg/path, @scope/pkg/path)
      4. ./x or ../x against the referring file's URL
      5. anything else is unsupported

    Every resolved URL must be on the allow-list. Nothing is fetched here.
    """
    spec = raw.strip()

    if HTTP_URL_RE.match(spec):
        url = canonical_url(urljoin(base, spec) if base else spec)
        return assert_allowed(url, ctx, specifier=raw, referrer=referrer)

    if spec.startswith("github:"):
        expanded = expand_github_shorthand(spec)
        if expanded is None:
            raise UnsupportedSpecifier(raw, referrer=referrer, reason="Invalid GitHub shorthand")
        return assert_allowed(canonical_url(expanded), ctx, specifier=raw, referrer=referrer)

    if spec.startswith("npm:") or _is_bare_package_path(spec):
        url = canonical_url(expand_package_path(spec, ctx, referrer=referrer))
        return assert_allowed(url, ctx, specifier=raw, referrer=referrer)

    if spec.startswith("./") or spec.startswith("../"):
        if not base:
            raise NoBaseContext(raw, referrer=referrer)
        url = canonical_url(urljoin(base, spec))
        return assert_allowed(url, ctx, specifier=raw, referrer=referrer)

    raise UnsupportedSpecifier(raw, referrer=referrer)
