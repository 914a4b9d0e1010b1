# src/solc_gateway/compiler.py
from __future__ import annotations

import copy
import json
import logging
import re
import subprocess
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import requests
import solcx
from solcx.exceptions import SolcInstallationError
from solcx.install import get_executable

from solc_gateway.config import GatewayConfig
from solc_gateway.errors import CompilerFailed, DeadlineExceeded, FetchFailed, UnsupportedCompilerVersion

logger = logging.getLogger(__name__)

SEMVER_RE = re.compile(r"^v?(?P<semver>\d+\.\d+\.\d+)$")
FULL_BUILD_RE = re.compile(r"^v?(?P<semver>\d+\.\d+\.\d+)\+commit\.(?P<commit>[0-9a-f]+)$", re.I)
SOLJSON_FILENAME_RE = re.compile(r"^soljson-(v\d+\.\d+\.\d+\+commit\.[0-9a-f]+)\.js$", re.I)
# "Version: 0.8.26+commit.8a97fa7a.Linux.g++"
SOLC_VERSION_OUTPUT_RE = re.compile(r"Version:\s*(?P<long>(?P<semver>\d+\.\d+\.\d+)\S*?\+commit\.(?P<commit>[0-9a-f]+)\S*)")

DEFAULT_SETTINGS: dict[str, Any] = {
    "optimizer": {"enabled": False, "runs": 200},
    "outputSelection": {"*": {"*": ["abi", "evm.bytecode.object"]}},
}

# solcx installs into a shared directory; one install at a time per process
_install_lock = threading.Lock()


@dataclass(frozen=True)
class VersionSelector:
    kind: str  # "default" | "semver" | "full"
    semver: str
    commit: str | None = None

    @property
    def tag(self) -> str | None:
        return f"v{self.semver}+commit.{self.commit}" if self.commit else None


def normalize_version_selector(selector: str | None, *, default_version: str) -> VersionSelector:
    if selector is None or not selector.strip():
        return VersionSelector(kind="default", semver=default_version.lstrip("v"))

    s = selector.strip()
    m = SEMVER_RE.match(s)
    if m:
        return VersionSelector(kind="semver", semver=m["semver"])
    m = FULL_BUILD_RE.match(s)
    if m:
        return VersionSelector(kind="full", semver=m["semver"], commit=m["commit"].lower())
    raise UnsupportedCompilerVersion(selector)


def resolve_full_build(semver: str, list_url: str, *, session: Any | None = None, timeout: float = 20.0) -> str:
    """
    "0.8.26" -> "v0.8.26+commit.8a97fa7a" using the soliditylang.org release index.
    """
    http = session if session is not None else requests
    try:
        res = http.get(list_url, allow_redirects=True, timeout=timeout)
    except requests.RequestException as e:
        raise FetchFailed(list_url, reason=str(e)) from e
    if not 200 <= res.status_code < 300:
        raise FetchFailed(list_url, status=res.status_code, reason=res.reason or "")

    try:
        data = res.json()
    except ValueError as e:
        raise FetchFailed(list_url, reason=f"invalid JSON in compiler release index: {e}") from e

    fname = (data.get("releases") or {}).get(semver) if isinstance(data, dict) else None
    if not fname:
        raise UnsupportedCompilerVersion(semver, reason="Compiler version not found in releases")
    m = SOLJSON_FILENAME_RE.match(fname)
    if not m:
        raise UnsupportedCompilerVersion(semver, reason=f"Unexpected release filename format {fname!r}")
    return m.group(1)


def run(cmd: list[str], *, stdin: str | None = None, timeout: float | None = None) -> str:
    try:
        p = subprocess.run(cmd, input=stdin, capture_output=True, text=True, timeout=timeout)
    except subprocess.TimeoutExpired as e:
        raise CompilerFailed(f"Command timed out after {timeout:g}s: {' '.join(cmd)}") from e
    except OSError as e:
        raise CompilerFailed(f"Command could not start: {' '.join(cmd)}: {e}") from e
    if p.returncode != 0:
        raise CompilerFailed(
            f"Command failed: {' '.join(cmd)}\nSTDOUT:\n{p.stdout}\nSTDERR:\n{p.stderr}"
        )
    return p.stdout


def binary_version(binary: str | Path) -> tuple[str, str, str]:
    """Returns (long_version, semver, commit) as reported by `solc --version`."""
    out = run([str(binary), "--version"])
    m = SOLC_VERSION_OUTPUT_RE.search(out)
    if not m:
        raise CompilerFailed(f"Could not parse solc version output: {out.strip()[:200]!r}")
    return m["long"], m["semver"], m["commit"].lower()


def _ensure_installed(semver: str) -> Path:
    with _install_lock:
        installed = {str(v) for v in solcx.get_installed_solc_versions()}
        if semver not in installed:
            logger.info("installing solc", extra={"solc_version": semver})
            try:
                solcx.install_solc(semver)
            except (SolcInstallationError, requests.RequestException, ValueError) as e:
                raise CompilerFailed(f"Failed to install solc {semver}: {e}") from e
        return Path(get_executable(semver))


@dataclass(frozen=True)
class SolcCompiler:
    binary: Path
    # long build string, e.g. "0.8.26+commit.8a97fa7a.Linux.g++"
    version: str

    def compile(self, document: dict[str, Any], *, timeout: float | None = None) -> dict[str, Any]:
        stdout = run([str(self.binary), "--standard-json"], stdin=json.dumps(document), timeout=timeout)
        try:
            out = json.loads(stdout)
        except ValueError as e:
            raise CompilerFailed(f"solc returned invalid JSON: {e}") from e
        if not isinstance(out, dict):
            raise CompilerFailed("solc returned a non-object JSON document")
        return out


def _time_left(deadline: float | None, config: GatewayConfig) -> float | None:
    if deadline is None:
        return None
    left = deadline - time.monotonic()
    if left <= 0:
        raise DeadlineExceeded(config.request_timeout_s)
    return left


def load_compiler(
        selector: str | None,
        config: GatewayConfig,
        *,
        session: Any | None = None,
        deadline: float | None = None,
) -> SolcCompiler:
    """
    - no selector: the configured default release
    - "0.8.26" / "v0.8.26": looked up in the release index, then installed
    - "v0.8.26+commit.8a97fa7a": installed by release, then the binary's commit must match
    No retries: a failed index fetch or install is surfaced as-is.
    deadline is a time.monotonic() value; the index lookup is bounded by it and the
    request fails once it has passed (an install in progress is not interrupted).
    """
    sel = normalize_version_selector(selector, default_version=config.default_solc_version)

    expected_tag = sel.tag
    if sel.kind == "semver":
        left = _time_left(deadline, config)
        timeout = config.fetch_timeout_s if left is None else min(config.fetch_timeout_s, left)
        expected_tag = resolve_full_build(sel.semver, config.solc_list_url, session=session, timeout=timeout)

    _time_left(deadline, config)
    binary = _ensure_installed(sel.semver)
    _time_left(deadline, config)
    long_version, _, commit = binary_version(binary)

    if expected_tag:
        want = FULL_BUILD_RE.match(expected_tag)
        if want and want["commit"].lower() != commit:
            raise UnsupportedCompilerVersion(
                selector or expected_tag,
                reason=f"Installed solc build {long_version} does not match requested build",
            )

    logger.info("compiler selected", extra={"selector": selector, "solc_version": long_version})
    return SolcCompiler(binary=binary, version=long_version)


def build_standard_json(sources: dict[str, str], settings: dict[str, Any] | None = None) -> dict[str, Any]:
    """
    Standard JSON input. Caller settings replace defaults key by key (top level only).
    """
    merged = copy.deepcopy(DEFAULT_SETTINGS)
    merged.update(copy.deepcopy(settings or {}))
    return {
        "language": "Solidity",
        "sources": {key: {"content": content} for key, content in sources.items()},
        "settings": merged,
    }


def summarize_output(output: dict[str, Any]) -> tuple[list[dict[str, Any]], bool, list[dict[str, Any]]]:
    """Returns (diagnostics, has_error, artifacts)."""
    diagnostics: list[dict[str, Any]] = []
    for e in output.get("errors") or []:
        if not isinstance(e, dict):
            continue
        diagnostics.append(
            {
                "type": e.get("type"),
                "severity": e.get("severity"),
                "message": e.get("formattedMessage") or e.get("message"),
                "sourceLocation": e.get("sourceLocation") or None,
            }
        )
    has_error = any(d["severity"] == "error" for d in diagnostics)

    artifacts: list[dict[str, Any]] = []
    for file, contracts in (output.get("contracts") or {}).items():
        for name, artifact in (contracts or {}).items():
            bytecode = ((artifact.get("evm") or {}).get("bytecode") or {}).get("object") or ""
            artifacts.append(
                {
                    "file": file,
                    "contract": name,
                    "abi": artifact.get("abi"),
                    "bytecode": bytecode,
                }
            )
    return diagnostics, has_error, artifacts
