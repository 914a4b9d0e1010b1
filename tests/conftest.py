from __future__ import annotations

import json
import re
from types import MappingProxyType
from typing import Any

import pytest

from solc_gateway.config import GatewayConfig
from solc_gateway.request import ResolutionContext

TEST_HOSTS = frozenset({"host", "unpkg.com", "raw.githubusercontent.com", "githubusercontent.com"})


class FakeResponse:
    def __init__(
            self,
            status_code: int = 200,
            body: bytes | str = b"",
            *,
            headers: dict[str, str] | None = None,
            reason: str = "OK",
    ):
        self.status_code = status_code
        self.body = body.encode("utf-8") if isinstance(body, str) else body
        self.headers = headers or {}
        self.reason = reason
        self.closed = False

    def iter_content(self, chunk_size: int = 1):
        for i in range(0, len(self.body), chunk_size):
            yield self.body[i:i + chunk_size]

    def json(self) -> Any:
        return json.loads(self.body.decode("utf-8"))

    def close(self) -> None:
        self.closed = True


class FakeSession:
    """
    requests.Session stand-in. routes: url -> str body | FakeResponse | Exception.
    Unknown URLs answer 404.
    """

    def __init__(self, routes: dict[str, Any] | None = None):
        self.routes = dict(routes or {})
        self.calls: list[str] = []
        self.closed = False

    def get(self, url: str, **kwargs: Any) -> FakeResponse:
        self.calls.append(url)
        route = self.routes.get(url)
        if route is None:
            return FakeResponse(404, b"", reason="Not Found")
        if isinstance(route, Exception):
            raise route
        if isinstance(route, FakeResponse):
            return FakeResponse(route.status_code, route.body, headers=route.headers, reason=route.reason)
        return FakeResponse(200, route)

    def close(self) -> None:
        self.closed = True


class DictFetcher:
    """Minimal fetcher for graph tests: url -> text, with per-URL call counts."""

    def __init__(self, files: dict[str, str]):
        self.files = files
        self.calls: dict[str, int] = {}

    def get(self, url: str, *, max_bytes: int | None = None) -> str:
        self.calls[url] = self.calls.get(url, 0) + 1
        return self.files[url]


_CONTRACT_RE = re.compile(r"\bcontract\s+([A-Za-z_]\w*)")


class FakeCompiler:
    """
    Pretends to be solc: every `contract X` becomes an artifact; a source containing
    "@@syntax-error@@" produces an error diagnostic, "@@warning@@" a warning.
    """

    version = "0.8.26+commit.8a97fa7a.Fake"

    def __init__(self) -> None:
        self.documents: list[dict[str, Any]] = []

    def compile(self, document: dict[str, Any], *, timeout: float | None = None) -> dict[str, Any]:
        self.documents.append(document)
        errors: list[dict[str, Any]] = []
        contracts: dict[str, Any] = {}
        for key, src in document["sources"].items():
            content = src["content"]
            if "@@syntax-error@@" in content:
                errors.append(
                    {
                        "type": "ParserError",
                        "severity": "error",
                        "message": "Expected pragma, import directive or contract/interface/library/struct/enum/constant/function/error definition.",
                        "formattedMessage": f"ParserError: Expected pragma ... --> {key}:1:1:",
                        "sourceLocation": {"file": key, "start": 0, "end": 1},
                    }
                )
            if "@@warning@@" in content:
                errors.append(
                    {
                        "type": "Warning",
                        "severity": "warning",
                        "message": "SPDX license identifier not provided in source file.",
                        "formattedMessage": "Warning: SPDX license identifier not provided in source file.",
                    }
                )
            names = _CONTRACT_RE.findall(content)
            if names:
                contracts[key] = {
                    n: {"abi": [], "evm": {"bytecode": {"object": "6080604052348015600e575f80fd5b50"}}}
                    for n in names
                }
        out: dict[str, Any] = {"sources": {k: {"id": i} for i, k in enumerate(document["sources"])}}
        if errors:
            out["errors"] = errors
        if not any(e["severity"] == "error" for e in errors):
            out["contracts"] = contracts
        return out


def make_ctx(**overrides: Any) -> ResolutionContext:
    package_versions = overrides.pop("package_versions", {})
    kwargs: dict[str, Any] = {
        "max_sources": 64,
        "max_total_bytes": 1_500_000,
        "allowed_hosts": TEST_HOSTS,
        "npm_cdn": "https://unpkg.com",
        "package_versions": MappingProxyType(dict(package_versions)),
    }
    kwargs.update(overrides)
    return ResolutionContext(**kwargs)


@pytest.fixture
def ctx() -> ResolutionContext:
    return make_ctx()


@pytest.fixture
def config() -> GatewayConfig:
    return GatewayConfig(allowed_hosts=TEST_HOSTS, rate_limit_per_minute=0, request_timeout_s=0)


@pytest.fixture
def fake_compiler() -> FakeCompiler:
    return FakeCompiler()
