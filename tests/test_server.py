import json
import threading

import pytest
import requests

from conftest import TEST_HOSTS, FakeSession
from solc_gateway.config import GatewayConfig
from solc_gateway.graph import RuntimeDeps
from solc_gateway.server import RateLimiter, make_server


@pytest.fixture
def start_server(fake_compiler):
    servers = []

    def _start(**overrides):
        kwargs = {
            "host": "127.0.0.1",
            "port": 0,
            "allowed_hosts": TEST_HOSTS,
            "rate_limit_per_minute": 0,
            "request_timeout_s": 0,
        }
        kwargs.update(overrides)
        deps = RuntimeDeps(
            session=FakeSession({"https://host/Lib.sol": "library Lib {}"}),
            compiler_loader=lambda selector, config, **kw: fake_compiler,
        )
        server = make_server(GatewayConfig(**kwargs), deps)
        threading.Thread(target=server.serve_forever, daemon=True).start()
        servers.append(server)
        host, port = server.server_address[:2]
        return f"http://{host}:{port}"

    yield _start

    for server in servers:
        server.shutdown()
        server.server_close()


def test_healthz(start_server):
    base = start_server()
    res = requests.get(f"{base}/healthz", timeout=5)
    assert res.status_code == 200
    assert res.json() == {"ok": True}
    assert res.headers["Access-Control-Allow-Origin"] == "*"
    assert res.headers["X-Content-Type-Options"] == "nosniff"


def test_compile_round_trip(start_server):
    base = start_server()
    body = {"source": 'import "https://host/Lib.sol"; contract A {}', "filename": "A.sol", "returnArtifacts": True}
    res = requests.post(f"{base}/compile", json=body, timeout=10)

    assert res.status_code == 200
    data = res.json()
    assert data["success"] is True
    assert data["files"] == ["A.sol", "https://host/Lib.sol"]
    assert [a["contract"] for a in data["artifacts"]] == ["A"]


def test_stage_failures_are_200_with_success_false(start_server):
    base = start_server()
    res = requests.post(f"{base}/compile", json={"source": 'import "https://evil.example/x.sol";'}, timeout=10)
    assert res.status_code == 200
    assert res.json()["errorKind"] == "DisallowedHost"


def test_invalid_request_is_400(start_server):
    base = start_server()
    res = requests.post(f"{base}/compile", json={"filename": "A.sol"}, timeout=10)
    assert res.status_code == 400
    assert res.json()["errorKind"] == "InvalidRequest"


def test_malformed_json_is_400(start_server):
    base = start_server()
    res = requests.post(
        f"{base}/compile", data=b"{not json", headers={"Content-Type": "application/json"}, timeout=10
    )
    assert res.status_code == 400
    assert res.json()["success"] is False


def test_oversized_body_is_413(start_server):
    base = start_server(max_body_bytes=64)
    res = requests.post(f"{base}/compile", data=json.dumps({"source": "x" * 200}), timeout=10)
    assert res.status_code == 413


def test_unknown_paths_are_404(start_server):
    base = start_server()
    assert requests.get(f"{base}/compile", timeout=5).status_code == 404
    assert requests.post(f"{base}/other", json={}, timeout=5).status_code == 404


def test_preflight(start_server):
    base = start_server()
    res = requests.options(f"{base}/compile", timeout=5)
    assert res.status_code == 204
    assert "POST" in res.headers["Access-Control-Allow-Methods"]


def test_rate_limited_client_gets_429(start_server):
    base = start_server(rate_limit_per_minute=2)
    codes = [requests.post(f"{base}/compile", json={"source": "contract A {}"}, timeout=10).status_code for _ in range(3)]
    assert codes == [200, 200, 429]


def test_rate_limiter_window_resets():
    now = [0.0]
    limiter = RateLimiter(2, window_s=60, clock=lambda: now[0])

    assert limiter.allow("a") and limiter.allow("a")
    assert not limiter.allow("a")
    assert limiter.allow("b")

    now[0] = 60.0
    assert limiter.allow("a")


def test_rate_limiter_disabled():
    limiter = RateLimiter(0)
    assert all(limiter.allow("a") for _ in range(100))
