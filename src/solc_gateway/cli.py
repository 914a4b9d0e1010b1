# src/solc_gateway/cli.py
from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path
from typing import Any

from . import __version__
from . import main as main_module
from .config import GatewayConfig
from .logging_setup import init_logging

REQUEST_ENV = "SOLC_GATEWAY_REQUEST_JSON"
STAGE_PARSE_REQUEST = "parse_request"


def _unquote_value(val: str) -> str:
    quote = val[0]
    out: list[str] = []
    escaped = False
    for ch in val[1:]:
        if escaped:
            out.append(ch)
            escaped = False
        elif quote == '"' and ch == "\\":  # escapes only inside double quotes
            escaped = True
        elif ch == quote:
            # anything after the closing quote (comments included) is ignored
            break
        else:
            out.append(ch)
    return "".join(out)


def _parse_dotenv_line(line: str) -> tuple[str, str] | None:
    """
    Minimal .env parser.
    Supports KEY=VALUE, `export KEY=VALUE`, '#' comments outside quotes,
    and '...' / "..." quoted values. No ${...} expansion.
    """
    s = line.strip()
    if not s or s.startswith("#"):
        return None
    if s.startswith("export "):
        s = s[len("export "):].lstrip()

    key, sep, rest = s.partition("=")
    key = key.strip()
    if not sep or not key:
        return None

    val = rest.strip()
    if not val:
        return key, ""
    if val[0] in ("'", '"'):
        return key, _unquote_value(val)
    return key, val.split("#", 1)[0].strip()


def _load_dotenv_file(path: str, *, override: bool = False) -> bool:
    """Copies KEY=VALUE pairs from `path` into os.environ. False when there is no such file."""
    p = Path(path)
    if not p.is_file():
        return False

    for raw_line in p.read_text(encoding="utf-8").splitlines():
        parsed = _parse_dotenv_line(raw_line)
        if not parsed:
            continue
        k, v = parsed
        if not override and k in os.environ:
            continue
        os.environ[k] = v
    return True


def _read_request_payload() -> Any:
    """
    The one-shot `compile` command reads its request from SOLC_GATEWAY_REQUEST_JSON
    (same body as POST /compile). No file paths, no stdin.
    """
    raw = os.environ.get(REQUEST_ENV)
    if not raw or not raw.strip():
        raise RuntimeError(f"Missing required request payload: set {REQUEST_ENV} to a JSON object string.")
    payload = json.loads(raw)
    if not isinstance(payload, dict):
        raise TypeError(f"{REQUEST_ENV} must decode to a JSON object (dict).")
    return payload


def _print_json(obj: dict[str, Any]) -> None:
    print(json.dumps(obj, separators=(",", ":")), file=sys.stdout)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--dotenv",
        nargs="?",
        const=".env",
        default=None,
        metavar="PATH",
        help="Read settings from a .env file before configuration is built (PATH defaults to ./.env).",
    )
    common.add_argument(
        "--dotenv-override",
        action="store_true",
        help="Let .env values replace variables that are already set in the environment.",
    )
    common.add_argument(
        "--log-level",
        default=None,
        metavar="LEVEL",
        help="Log level (default: SOLC_GATEWAY_LOG_LEVEL or INFO).",
    )

    parser = argparse.ArgumentParser(
        prog="solc-gateway",
        description="Solidity compile gateway with remote import resolution",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"solc-gateway {__version__}",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", parents=[common], help="Run the HTTP API.")
    serve.add_argument("--host", default=None, help="Bind address (default: SOLC_GATEWAY_HOST or 0.0.0.0).")
    serve.add_argument("--port", type=int, default=None, help="Port (default: PORT or 8080).")

    sub.add_parser(
        "compile",
        parents=[common],
        help=f"Compile one request read from {REQUEST_ENV} and print the JSON response.",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    # .env is only read when asked for; the process environment is otherwise authoritative
    if args.dotenv:
        _load_dotenv_file(str(args.dotenv), override=bool(args.dotenv_override))

    init_logging(args.log_level)
    config = GatewayConfig.from_env()

    if args.command == "serve":
        from dataclasses import replace

        from .server import serve

        overrides: dict[str, Any] = {}
        if args.host:
            overrides["host"] = args.host
        if args.port is not None:
            overrides["port"] = args.port
        serve(replace(config, **overrides) if overrides else config)
        return 0

    try:
        payload = _read_request_payload()
    except (json.JSONDecodeError, RuntimeError, TypeError) as e:
        _print_json(
            {
                "success": False,
                "error": str(e),
                "stage": STAGE_PARSE_REQUEST,
                "errorKind": "InvalidRequest",
            }
        )
        return 1

    result = main_module.run(payload, config=config)
    _print_json(result)
    return 0 if result.get("success") else 1


if __name__ == "__main__":
    raise SystemExit(main())
