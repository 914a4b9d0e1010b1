# solc_gateway/graph.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Protocol, TypedDict

from pydantic import ValidationError

from solc_gateway.compiler import build_standard_json, load_compiler, summarize_output
from solc_gateway.config import GatewayConfig
from solc_gateway.errors import DeadlineExceeded, InvalidRequest
from solc_gateway.fetch import FetchCache
from solc_gateway.request import CompileRequest, ResolutionContext
from solc_gateway.rewrite import rewrite_sources
from solc_gateway.sources import SourceGraph, resolve_all_sources
from solc_gateway.utils import sha256_text, stable_json_dumps

try:
    from langgraph.graph import END, StateGraph
except Exception as e:  # pragma: no cover
    raise RuntimeError("LangGraph is required. Install 'langgraph'.") from e

logger = logging.getLogger(__name__)


# -----------------------------
# Stages (canonical)
# -----------------------------
STAGE_INIT = "init"
STAGE_PARSE_REQUEST = "parse_request"
STAGE_RESOLVE_SOURCES = "resolve_sources"
STAGE_REWRITE_IMPORTS = "rewrite_imports"
STAGE_BUILD_INPUT = "build_input"
STAGE_LOAD_COMPILER = "load_compiler"
STAGE_COMPILE = "compile"
STAGE_EMIT_RESULT = "emit_result"


class CompileStageError(RuntimeError):
    def __init__(self, stage: str, inner: Exception):
        super().__init__(str(inner))
        self.stage = stage
        self.inner = inner


class Compiler(Protocol):
    version: str

    def compile(self, document: dict[str, Any], *, timeout: float | None = None) -> dict[str, Any]: ...


# loader(selector, config, *, session, deadline) -> Compiler
CompilerLoader = Callable[..., Compiler]


@dataclass(frozen=True)
class RuntimeDeps:
    # requests.Session-compatible object; None => a fresh session per request
    session: Any | None = None
    compiler_loader: CompilerLoader = load_compiler


class CompileState(TypedDict, total=False):
    payload: dict[str, Any]
    config: GatewayConfig
    deps: RuntimeDeps
    stage: str

    request: CompileRequest
    ctx: ResolutionContext

    source_graph: SourceGraph
    sources: dict[str, str]
    document: dict[str, Any]

    compiler: Compiler
    output: dict[str, Any]

    result: dict[str, Any]


def _validation_message(e: ValidationError) -> str:
    parts: list[str] = []
    for err in e.errors():
        loc = ".".join(str(x) for x in err.get("loc", ())) or "body"
        msg = str(err.get("msg", "invalid value"))
        # pydantic prefixes custom ValueError messages
        msg = msg.removeprefix("Value error, ")
        parts.append(f"{loc}: {msg}")
    return "; ".join(parts) or "Invalid request."


def node_parse_request(state: CompileState) -> CompileState:
    stage = STAGE_PARSE_REQUEST
    try:
        payload = state.get("payload")
        if not isinstance(payload, dict):
            raise InvalidRequest("Request body must be a JSON object.")
        try:
            request = CompileRequest.model_validate(payload).finalize()
        except ValidationError as e:
            raise InvalidRequest(_validation_message(e)) from e

        state["stage"] = stage
        state["request"] = request
        state["ctx"] = ResolutionContext.for_request(state["config"], request)
        return state
    except Exception as e:
        raise CompileStageError(stage, e) from e


def node_resolve_sources(state: CompileState) -> CompileState:
    stage = STAGE_RESOLVE_SOURCES
    try:
        request = state["request"]
        cfg = state["config"]
        ctx = state["ctx"]

        with FetchCache(ctx, session=state["deps"].session, fetch_timeout_s=cfg.fetch_timeout_s) as cache:
            source_graph = resolve_all_sources(request.source, request.entry_key or "", ctx, cache)

        state["stage"] = stage
        state["source_graph"] = source_graph
        return state
    except Exception as e:
        raise CompileStageError(stage, e) from e


def node_rewrite_imports(state: CompileState) -> CompileState:
    stage = STAGE_REWRITE_IMPORTS
    try:
        state["stage"] = stage
        state["sources"] = rewrite_sources(state["source_graph"])
        return state
    except Exception as e:
        raise CompileStageError(stage, e) from e


def node_build_input(state: CompileState) -> CompileState:
    stage = STAGE_BUILD_INPUT
    try:
        document = build_standard_json(state["sources"], state["request"].settings)
        logger.debug(
            "compiler input built",
            extra={"input_sha256": sha256_text(stable_json_dumps(document)), "files": len(document["sources"])},
        )
        state["stage"] = stage
        state["document"] = document
        return state
    except Exception as e:
        raise CompileStageError(stage, e) from e


def node_load_compiler(state: CompileState) -> CompileState:
    stage = STAGE_LOAD_COMPILER
    try:
        deps = state["deps"]
        state["stage"] = stage
        state["compiler"] = deps.compiler_loader(
            state["request"].compiler_version,
            state["config"],
            session=deps.session,
            deadline=state["ctx"].deadline,
        )
        return state
    except Exception as e:
        raise CompileStageError(stage, e) from e


def node_compile(state: CompileState) -> CompileState:
    stage = STAGE_COMPILE
    try:
        ctx = state["ctx"]
        left = ctx.seconds_left()
        if left is not None and left <= 0:
            raise DeadlineExceeded(ctx.timeout_s or 0)

        state["stage"] = stage
        state["output"] = state["compiler"].compile(state["document"], timeout=left)
        return state
    except Exception as e:
        raise CompileStageError(stage, e) from e


def node_emit_result(state: CompileState) -> CompileState:
    stage = STAGE_EMIT_RESULT
    try:
        request = state["request"]
        diagnostics, has_error, artifacts = summarize_output(state.get("output", {}))

        result: dict[str, Any] = {
            "success": not has_error,
            "compiler": {"version": state["compiler"].version},
            "filename": request.entry_key,
            "files": list(state["sources"]),
            "diagnostics": diagnostics,
        }
        if not has_error and request.return_artifacts:
            result["artifacts"] = artifacts

        state["stage"] = stage
        state["result"] = result
        return state
    except Exception as e:
        raise CompileStageError(stage, e) from e


def build_compile_graph():
    g = StateGraph(CompileState)

    g.add_node("parse_request", node_parse_request)
    g.add_node("resolve_sources", node_resolve_sources)
    g.add_node("rewrite_imports", node_rewrite_imports)
    g.add_node("build_input", node_build_input)
    g.add_node("load_compiler", node_load_compiler)
    g.add_node("compile_sources", node_compile)
    g.add_node("emit_result", node_emit_result)

    g.set_entry_point("parse_request")
    g.add_edge("parse_request", "resolve_sources")
    g.add_edge("resolve_sources", "rewrite_imports")
    g.add_edge("rewrite_imports", "build_input")
    g.add_edge("build_input", "load_compiler")
    g.add_edge("load_compiler", "compile_sources")
    g.add_edge("compile_sources", "emit_result")
    g.add_edge("emit_result", END)

    return g.compile()


def run_compile_graph(
        *,
        payload: dict[str, Any],
        config: GatewayConfig,
        deps: RuntimeDeps | None = None,
) -> dict[str, Any]:
    app = build_compile_graph()
    state: CompileState = {
        "payload": payload,
        "config": config,
        "deps": deps or RuntimeDeps(),
        "stage": STAGE_INIT,
    }
    final_state = app.invoke(state)
    return final_state["result"]
