# src/solc_gateway/main.py
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from solc_gateway.config import GatewayConfig

logger = logging.getLogger(__name__)

INTERNAL_ERROR = "InternalError"


def failure_response(stage: str, err: Exception) -> Dict[str, Any]:
    return {
        "success": False,
        "error": str(err) or err.__class__.__name__,
        "stage": stage,
        "errorKind": err.__class__.__name__,
    }


def run(
        request_payload: Any,
        *,
        config: Optional[GatewayConfig] = None,
        deps: Any = None,
) -> Dict[str, Any]:
    """
    Core entrypoint used by solc_gateway.cli and solc_gateway.server.

    solc_gateway.graph owns the workflow
    (parse request → resolve imports → rewrite → build input → load solc → compile → emit result).

    Never raises for a bad request or a failed stage: every failure becomes
    {"success": false, "error": ..., "stage": ..., "errorKind": ...}.
    """
    from solc_gateway.graph import CompileStageError, run_compile_graph

    config = config or GatewayConfig.from_env()
    try:
        return run_compile_graph(payload=request_payload, config=config, deps=deps)
    except CompileStageError as e:
        logger.warning(
            "compile request failed",
            extra={"stage": e.stage, "error_kind": e.inner.__class__.__name__, "error": str(e.inner)},
        )
        return failure_response(e.stage, e.inner)
    except Exception as e:  # noqa: BLE001 - top-level request boundary
        logger.exception("unexpected failure while compiling")
        out = failure_response("unknown", e)
        out["errorKind"] = INTERNAL_ERROR
        return out
