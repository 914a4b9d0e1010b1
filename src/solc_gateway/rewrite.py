# solc_gateway/rewrite.py
from __future__ import annotations

from typing import Mapping

from solc_gateway.imports import iter_import_specifiers
from solc_gateway.sources import SourceGraph


def rewrite_content(content: str, edges: Mapping[str, str]) -> str:
    """
    Replace each import specifier with the canonical key it resolved to.

    Offsets come from a fresh parse of `content`. The output is built in one pass by copying
    the untouched ranges between specifier spans, so quotes, aliases, braces and the
    terminating ";" are preserved byte for byte. Specifiers without an edge stay as written.
    """
    out: list[str] = []
    pos = 0
    for span in iter_import_specifiers(content):
        target = edges.get(span.specifier)
        if target is None:
            continue
        out.append(content[pos:span.start])
        out.append(target)
        pos = span.end
    out.append(content[pos:])
    return "".join(out)


def rewrite_sources(graph: SourceGraph) -> dict[str, str]:
    # {canonical key: rewritten content}, entry first, then BFS discovery order
    return {key: rewrite_content(node.content, node.edges) for key, node in graph.nodes.items()}
