# solc_gateway/sources.py
from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Protocol

from solc_gateway.errors import DeadlineExceeded, ResourceLimitExceeded
from solc_gateway.imports import iter_import_specifiers
from solc_gateway.request import ResolutionContext
from solc_gateway.resolver import resolve_specifier
from solc_gateway.utils import utf8_len

logger = logging.getLogger(__name__)


class TextFetcher(Protocol):
    def get(self, url: str, *, max_bytes: int | None = None) -> str: ...


@dataclass(frozen=True)
class SourceNode:
    # canonical key: entry filename or absolute URL
    key: str
    content: str
    # URL relative imports are resolved against; None for the entry file
    base: str | None
    # raw specifier -> canonical key, filled in during traversal
    edges: dict[str, str] = field(default_factory=dict)


@dataclass
class SourceGraph:
    entry_key: str
    nodes: dict[str, SourceNode]
    total_bytes: int = 0
    fetch_count: int = 0

    @property
    def keys(self) -> list[str]:
        return list(self.nodes)


def resolve_all_sources(
        entry_content: str,
        entry_key: str,
        ctx: ResolutionContext,
        fetcher: TextFetcher,
        *,
        entry_base: str | None = None,
) -> SourceGraph:
    """
    Breadth-first walk of the import graph starting at the entry file.

    Contract:
    - one node per canonical key; a key that is already known is recorded as an edge and
      never fetched or traversed again (this is also what breaks cycles)
    - the source-count ceiling is checked before a new key is fetched, the byte ceiling
      right after; the walk stops at the first ceiling tripped
    - any resolution or fetch failure aborts the whole walk (no partial graph)
    - entry_base is the URL the entry's relative imports resolve against; without one they
      fail with NoBaseContext
    """
    total_bytes = utf8_len(entry_content)
    if total_bytes > ctx.max_total_bytes:
        raise ResourceLimitExceeded("max_total_bytes", ctx.max_total_bytes, referrer=entry_key)
    if ctx.max_sources < 1:
        raise ResourceLimitExceeded("max_sources", ctx.max_sources, referrer=entry_key)

    nodes: dict[str, SourceNode] = {entry_key: SourceNode(key=entry_key, content=entry_content, base=entry_base)}
    queue: deque[str] = deque([entry_key])
    fetch_count = 0

    while queue:
        key = queue.popleft()
        node = nodes[key]

        for span in iter_import_specifiers(node.content):
            child_key = resolve_specifier(span.specifier, node.base, ctx, referrer=key)
            node.edges[span.specifier] = child_key

            if child_key in nodes:
                continue

            if len(nodes) >= ctx.max_sources:
                raise ResourceLimitExceeded("max_sources", ctx.max_sources, referrer=key, url=child_key)

            left = ctx.seconds_left()
            if left is not None and left <= 0:
                raise DeadlineExceeded(ctx.timeout_s or 0, url=child_key)

            text = fetcher.get(child_key, max_bytes=ctx.max_total_bytes - total_bytes)
            fetch_count += 1
            total_bytes += utf8_len(text)
            if total_bytes > ctx.max_total_bytes:
                raise ResourceLimitExceeded("max_total_bytes", ctx.max_total_bytes, referrer=key, url=child_key)

            nodes[child_key] = SourceNode(key=child_key, content=text, base=child_key)
            queue.append(child_key)

    logger.info(
        "import graph resolved",
        extra={"entry": entry_key, "files": len(nodes), "total_bytes": total_bytes, "fetches": fetch_count},
    )
    return SourceGraph(entry_key=entry_key, nodes=nodes, total_bytes=total_bytes, fetch_count=fetch_count)
