# src/solc_gateway/request.py
from __future__ import annotations

import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, field_validator

from solc_gateway.config import GatewayConfig
from solc_gateway.utils import default_filename, sanitize_filename


class CompileRequest(BaseModel):
    """
    Body of POST /compile. Field names follow the wire format (camelCase aliases);
    unknown keys are ignored.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    source: str
    filename: str | None = None
    compiler_version: str | None = Field(default=None, alias="compilerVersion")
    return_artifacts: bool = Field(default=False, alias="returnArtifacts")
    # e.g. {"@openzeppelin/contracts": "5.0.2"}
    package_versions: dict[str, str] = Field(default_factory=dict, alias="packageVersions")
    settings: dict[str, Any] = Field(default_factory=dict)

    # derived at runtime
    entry_key: str | None = None

    @field_validator("source")
    @classmethod
    def _source_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Missing 'source' string.")
        return v

    @field_validator("package_versions", "settings", mode="before")
    @classmethod
    def _null_as_empty(cls, v: Any) -> Any:
        return {} if v is None else v

    @field_validator("compiler_version", mode="before")
    @classmethod
    def _blank_version_as_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v.strip() if isinstance(v, str) else v

    def finalize(self) -> "CompileRequest":
        """
        Contract:
        - entry_key is the sanitized filename, or a name derived from the source when
          nothing usable was supplied.
        - No randomness: the same source always gets the same default name.
        """
        self.entry_key = sanitize_filename(self.filename) or default_filename(self.source)
        return self


@dataclass(frozen=True)
class ResolutionContext:
    """
    One request's resolution policy: ceilings, pinned package versions, fetchable hosts.
    Created per compile request and discarded afterwards.
    """

    max_sources: int
    max_total_bytes: int
    allowed_hosts: frozenset[str]
    npm_cdn: str
    package_versions: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    # time.monotonic() value after which no new fetch may start; None = no deadline
    deadline: float | None = None
    timeout_s: float | None = None

    @classmethod
    def for_request(cls, config: GatewayConfig, request: CompileRequest) -> "ResolutionContext":
        timeout = config.request_timeout_s if config.request_timeout_s > 0 else None
        return cls(
            max_sources=config.max_sources,
            max_total_bytes=config.max_total_bytes,
            allowed_hosts=config.allowed_hosts,
            npm_cdn=config.npm_cdn,
            package_versions=MappingProxyType(dict(request.package_versions)),
            deadline=(time.monotonic() + timeout) if timeout else None,
            timeout_s=timeout,
        )

    def seconds_left(self) -> float | None:
        if self.deadline is None:
            return None
        return self.deadline - time.monotonic()
