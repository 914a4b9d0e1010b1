# solc_gateway/imports.py
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterator

# --------------------------------------------------------------------------------------
# Solidity import extraction (lexical; no comment/string awareness)
#
#   import "X";
#   import "X" as N;
#   import * as N from "X";
#   import {A, B as C} from "X";
#
# Matches inside comments or string literals are reported too.
# --------------------------------------------------------------------------------------

SOL_IMPORT_RE = re.compile(
    r"""(?x)
    \bimport\s+
    (?:[^'";]*?\bfrom\s+)?              # bindings: "* as N from" / "{A, B as C} from"
    (?P<q>['"])(?P<spec>[^'"\r\n]+)(?P=q)
    (?:\s+as\s+[A-Za-z_$][\w$]*)?       # import "X" as N;
    \s*;
    """
)


@dataclass(frozen=True)
class ImportSpan:
    specifier: str
    # offsets of the specifier text itself (inside the quotes)
    start: int
    end: int
    # offsets of the whole import statement, terminating ";" included
    statement_start: int
    statement_end: int


def iter_import_specifiers(text: str) -> Iterator[ImportSpan]:
    """
    Yield every import specifier in appearance order.
    Pure function of `text`: calling it again restarts from the beginning.
    """
    for m in SOL_IMPORT_RE.finditer(text):
        yield ImportSpan(
            specifier=m.group("spec"),
            start=m.start("spec"),
            end=m.end("spec"),
            statement_start=m.start(),
            statement_end=m.end(),
        )


def list_import_specifiers(text: str) -> list[str]:
    return [span.specifier for span in iter_import_specifiers(text)]
