"""Parser for mgcv-style model formulas.

A formula has a response and a right-hand side of ``+``-separated terms:

* ``s(x, ...)`` and ``te(x, z, ...)`` smooth terms,
* ``offset(expr)`` where ``expr`` is evaluated with ``DataFrame.eval``,
* anything else, passed through to patsy as the parametric part.
"""

from __future__ import annotations

import ast
from dataclasses import dataclass
from typing import Iterable, List, Literal, Optional, Tuple

import pandas as pd

SmoothKind = Literal["s", "te"]
BasisType = Literal["tp", "cr", "bs", "ps", "re", "fs"]

BASIS_TYPES: Tuple[str, ...] = ("tp", "cr", "bs", "ps", "re", "fs")
SMOOTH_KEYWORDS: Tuple[str, ...] = ("by", "k", "bs", "m", "sp")
DEFAULT_K = {"s": 10, "te": 5}


@dataclass(frozen=True)
class SmoothSpec:
    """Declarative description of one smooth term."""

    kind: SmoothKind
    variables: Tuple[str, ...]
    by: Optional[str] = None
    k: Optional[int] = None
    bs: BasisType = "tp"
    m: int = 2
    sp: Optional[float] = None

    def validate(self) -> None:
        if not self.variables:
            raise ValueError(f"{self.kind}() needs at least one variable.")
        if self.bs not in BASIS_TYPES:
            raise ValueError(f"Unknown basis '{self.bs}'. Available: {list(BASIS_TYPES)}")
        if self.kind == "te":
            if len(self.variables) != 2:
                raise ValueError("te() supports exactly two variables.")
            if self.bs in ("re", "fs"):
                raise ValueError("te() margins must be spline bases.")
        elif self.bs == "fs" and len(self.variables) != 2:
            raise ValueError("bs='fs' needs a covariate and a grouping factor, e.g. s(Time, Subject, bs='fs').")
        elif self.bs not in ("re", "fs") and len(self.variables) != 1:
            raise ValueError("Multi-variable s() terms need bs='re' or bs='fs'; use te() for tensor products.")
        if self.k is not None and self.k < 3 and self.bs not in ("re",):
            raise ValueError("Basis dimension k must be at least 3.")
        if self.m not in (1, 2, 3):
            raise ValueError("Penalty order m must be 1, 2 or 3.")
        if self.sp is not None and self.sp <= 0:
            raise ValueError("Fixed smoothing parameter sp must be positive.")

    @property
    def basis_dim(self) -> int:
        return self.k if self.k is not None else DEFAULT_K[self.kind]

    @property
    def random(self) -> bool:
        return self.bs in ("re", "fs")

    @property
    def label(self) -> str:
        base = f"{self.kind}({','.join(self.variables)})"
        return f"{base}:{self.by}" if self.by else base

    @property
    def columns(self) -> Tuple[str, ...]:
        return self.variables + ((self.by,) if self.by else ())


@dataclass(frozen=True)
class FormulaSpec:
    response: str
    parametric: str
    smooths: Tuple[SmoothSpec, ...]
    offset: Optional[str] = None

    @property
    def patsy_formula(self) -> str:
        return f"{self.response} ~ {self.parametric}"

    @property
    def offset_columns(self) -> List[str]:
        return _expression_names(self.offset) if self.offset else []

    def referenced_columns(self, frame: pd.DataFrame) -> List[str]:
        """Columns of ``frame`` used anywhere in the formula, in first-use order."""
        names: List[str] = []
        names.extend(_expression_names(self.response))
        names.extend(_expression_names(self.parametric.replace(":", "*")))
        for smooth in self.smooths:
            names.extend(smooth.columns)
        if self.offset:
            names.extend(_expression_names(self.offset))
        ordered: dict[str, None] = {}
        for name in names:
            if name in frame.columns:
                ordered.setdefault(name, None)
        return list(ordered)


def _expression_names(expression: str) -> List[str]:
    try:
        tree = ast.parse(expression.strip() or "1", mode="eval")
    except SyntaxError:
        return []
    callees = {id(node.func) for node in ast.walk(tree) if isinstance(node, ast.Call)}
    return [node.id for node in ast.walk(tree) if isinstance(node, ast.Name) and id(node) not in callees]


def split_terms(rhs: str) -> List[str]:
    """Split a right-hand side on top-level ``+`` signs."""
    terms: List[str] = []
    depth = 0
    quote: Optional[str] = None
    current: List[str] = []
    for char in rhs:
        if quote:
            current.append(char)
            if char == quote:
                quote = None
            continue
        if char in "'\"":
            quote = char
        elif char in "([":
            depth += 1
        elif char in ")]":
            depth -= 1
            if depth < 0:
                raise ValueError(f"Unbalanced parentheses in '{rhs}'")
        elif char == "+" and depth == 0:
            terms.append("".join(current).strip())
            current = []
            continue
        current.append(char)
    if depth != 0 or quote:
        raise ValueError(f"Unbalanced parentheses or quotes in '{rhs}'")
    terms.append("".join(current).strip())
    if any(not term for term in terms):
        raise ValueError(f"Empty term in '{rhs}'")
    return terms


def _literal(node: ast.expr, keyword: str) -> object:
    try:
        return ast.literal_eval(node)
    except ValueError as exc:
        raise ValueError(f"Keyword '{keyword}' must be a literal value") from exc


def parse_smooth(term: str) -> SmoothSpec:
    """Parse ``s(...)``/``te(...)`` into a SmoothSpec."""
    try:
        node = ast.parse(term, mode="eval").body
    except SyntaxError as exc:
        raise ValueError(f"Cannot parse smooth term '{term}'") from exc
    if not isinstance(node, ast.Call) or not isinstance(node.func, ast.Name) or node.func.id not in DEFAULT_K:
        raise ValueError(f"'{term}' is not an s() or te() term")

    variables: List[str] = []
    for arg in node.args:
        if not isinstance(arg, ast.Name):
            raise ValueError(f"Smooth variables must be column names, got '{ast.unparse(arg)}'")
        variables.append(arg.id)

    options: dict[str, object] = {}
    for keyword in node.keywords:
        name = keyword.arg
        if name not in SMOOTH_KEYWORDS:
            raise ValueError(f"Unknown smooth keyword '{name}' in '{term}'. Allowed: {list(SMOOTH_KEYWORDS)}")
        if name == "by" and isinstance(keyword.value, ast.Name):
            options["by"] = keyword.value.id
        else:
            options[name] = _literal(keyword.value, name)

    spec = SmoothSpec(
        kind=node.func.id,  # type: ignore[arg-type]
        variables=tuple(variables),
        by=str(options["by"]) if "by" in options else None,
        k=int(options["k"]) if "k" in options else None,  # type: ignore[arg-type]
        bs=str(options.get("bs", "tp")),  # type: ignore[arg-type]
        m=int(options.get("m", 2)),  # type: ignore[arg-type]
        sp=float(options["sp"]) if "sp" in options else None,  # type: ignore[arg-type]
    )
    spec.validate()
    return spec


def _is_call(term: str, names: Iterable[str]) -> bool:
    head = term.split("(", 1)[0].strip()
    return "(" in term and head in names and term.endswith(")")


def parse_formula(text: str) -> FormulaSpec:
    """Split a formula into response, parametric part, smooth terms and offset."""
    if text.count("~") != 1:
        raise ValueError(f"Formula must contain exactly one '~': '{text}'")
    lhs, rhs = (part.strip() for part in text.split("~"))
    if not lhs:
        raise ValueError("Formula is missing a response.")
    if not rhs:
        raise ValueError("Formula has an empty right-hand side.")

    parametric: List[str] = []
    smooths: List[SmoothSpec] = []
    offsets: List[str] = []
    for term in split_terms(rhs):
        if _is_call(term, DEFAULT_K):
            smooths.append(parse_smooth(term))
        elif _is_call(term, ("offset",)):
            inner = term[term.index("(") + 1 : -1].strip()
            if not inner:
                raise ValueError("offset() needs an expression.")
            offsets.append(inner)
        else:
            parametric.append(term)

    labels = [smooth.label for smooth in smooths]
    duplicated = sorted({label for label in labels if labels.count(label) > 1})
    if duplicated:
        raise ValueError(f"Duplicate smooth terms: {duplicated}")

    offset = " + ".join(f"({expr})" for expr in offsets) if offsets else None
    return FormulaSpec(
        response=lhs,
        parametric=" + ".join(parametric) if parametric else "1",
        smooths=tuple(smooths),
        offset=offset,
    )


__all__ = [
    "BASIS_TYPES",
    "BasisType",
    "FormulaSpec",
    "SmoothKind",
    "SmoothSpec",
    "parse_formula",
    "parse_smooth",
    "split_terms",
]
