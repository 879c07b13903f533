"""Duration expressions.

A duration is a timestamp, a reference, or arithmetic over both:

    "00:00:05"                    -> 5.0
    "01:02.5"                     -> 62.5
    "00:00:03 - 00:00:01"         -> 2.0
    "{CLIP_0.trim.start} + 2"     -> CLIP_0's trim.start plus two seconds
    "({intro} + 1) * 2"           -> keypoint "intro", shifted and doubled

Grammar:
    EXPR     := TERM (OP EXPR)?
    TERM     := '(' EXPR ')' | VARREF | TIMEPART
    OP       := '+' | '-' | '*' | '/'
    VARREF   := '{' identifier ('.' identifier)* '}'
    TIMEPART := digits (':' digits)* ('.' digits)?

The right-hand side of an operator is a whole EXPR, so chained operators
associate to the right: "3 - 1 - 2" evaluates as 3 - (1 - 2) = 4. Templates
in the wild depend on this, so it is kept.
"""

import functools
import math
import re
from dataclasses import dataclass

from .errors import InputError


# ── AST ───────────────────────────────────────────────────────────


@dataclass(frozen=True)
class TimePart:
    text: str

    def seconds(self) -> float:
        total = 0.0
        for i, part in enumerate(reversed(self.text.replace(",", ".").split(":"))):
            total += float(part) * 60 ** i
        return total


@dataclass(frozen=True)
class VarRef:
    path: tuple[str, ...]

    @property
    def text(self) -> str:
        return "{" + ".".join(self.path) + "}"


@dataclass(frozen=True)
class BinaryOp:
    op: str
    left: "TimePart | VarRef | BinaryOp"
    right: "TimePart | VarRef | BinaryOp"

    @property
    def text(self) -> str:
        return f"{_node_text(self.left)} {self.op} {_node_text(self.right)}"


@dataclass(frozen=True)
class Group:
    inner: "TimePart | VarRef | BinaryOp | Group"

    @property
    def text(self) -> str:
        return f"({_node_text(self.inner)})"


def _node_text(node) -> str:
    return node.text


# ── Tokenizer / parser ────────────────────────────────────────────

_TOKEN_RE = re.compile(
    r"\s*(?:"
    r"(?P<lparen>\()|(?P<rparen>\))"
    r"|(?P<op>[-+*/])"
    r"|(?P<var>\{[A-Za-z0-9._-]+\})"
    r"|(?P<time>\d+(?::\d+)*(?:[.,]\d+)?|[.,]\d+)"
    r")"
)

OPERATORS = {"+", "-", "*", "/"}


def _tokenize(expr: str) -> list[tuple[str, str]]:
    tokens = []
    pos = 0
    stripped = expr.rstrip()
    while pos < len(stripped):
        match = _TOKEN_RE.match(stripped, pos)
        if match is None or match.end() == pos:
            raise InputError(
                f'Invalid duration "{expr}". Cannot parse "{stripped[pos:].strip()}"'
            )
        kind = match.lastgroup
        tokens.append((kind, match.group(kind)))
        pos = match.end()
    return tokens


class _Parser:
    def __init__(self, expr: str):
        self.expr = expr
        self.tokens = _tokenize(expr)
        self.pos = 0

    def _peek(self):
        if self.pos < len(self.tokens):
            return self.tokens[self.pos]
        return None

    def _take(self):
        token = self._peek()
        self.pos += 1
        return token

    def parse(self):
        if not self.tokens:
            raise InputError(f'Invalid duration "{self.expr}". Expression is empty')
        node = self._expr()
        leftover = self._peek()
        if leftover is not None:
            raise InputError(
                f'Invalid duration "{self.expr}". Expected "+,-,/,*" where "{leftover[1]}" was'
            )
        return node

    def _expr(self):
        left = self._term()
        token = self._peek()
        if token is not None and token[0] == "op":
            self._take()
            if self._peek() is None or self._peek()[0] in ("op", "rparen"):
                raise InputError(
                    f'Invalid duration "{self.expr}". '
                    f"Expected <duration> <operator> <duration_expr>"
                )
            return BinaryOp(token[1], left, self._expr())
        return left

    def _term(self):
        token = self._take()
        if token is None:
            raise InputError(f'Invalid duration "{self.expr}". Unexpected end of expression')
        kind, text = token
        if kind == "lparen":
            inner = self._expr()
            closing = self._take()
            if closing is None or closing[0] != "rparen":
                raise InputError(f'Invalid duration "{self.expr}". Unbalanced parentheses')
            return Group(inner)
        if kind == "var":
            return VarRef(tuple(text[1:-1].split(".")))
        if kind == "time":
            return TimePart(text)
        raise InputError(
            f'Invalid duration "{self.expr}". Expected a duration where "{text}" was'
        )


@functools.lru_cache(maxsize=1024)
def parse_expression(expr: str):
    """Parse a duration expression into an immutable AST."""
    return _Parser(expr).parse()


# ── Evaluation ────────────────────────────────────────────────────


def _apply(op: str, left: float, right: float, node) -> float:
    if op == "+":
        return left + right
    if op == "-":
        return left - right
    if op == "*":
        return left * right
    if right == 0:
        raise InputError(f'Invalid duration "{node.text}". Division by zero')
    return left / right


def _lookup_field(clip, fields: list[str]):
    obj = clip
    for key in fields:
        if isinstance(obj, dict):
            obj = obj.get(key)
        else:
            obj = getattr(obj, key, None)
        if obj is None:
            return None
    return obj


def _resolve_ref(ref: VarRef, template, seen: frozenset) -> float:
    if ref.text in seen:
        raise InputError(f'Invalid duration "{ref.text}". Reference cycle detected')
    seen = seen | {ref.text}

    keypoints = getattr(template, "keypoints", None) or {}
    if len(ref.path) == 1 and ref.path[0] in keypoints:
        return _parse(keypoints[ref.path[0]], template, seen)

    clip_map = getattr(template, "clip_map", None) or {}
    clip_id, *fields = ref.path
    clip = clip_map.get(clip_id)
    if clip is None:
        raise InputError(
            f'Invalid duration "{ref.text}". No clip or keypoint named "{clip_id}"'
        )
    if not fields:
        raise InputError(
            f'Invalid duration "{ref.text}". Expected a field path on clip "{clip_id}"'
        )
    value = _lookup_field(clip, fields)
    if value is None:
        raise InputError(
            f'Invalid duration "{ref.text}". Specified clip field for clip "{clip_id}" is undefined'
        )
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        raise InputError(
            f'Invalid duration "{ref.text}". Field is not a duration: {value!r}'
        )
    return _parse(value, template, seen)


def _evaluate(node, template, seen: frozenset) -> float:
    if isinstance(node, TimePart):
        return node.seconds()
    if isinstance(node, Group):
        return _evaluate(node.inner, template, seen)
    if isinstance(node, VarRef):
        return _resolve_ref(node, template, seen)
    left = _evaluate(node.left, template, seen)
    right = _evaluate(node.right, template, seen)
    return _apply(node.op, left, right, node)


def _parse(expr, template, seen: frozenset) -> float:
    if isinstance(expr, bool):
        raise InputError(f"Invalid duration {expr!r}")
    if isinstance(expr, (int, float)):
        return float(expr)
    if not isinstance(expr, str):
        raise InputError(f"Invalid duration {expr!r}. Expected a timestamp string")
    return _evaluate(parse_expression(expr.strip()), template, seen)


def parse_duration(expr, template=None) -> float:
    """Evaluate a duration expression to seconds.

    Args:
        expr: Expression string, or a bare number of seconds.
        template: Provides `keypoints` ({name: expr}) and `clip_map`
            ({clip_id: Clip}) for {reference} lookups.

    Raises:
        InputError: Malformed expression, unknown reference, a referenced
            field that is missing or not duration-shaped, or a cycle.
    """
    return _parse(expr, template, frozenset())


# ── Formatting ────────────────────────────────────────────────────


def format_duration(seconds: float) -> str:
    """Short human readable duration for status lines ('42s', '3.5m', '1.2h')."""
    if math.isnan(seconds):
        return "?"
    if seconds / 60 >= 100:
        return f"{seconds / 60 / 60:.1f}h"
    if seconds >= 100:
        return f"{seconds / 60:.1f}m"
    return f"{seconds:.0f}s"
