"""Placeholder substitution and the condition mini-language.

Conditions are parsed by a small recursive-descent parser that only knows
literals, ``context.a.b`` lookups, parentheses and the operators
``! * / % + - < <= > >= == != === !== && ||``. Nothing is ever handed to
``eval``.
"""
import json
import logging
import re
from typing import Any, List, Mapping, Tuple

logger = logging.getLogger(__name__)

TOKEN_RE = re.compile(r"\{\{\s*context\.([a-zA-Z0-9_.]+)\s*\}\}")

_MISSING = object()
_NAN = float("nan")


class ExpressionError(ValueError):
    pass


def resolve_path(context: Any, path: str) -> Any:
    value = context
    for key in path.split("."):
        if key == "":
            return None
        if isinstance(value, Mapping):
            value = value.get(key, _MISSING)
        elif isinstance(value, (list, tuple)) and key.isdigit():
            idx = int(key)
            value = value[idx] if idx < len(value) else _MISSING
        else:
            return None
        if value is _MISSING:
            return None
    return value


def _render_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    if value is None:
        return ""
    return json.dumps(value, default=str)


def _substitute_text(text: str, context: Any) -> str:
    return TOKEN_RE.sub(lambda m: _render_text(resolve_path(context, m.group(1))), text)


def substitute(config: Any, context: Any) -> Any:
    """Replace every {{context.path}} token in every string of a nested structure."""
    if isinstance(config, str):
        return _substitute_text(config, context)
    if isinstance(config, dict):
        return {
            (_substitute_text(k, context) if isinstance(k, str) else k): substitute(v, context)
            for k, v in config.items()
        }
    if isinstance(config, (list, tuple)):
        return [substitute(item, context) for item in config]
    return config


def _render_literal(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return repr(value)
    return json.dumps(value, default=str)


# --- tokenizer -------------------------------------------------------------

_LEX_RE = re.compile(
    r"""
    (?P<ws>\s+)
    |(?P<number>\d+(?:\.\d+)?(?:[eE][+-]?\d+)?)
    |(?P<string>"(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')
    |(?P<ident>[A-Za-z_$][A-Za-z0-9_$]*(?:\.[A-Za-z0-9_$]+)*)
    |(?P<op>===|!==|==|!=|>=|<=|&&|\|\||[<>!+\-*/%()])
    """,
    re.VERBOSE,
)

Token = Tuple[str, Any]


def _decode_string(raw: str) -> str:
    if raw[0] == '"':
        return json.loads(raw)
    inner = raw[1:-1].replace("\\'", "'").replace('"', '\\"')
    return json.loads(f'"{inner}"')


def tokenize(expr: str) -> List[Token]:
    tokens: List[Token] = []
    pos = 0
    while pos < len(expr):
        m = _LEX_RE.match(expr, pos)
        if m is None:
            raise ExpressionError(f"Unexpected character {expr[pos]!r} at {pos}")
        pos = m.end()
        kind = m.lastgroup
        text = m.group(kind)
        if kind == "ws":
            continue
        if kind == "number":
            tokens.append(("num", float(text) if any(c in text for c in ".eE") else int(text)))
        elif kind == "string":
            tokens.append(("str", _decode_string(text)))
        elif kind == "ident":
            tokens.append(("ident", text))
        else:
            tokens.append(("op", text))
    tokens.append(("end", None))
    return tokens


# --- parser ----------------------------------------------------------------

_KEYWORDS = {"true": True, "false": False, "null": None, "undefined": None}

_COMPARISON_OPS = ("===", "!==", "==", "!=", ">=", "<=", ">", "<")


class _Parser:
    """
    Grammar:
        or      := and ("||" and)*
        and     := cmp ("&&" cmp)*
        cmp     := sum (cmp_op sum)?
        sum     := product (("+" | "-") product)*
        product := unary (("*" | "/" | "%") unary)*
        unary   := ("!" | "-") unary | primary
        primary := number | string | keyword | context.path | "(" or ")"
    """

    def __init__(self, tokens: List[Token]):
        self.tokens = tokens
        self.pos = 0

    def _peek(self) -> Token:
        return self.tokens[self.pos]

    def _accept(self, *ops: str):
        kind, value = self._peek()
        if kind == "op" and value in ops:
            self.pos += 1
            return value
        return None

    def parse(self):
        node = self._or()
        if self._peek()[0] != "end":
            raise ExpressionError(f"Unexpected token {self._peek()[1]!r}")
        return node

    def _or(self):
        node = self._and()
        while self._accept("||"):
            node = ("or", node, self._and())
        return node

    def _and(self):
        node = self._cmp()
        while self._accept("&&"):
            node = ("and", node, self._cmp())
        return node

    def _cmp(self):
        node = self._sum()
        op = self._accept(*_COMPARISON_OPS)
        if op:
            node = ("cmp", op, node, self._sum())
        return node

    def _sum(self):
        node = self._product()
        while True:
            op = self._accept("+", "-")
            if not op:
                return node
            node = ("bin", op, node, self._product())

    def _product(self):
        node = self._unary()
        while True:
            op = self._accept("*", "/", "%")
            if not op:
                return node
            node = ("bin", op, node, self._unary())

    def _unary(self):
        if self._accept("!"):
            return ("not", self._unary())
        if self._accept("-"):
            return ("neg", self._unary())
        return self._primary()

    def _primary(self):
        kind, value = self._peek()
        if kind in ("num", "str"):
            self.pos += 1
            return ("lit", value)
        if kind == "ident":
            self.pos += 1
            if value in _KEYWORDS:
                return ("lit", _KEYWORDS[value])
            if value.startswith("context."):
                return ("path", value[len("context."):])
            raise ExpressionError(f"Unknown identifier {value!r}")
        if self._accept("("):
            node = self._or()
            if not self._accept(")"):
                raise ExpressionError("Missing closing parenthesis")
            return node
        raise ExpressionError(f"Unexpected token {value!r}")


def _truthy(value: Any) -> bool:
    return bool(value)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _to_number(value: Any) -> float:
    """Numeric view of a scalar the way loose comparisons see it; NaN when there is none."""
    if isinstance(value, bool):
        return 1 if value else 0
    if _is_number(value):
        return value
    if value is None:
        return 0
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return 0
        try:
            return float(text)
        except ValueError:
            return _NAN
    return _NAN


def _loose_equal(left: Any, right: Any) -> bool:
    if left is None or right is None:
        return left is None and right is None
    scalars = (str, int, float, bool)
    if isinstance(left, scalars) and isinstance(right, scalars) and type(left) is not type(right):
        # "1" == 1, true == 1
        return _to_number(left) == _to_number(right)
    return left == right


def _strict_equal(left: Any, right: Any) -> bool:
    if _is_number(left) and _is_number(right):
        return left == right
    return type(left) is type(right) and left == right


def _relational(op: str, left: Any, right: Any) -> bool:
    if not (isinstance(left, str) and isinstance(right, str)):
        left, right = _to_number(left), _to_number(right)
    if op == ">":
        return left > right
    if op == "<":
        return left < right
    if op == ">=":
        return left >= right
    return left <= right


def _arithmetic(op: str, left: Any, right: Any) -> Any:
    if not (_is_number(left) and _is_number(right)):
        raise ExpressionError(f"Operator {op} needs numbers")
    if op == "+":
        return left + right
    if op == "-":
        return left - right
    if op == "*":
        return left * right
    if op == "/":
        return left / right
    return left % right


def _evaluate(node, context: Any) -> Any:
    kind = node[0]
    if kind == "lit":
        return node[1]
    if kind == "path":
        return resolve_path(context, node[1])
    if kind == "not":
        return not _truthy(_evaluate(node[1], context))
    if kind == "neg":
        return _arithmetic("-", 0, _evaluate(node[1], context))
    if kind == "and":
        left = _evaluate(node[1], context)
        return _evaluate(node[2], context) if _truthy(left) else left
    if kind == "or":
        left = _evaluate(node[1], context)
        return left if _truthy(left) else _evaluate(node[2], context)
    if kind == "bin":
        return _arithmetic(node[1], _evaluate(node[2], context), _evaluate(node[3], context))
    if kind == "cmp":
        op, left, right = node[1], _evaluate(node[2], context), _evaluate(node[3], context)
        if op == "==":
            return _loose_equal(left, right)
        if op == "!=":
            return not _loose_equal(left, right)
        if op == "===":
            return _strict_equal(left, right)
        if op == "!==":
            return not _strict_equal(left, right)
        return _relational(op, left, right)
    raise ExpressionError(f"Unsupported node {kind}")


def eval_condition(expr: Any, context: Any) -> bool:
    """Evaluate a condition expression; any failure yields False."""
    try:
        text = TOKEN_RE.sub(lambda m: _render_literal(resolve_path(context, m.group(1))), str(expr))
        tree = _Parser(tokenize(text)).parse()
        return _truthy(_evaluate(tree, context))
    except Exception as exc:
        logger.warning(
            "Condition evaluation failed; treating as false",
            extra={"expr": str(expr), "error": str(exc)},
        )
        return False
