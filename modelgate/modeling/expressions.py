"""
Calculated-Field Expression Language

Small formula language evaluated per row against a result set.

    [qty] * [price]
    IF([status] = "done", "Y", "N")
    ROUND([amount] / [count], 2)

GRAMMAR:
--------
    expression  := comparison
    comparison  := additive ( ("=" | "!=" | "<>" | ">" | ">=" | "<" | "<=") additive )?
    additive    := term ( ("+" | "-") term )*
    term        := unary ( ("*" | "/") unary )*
    unary       := ("-" | "+") unary | primary
    primary     := NUMBER | STRING | TRUE | FALSE | NULL | COLUMN
                 | IF "(" expression "," expression "," expression ")"
                 | FUNCTION "(" [ expression ("," expression)* ] ")"
                 | "(" expression ")"

SEMANTICS:
----------
- [column] reads the row's current value; a missing column is null
- null propagates through arithmetic and functions
- Division by zero yields 0.0
- Comparisons are numeric when both sides are numbers (or numeric
  strings); otherwise "=" and "!=" compare text forms and every other
  operator is false. A null side makes any comparison false.
- IF evaluates only the chosen branch; the condition must be a
  comparison that holds, any other condition is false

Evaluation never raises to the caller of evaluate(): errors become an
EvalResult with `error` set, and a null cell at the boundary.
"""

import logging
import math
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from modelgate.errors import expression_invalid

logger = logging.getLogger(__name__)

MAX_EXPRESSION_LENGTH = 2000
MAX_ROUND_DIGITS = 20
FORBIDDEN_KEYWORDS = ("drop ", "delete ", "insert ", "update ", "alter ", "exec ", "execute ")


class ResultType(str, Enum):
    """Type a calculated field's value is coerced to."""
    NUMBER = "NUMBER"
    STRING = "STRING"
    BOOLEAN = "BOOLEAN"
    DATE = "DATE"

    @classmethod
    def parse(cls, value: Any) -> "ResultType":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).upper())
        except ValueError:
            return cls.STRING


class ExpressionSyntaxError(ValueError):
    """Raised when an expression cannot be tokenized or parsed."""


class EvalError(Exception):
    """Raised while evaluating an expression against one row."""


# =============================================================================
# TOKENIZER
# =============================================================================

@dataclass(frozen=True)
class Token:
    """A lexical token."""

    type: str
    value: str
    position: int = 0


TOKEN_PATTERN = re.compile(
    r"(?P<SPACE>\s+)"
    r"|(?P<COLUMN>\[[^\]]+\])"
    r'|(?P<STRING>"(?:\\.|[^"\\])*"'
    r"|'(?:''|[^'])*')"
    r"|(?P<NUMBER>\d+(?:\.\d+)?|\.\d+)"
    r"|(?P<IDENT>[A-Za-z_]\w*)"
    r"|(?P<COMMA>,)"
    r"|(?P<LPAREN>\()"
    r"|(?P<RPAREN>\))"
    r"|(?P<COMPARE>!=|<>|>=|<=|=|>|<)"
    r"|(?P<ARITH>[-+*/])"
)

_ESCAPE = re.compile(r"\\(.)")


def _unquote(text: str) -> str:
    if text.startswith('"'):
        return _ESCAPE.sub(r"\1", text[1:-1])
    return text[1:-1].replace("''", "'")


def tokenize(expression: str) -> List[Token]:
    """Tokenize an expression into a sequence of :class:`Token` objects."""
    tokens: List[Token] = []
    position = 0
    length = len(expression)

    while position < length:
        match = TOKEN_PATTERN.match(expression, position)
        if not match:
            raise ExpressionSyntaxError(
                f"Unexpected character at position {position}: {expression[position]!r}"
            )

        kind = match.lastgroup
        text = match.group()
        start = position
        position = match.end()

        if kind == "SPACE":
            continue
        if kind == "COLUMN":
            tokens.append(Token("COLUMN", text[1:-1].strip(), start))
            continue
        if kind == "STRING":
            tokens.append(Token("STRING", _unquote(text), start))
            continue
        tokens.append(Token(kind, text, start))

    return tokens


# =============================================================================
# AST
# =============================================================================

@dataclass(frozen=True)
class Literal:
    value: Any


@dataclass(frozen=True)
class ColumnRef:
    name: str


@dataclass(frozen=True)
class UnaryOp:
    op: str
    operand: Any


@dataclass(frozen=True)
class BinaryOp:
    op: str
    left: Any
    right: Any


@dataclass(frozen=True)
class Comparison:
    op: str
    left: Any
    right: Any


@dataclass(frozen=True)
class FunctionCall:
    name: str
    args: tuple


@dataclass(frozen=True)
class IfExpr:
    condition: Any
    then_branch: Any
    else_branch: Any


# =============================================================================
# PARSER
# =============================================================================

class ExpressionParser:
    """Recursive-descent parser producing an expression AST."""

    def __init__(self, tokens: Sequence[Token]):
        self._tokens = list(tokens)
        self._index = 0

    @classmethod
    def parse(cls, expression: str):
        parser = cls(tokenize(expression))
        if parser._peek() is None:
            raise ExpressionSyntaxError("Expression cannot be empty")
        node = parser._parse_comparison()
        trailing = parser._peek()
        if trailing is not None:
            raise ExpressionSyntaxError(
                f"Unexpected token {trailing.value!r} at position {trailing.position}"
            )
        return node

    # Token helpers -----------------------------------------------------------

    def _peek(self) -> Optional[Token]:
        if self._index >= len(self._tokens):
            return None
        return self._tokens[self._index]

    def _advance(self) -> Token:
        token = self._peek()
        if token is None:
            raise ExpressionSyntaxError("Unexpected end of expression")
        self._index += 1
        return token

    def _match(self, token_type: str, *values: str) -> Optional[Token]:
        token = self._peek()
        if token and token.type == token_type and (not values or token.value in values):
            self._advance()
            return token
        return None

    def _expect(self, token_type: str) -> Token:
        token = self._match(token_type)
        if not token:
            found = self._peek()
            where = f"at position {found.position}" if found else "at end of expression"
            raise ExpressionSyntaxError(f"Expected {token_type} {where}")
        return token

    # Grammar -----------------------------------------------------------------

    def _parse_comparison(self):
        left = self._parse_additive()
        op = self._match("COMPARE")
        if op:
            right = self._parse_additive()
            return Comparison("!=" if op.value == "<>" else op.value, left, right)
        return left

    def _parse_additive(self):
        node = self._parse_term()
        while True:
            op = self._match("ARITH", "+", "-")
            if not op:
                return node
            node = BinaryOp(op.value, node, self._parse_term())

    def _parse_term(self):
        node = self._parse_unary()
        while True:
            op = self._match("ARITH", "*", "/")
            if not op:
                return node
            node = BinaryOp(op.value, node, self._parse_unary())

    def _parse_unary(self):
        op = self._match("ARITH", "+", "-")
        if op:
            return UnaryOp(op.value, self._parse_unary())
        return self._parse_primary()

    def _parse_primary(self):
        token = self._advance()

        if token.type == "NUMBER":
            return Literal(int(token.value) if token.value.isdigit() else float(token.value))
        if token.type == "STRING":
            return Literal(token.value)
        if token.type == "COLUMN":
            return ColumnRef(token.value)
        if token.type == "LPAREN":
            node = self._parse_comparison()
            self._expect("RPAREN")
            return node

        if token.type == "IDENT":
            name = token.value.upper()
            if name == "TRUE":
                return Literal(True)
            if name == "FALSE":
                return Literal(False)
            if name == "NULL":
                return Literal(None)

            self._expect("LPAREN")
            args = []
            if not self._match("RPAREN"):
                args.append(self._parse_comparison())
                while self._match("COMMA"):
                    args.append(self._parse_comparison())
                self._expect("RPAREN")

            if name == "IF":
                if len(args) != 3:
                    raise ExpressionSyntaxError("IF takes exactly 3 arguments")
                return IfExpr(args[0], args[1], args[2])
            if name not in FUNCTIONS:
                raise ExpressionSyntaxError(f"Unknown function: {token.value}")
            return FunctionCall(name, tuple(args))

        raise ExpressionSyntaxError(
            f"Unexpected token {token.value!r} at position {token.position}"
        )


def parse(expression: str):
    return ExpressionParser.parse(expression)


# =============================================================================
# VALUE HELPERS
# =============================================================================

def to_text(value: Any) -> Optional[str]:
    """Text form of a value; booleans are lower-case."""
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def to_number(value: Any) -> Optional[float]:
    """Numeric value of a number or numeric string, else None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    try:
        number = float(str(value).strip())
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def _require_number(value: Any, context: str) -> float:
    number = to_number(value)
    if number is None:
        raise EvalError(f"{context} expects a number, got {value!r}")
    return number


# =============================================================================
# FUNCTIONS
# =============================================================================

def _fn_abs(args: List[Any]) -> Any:
    if len(args) != 1:
        raise EvalError("ABS takes 1 argument")
    if args[0] is None:
        return None
    return abs(_require_number(args[0], "ABS"))


def _fn_round(args: List[Any]) -> Any:
    if len(args) not in (1, 2):
        raise EvalError("ROUND takes 1 or 2 arguments")
    if args[0] is None:
        return None
    value = _require_number(args[0], "ROUND")
    digits = _require_number(args[1], "ROUND") if len(args) == 2 else 0
    if digits < 0 or int(digits) != digits:
        raise EvalError(f"ROUND precision must be a non-negative integer, got {digits!r}")
    if digits > MAX_ROUND_DIGITS:
        raise EvalError(f"ROUND precision must be at most {MAX_ROUND_DIGITS}, got {int(digits)}")
    return f"{value:.{int(digits)}f}"


def _fn_upper(args: List[Any]) -> Any:
    if len(args) != 1:
        raise EvalError("UPPER takes 1 argument")
    text = to_text(args[0])
    return text.upper() if text is not None else None


def _fn_lower(args: List[Any]) -> Any:
    if len(args) != 1:
        raise EvalError("LOWER takes 1 argument")
    text = to_text(args[0])
    return text.lower() if text is not None else None


def _fn_concat(args: List[Any]) -> Any:
    # nulls concatenate as empty text
    return "".join(to_text(a) or "" for a in args)


FUNCTIONS: Dict[str, Callable[[List[Any]], Any]] = {
    "ABS": _fn_abs,
    "ROUND": _fn_round,
    "UPPER": _fn_upper,
    "LOWER": _fn_lower,
    "CONCAT": _fn_concat,
}


# =============================================================================
# EVALUATOR
# =============================================================================

def compare(op: str, left: Any, right: Any) -> bool:
    if left is None or right is None:
        return False

    l_num = to_number(left)
    r_num = to_number(right)
    if l_num is not None and r_num is not None:
        if op == "=":
            return l_num == r_num
        if op == "!=":
            return l_num != r_num
        if op == ">":
            return l_num > r_num
        if op == ">=":
            return l_num >= r_num
        if op == "<":
            return l_num < r_num
        if op == "<=":
            return l_num <= r_num
        return False

    if op == "=":
        return to_text(left) == to_text(right)
    if op == "!=":
        return to_text(left) != to_text(right)
    return False


def _arithmetic(op: str, left: Any, right: Any) -> Any:
    if left is None or right is None:
        return None
    l_num = _require_number(left, f"'{op}'")
    r_num = _require_number(right, f"'{op}'")
    try:
        if op == "+":
            return l_num + r_num
        if op == "-":
            return l_num - r_num
        if op == "*":
            return l_num * r_num
        if r_num == 0:
            return 0.0
        return l_num / r_num
    except OverflowError:
        raise EvalError(f"Numeric overflow in '{op}'")


def eval_node(node, row: Mapping[str, Any]) -> Any:
    """Evaluate an AST node against a row. Raises EvalError."""
    if isinstance(node, Literal):
        return node.value

    if isinstance(node, ColumnRef):
        return row.get(node.name)

    if isinstance(node, UnaryOp):
        value = eval_node(node.operand, row)
        if value is None:
            return None
        number = _require_number(value, f"unary '{node.op}'")
        return -number if node.op == "-" else number

    if isinstance(node, BinaryOp):
        return _arithmetic(node.op, eval_node(node.left, row), eval_node(node.right, row))

    if isinstance(node, Comparison):
        return compare(node.op, eval_node(node.left, row), eval_node(node.right, row))

    if isinstance(node, IfExpr):
        if isinstance(node.condition, Comparison) and eval_node(node.condition, row) is True:
            return eval_node(node.then_branch, row)
        return eval_node(node.else_branch, row)

    if isinstance(node, FunctionCall):
        args = [eval_node(a, row) for a in node.args]
        return FUNCTIONS[node.name](args)

    raise EvalError(f"Unsupported expression node: {type(node).__name__}")


def coerce(value: Any, result_type: ResultType) -> Any:
    """Convert an evaluated value to the field's result type."""
    if value is None:
        return None
    if result_type == ResultType.NUMBER:
        number = to_number(value)
        return float(number) if number is not None else None
    if result_type == ResultType.BOOLEAN:
        if isinstance(value, bool):
            return value
        return to_text(value).strip().lower() == "true"
    text = to_text(value)
    return text.strip() if result_type == ResultType.DATE else text


@dataclass
class EvalResult:
    """Outcome of evaluating one expression against one row."""
    value: Any = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def evaluate_result(expression, row: Mapping[str, Any], result_type: Any = ResultType.NUMBER) -> EvalResult:
    """
    Evaluate an expression (text or parsed AST) against a row.

    Never raises: syntax and evaluation failures are reported in `error`.
    """
    try:
        node = parse(expression) if isinstance(expression, str) else expression
        value = eval_node(node, row)
        return EvalResult(value=coerce(value, ResultType.parse(result_type)))
    except (ExpressionSyntaxError, EvalError) as e:
        return EvalResult(error=str(e))
    except (ArithmeticError, ValueError) as e:
        return EvalResult(error=f"{type(e).__name__}: {e}")


def evaluate(expression, row: Mapping[str, Any], result_type: Any = ResultType.NUMBER) -> Any:
    """Evaluate an expression against a row; any failure yields None."""
    return evaluate_result(expression, row, result_type).value


# =============================================================================
# VALIDATION
# =============================================================================

def validate_expression(expression: Optional[str]) -> None:
    """
    Check an expression at definition time.

    Raises:
        ModelGateError: blank, too long, contains a forbidden keyword, or
            does not parse
    """
    if expression is None or not expression.strip():
        raise expression_invalid("Expression cannot be empty", expression)
    if len(expression) > MAX_EXPRESSION_LENGTH:
        raise expression_invalid(
            f"Expression too long (max {MAX_EXPRESSION_LENGTH} chars)", expression[:100]
        )

    lowered = expression.lower()
    for keyword in FORBIDDEN_KEYWORDS:
        if keyword in lowered:
            raise expression_invalid(
                f"Expression contains forbidden keyword: {keyword.strip()}", expression
            )

    try:
        parse(expression)
    except ExpressionSyntaxError as e:
        raise expression_invalid(str(e), expression)
