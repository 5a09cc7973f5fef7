"""
Emulator SQL subset.

Parses and evaluates the query grammar the emulator understands:

    SELECT [TOP n] * | alias | path [AS name], ...
    FROM source [alias]
    [WHERE condition]
    [ORDER BY path [ASC|DESC]]

Conditions support ``= != <> < <= > >=``, ``AND``, ``OR``, ``NOT``,
``IN (...)``, ``BETWEEN x AND y`` and parentheses. Operands are string,
number, boolean and null literals, ``@name`` parameters, and property paths
such as ``r.address.city`` or ``r["id"]``.

Author: docdb Team
Date: 2025-12-13
"""

import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

_TOKEN_RE = re.compile(
    r"""
    \s*(?:
        (?P<string>'(?:[^'\\]|\\.)*'|"(?:[^"\\]|\\.)*")
      | (?P<number>-?\d+(?:\.\d+)?)
      | (?P<param>@[A-Za-z_][A-Za-z0-9_]*)
      | (?P<op>!=|<>|>=|<=|=|>|<)
      | (?P<punct>[(),*\[\].])
      | (?P<ident>[A-Za-z_][A-Za-z0-9_]*)
    )
    """,
    re.VERBOSE,
)

_KEYWORDS = frozenset({
    "SELECT", "TOP", "FROM", "WHERE", "ORDER", "BY", "ASC", "DESC",
    "AND", "OR", "NOT", "IN", "BETWEEN", "AS", "TRUE", "FALSE", "NULL",
})


class QueryError(ValueError):
    """The query text is outside the supported grammar."""


@dataclass
class Token:
    kind: str
    value: str

    def is_keyword(self, *words: str) -> bool:
        return self.kind == "ident" and self.value.upper() in words


@dataclass
class ParsedQuery:
    """Structured form of a query.

    Attributes:
        alias: Name the documents are bound to in the query
        select: ``["*"]`` or a list of (path, output name) projections
        where: Compiled predicate, or ``None``
        order_by: (path, descending) pairs
        top: Maximum number of results
    """

    alias: str
    select: List[Any] = field(default_factory=lambda: ["*"])
    where: Optional[Callable[[Mapping[str, Any], Mapping[str, Any]], Any]] = None
    order_by: List[Tuple[Tuple[str, ...], bool]] = field(default_factory=list)
    top: Optional[int] = None


def tokenize(text: str) -> List[Token]:
    tokens: List[Token] = []
    position = 0
    text = text.rstrip()
    while position < len(text):
        match = _TOKEN_RE.match(text, position)
        if not match or match.end() == position:
            raise QueryError(f"Syntax error, unexpected input at position {position}: {text[position:position + 10]!r}")
        kind = match.lastgroup or ""
        tokens.append(Token(kind, match.group(kind)))
        position = match.end()
    return tokens


class _Parser:
    """Recursive descent parser over a token list."""

    def __init__(self, tokens: List[Token]):
        self.tokens = tokens
        self.position = 0
        self.alias = "root"

    def peek(self) -> Optional[Token]:
        return self.tokens[self.position] if self.position < len(self.tokens) else None

    def next(self) -> Token:
        token = self.peek()
        if token is None:
            raise QueryError("Syntax error, unexpected end of query")
        self.position += 1
        return token

    def accept_keyword(self, *words: str) -> Optional[Token]:
        token = self.peek()
        if token is not None and token.is_keyword(*words):
            self.position += 1
            return token
        return None

    def expect_keyword(self, word: str) -> None:
        if not self.accept_keyword(word):
            found = self.peek()
            raise QueryError(f"Syntax error, expected {word} but found {found.value if found else 'end of query'}")

    def accept_punct(self, value: str) -> bool:
        token = self.peek()
        if token is not None and token.kind == "punct" and token.value == value:
            self.position += 1
            return True
        return False

    def expect_punct(self, value: str) -> None:
        if not self.accept_punct(value):
            raise QueryError(f"Syntax error, expected '{value}'")

    # ---------- Statement ----------

    def parse(self) -> ParsedQuery:
        self.expect_keyword("SELECT")
        top = None
        if self.accept_keyword("TOP"):
            token = self.next()
            if token.kind != "number" or "." in token.value:
                raise QueryError("TOP expects an integer")
            top = int(token.value)

        select_start = self.position
        # Skip to FROM, the alias is needed to interpret the projection
        depth = 0
        while True:
            token = self.peek()
            if token is None:
                raise QueryError("Syntax error, missing FROM clause")
            if token.kind == "punct" and token.value in "([":
                depth += 1
            elif token.kind == "punct" and token.value in ")]":
                depth -= 1
            elif depth == 0 and token.is_keyword("FROM"):
                break
            self.position += 1
        select_end = self.position
        self.expect_keyword("FROM")

        source = self.next()
        if source.kind != "ident" or source.value.upper() in _KEYWORDS:
            raise QueryError("Syntax error, expected a source name after FROM")
        self.alias = source.value
        token = self.peek()
        if token is not None and token.kind == "ident" and token.value.upper() not in _KEYWORDS:
            self.alias = self.next().value
        elif self.accept_keyword("AS"):
            self.alias = self.next().value

        parsed = ParsedQuery(alias=self.alias, top=top)
        parsed.select = self._parse_select(select_start, select_end)

        if self.accept_keyword("WHERE"):
            parsed.where = self.parse_or()
        if self.accept_keyword("ORDER"):
            self.expect_keyword("BY")
            while True:
                path = self.parse_path(self.next())
                descending = bool(self.accept_keyword("DESC"))
                if not descending:
                    self.accept_keyword("ASC")
                parsed.order_by.append((path, descending))
                if not self.accept_punct(","):
                    break

        if self.peek() is not None:
            raise QueryError(f"Syntax error, unexpected '{self.peek().value}'")
        return parsed

    def _parse_select(self, start: int, end: int) -> List[Any]:
        tokens = self.tokens[start:end]
        if not tokens:
            raise QueryError("Syntax error, empty SELECT list")
        if len(tokens) == 1 and tokens[0].value == "*":
            return ["*"]
        if len(tokens) == 1 and tokens[0].value == self.alias:
            return ["*"]

        projections: List[Any] = []
        sub = _Parser(tokens)
        sub.alias = self.alias
        while sub.peek() is not None:
            path = sub.parse_path(sub.next())
            name = path[-1] if path else self.alias
            if sub.accept_keyword("AS"):
                name = sub.next().value
            projections.append((path, name))
            if not sub.accept_punct(","):
                break
        if sub.peek() is not None:
            raise QueryError("Syntax error in SELECT list")
        return projections

    # ---------- Conditions ----------

    def parse_or(self) -> Callable:
        left = self.parse_and()
        while self.accept_keyword("OR"):
            right = self.parse_and()
            left = _either(left, right)
        return left

    def parse_and(self) -> Callable:
        left = self.parse_not()
        while self.accept_keyword("AND"):
            right = self.parse_not()
            left = _both(left, right)
        return left

    def parse_not(self) -> Callable:
        if self.accept_keyword("NOT"):
            inner = self.parse_not()
            return lambda doc, params: not _truthy(inner(doc, params))
        return self.parse_comparison()

    def parse_comparison(self) -> Callable:
        left = self.parse_operand()

        token = self.peek()
        if token is not None and token.kind == "op":
            self.position += 1
            right = self.parse_operand()
            return _comparison(token.value, left, right)

        negate = bool(self.accept_keyword("NOT"))
        if self.accept_keyword("IN"):
            self.expect_punct("(")
            values = [self.parse_operand()]
            while self.accept_punct(","):
                values.append(self.parse_operand())
            self.expect_punct(")")
            check = _member(left, values)
            return (lambda doc, params: not check(doc, params)) if negate else check
        if self.accept_keyword("BETWEEN"):
            low = self.parse_operand()
            self.expect_keyword("AND")
            high = self.parse_operand()
            check = _range(left, low, high)
            return (lambda doc, params: not check(doc, params)) if negate else check
        if negate:
            raise QueryError("Syntax error, expected IN or BETWEEN after NOT")
        return left

    def parse_operand(self) -> Callable:
        token = self.next()
        if token.kind == "punct" and token.value == "(":
            inner = self.parse_or()
            self.expect_punct(")")
            return inner
        if token.kind == "string":
            value = _unquote(token.value)
            return lambda doc, params: value
        if token.kind == "number":
            number = float(token.value) if "." in token.value else int(token.value)
            return lambda doc, params: number
        if token.kind == "param":
            name = token.value
            def parameter(doc: Mapping[str, Any], params: Mapping[str, Any]) -> Any:
                if name not in params:
                    raise QueryError(f"Parameter '{name}' is not defined")
                return params[name]
            return parameter
        if token.is_keyword("TRUE", "FALSE"):
            flag = token.value.upper() == "TRUE"
            return lambda doc, params: flag
        if token.is_keyword("NULL"):
            return lambda doc, params: None
        if token.kind == "ident":
            path = self.parse_path(token)
            return lambda doc, params: get_path(doc, path)
        raise QueryError(f"Syntax error, unexpected '{token.value}'")

    def parse_path(self, first: Token) -> Tuple[str, ...]:
        """Property path below the alias, e.g. ``r.a.b`` -> ``("a", "b")``."""
        if first.kind != "ident":
            raise QueryError(f"Syntax error, expected a property path but found '{first.value}'")
        if first.value != self.alias:
            raise QueryError(f"Identifier '{first.value}' could not be resolved")
        parts: List[str] = []
        while True:
            if self.accept_punct("."):
                token = self.next()
                if token.kind != "ident":
                    raise QueryError("Syntax error, expected a property name after '.'")
                parts.append(token.value)
            elif self.accept_punct("["):
                token = self.next()
                if token.kind == "string":
                    parts.append(_unquote(token.value))
                elif token.kind == "number":
                    parts.append(token.value)
                else:
                    raise QueryError("Syntax error, expected a property name inside []")
                self.expect_punct("]")
            else:
                return tuple(parts)


# ========== Evaluation helpers ==========

def get_path(document: Any, path: Sequence[str]) -> Any:
    value = document
    for part in path:
        if isinstance(value, Mapping) and part in value:
            value = value[part]
        elif isinstance(value, list) and part.isdigit() and int(part) < len(value):
            value = value[int(part)]
        else:
            return None
    return value


def _unquote(literal: str) -> str:
    body = literal[1:-1]
    return re.sub(r"\\(.)", r"\1", body)


def _truthy(value: Any) -> bool:
    return value is True


def _comparable(left: Any, right: Any) -> bool:
    numeric = (int, float)
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool)
    if isinstance(left, numeric) and isinstance(right, numeric):
        return True
    return type(left) is type(right) and isinstance(left, str)


def _equal(a: Any, b: Any) -> bool:
    return a == b and (type(a) is type(b) or _comparable(a, b))


def _either(left: Callable, right: Callable) -> Callable:
    return lambda doc, params: _truthy(left(doc, params)) or _truthy(right(doc, params))


def _both(left: Callable, right: Callable) -> Callable:
    return lambda doc, params: _truthy(left(doc, params)) and _truthy(right(doc, params))


def _member(operand: Callable, candidates: List[Callable]) -> Callable:
    def check(doc: Mapping[str, Any], params: Mapping[str, Any]) -> bool:
        value = operand(doc, params)
        return any(_equal(value, c(doc, params)) for c in candidates)
    return check


def _range(operand: Callable, low: Callable, high: Callable) -> Callable:
    return lambda doc, params: _between(operand(doc, params), low(doc, params), high(doc, params))


def _comparison(op: str, left: Callable, right: Callable) -> Callable:
    def compare(doc: Mapping[str, Any], params: Mapping[str, Any]) -> bool:
        a, b = left(doc, params), right(doc, params)
        if op == "=":
            return _equal(a, b)
        if op in ("!=", "<>"):
            return not _equal(a, b)
        if a is None or b is None or not _comparable(a, b):
            return False
        if op == "<":
            return a < b
        if op == "<=":
            return a <= b
        if op == ">":
            return a > b
        return a >= b
    return compare


def _between(value: Any, low: Any, high: Any) -> bool:
    if not (_comparable(value, low) and _comparable(value, high)):
        return False
    return low <= value <= high


def _sort_key(value: Any) -> Tuple[int, Any]:
    # undefined < null < false/true < numbers < strings
    if value is None:
        return (0, 0)
    if isinstance(value, bool):
        return (1, value)
    if isinstance(value, (int, float)):
        return (2, value)
    if isinstance(value, str):
        return (3, value)
    return (4, str(value))


# ========== Public API ==========

def parse_query(text: str) -> ParsedQuery:
    """
    Parse query text.

    Raises:
        QueryError: If the text is outside the supported grammar
    """
    if not text or not text.strip():
        raise QueryError("Query text is empty")
    return _Parser(tokenize(text)).parse()


def parameter_map(parameters: Optional[Sequence[Mapping[str, Any]]]) -> Dict[str, Any]:
    """Turn ``[{name, value}]`` into a name -> value mapping."""
    result: Dict[str, Any] = {}
    for parameter in parameters or []:
        name = parameter.get("name")
        if not isinstance(name, str) or not name.startswith("@"):
            raise QueryError(f"Invalid query parameter name: {name!r}")
        result[name] = parameter.get("value")
    return result


def execute_query(
    records: Sequence[Mapping[str, Any]],
    text: str,
    parameters: Optional[Sequence[Mapping[str, Any]]] = None,
) -> List[Any]:
    """
    Run a query over records, preserving their order unless ORDER BY is given.

    Args:
        records: Candidate records in feed order
        text: Query text
        parameters: ``[{"name": "@p", "value": ...}]``

    Returns:
        Matching (and projected) records

    Raises:
        QueryError: If the query cannot be parsed or references an
            undefined parameter
    """
    parsed = parse_query(text)
    params = parameter_map(parameters)

    results = [r for r in records if parsed.where is None or _truthy(parsed.where(r, params))]

    for path, descending in reversed(parsed.order_by):
        results.sort(key=lambda r: _sort_key(get_path(r, path)), reverse=descending)

    if parsed.top is not None:
        results = results[:parsed.top]

    if parsed.select == ["*"]:
        return [dict(r) for r in results]

    projected: List[Any] = []
    for record in results:
        row: Dict[str, Any] = {}
        for path, name in parsed.select:
            value = get_path(record, path) if path else record
            if value is not None or (path and _has_path(record, path)):
                row[name] = value
        projected.append(row)
    return projected


def _has_path(document: Any, path: Sequence[str]) -> bool:
    value = document
    for part in path:
        if isinstance(value, Mapping) and part in value:
            value = value[part]
        else:
            return False
    return True
