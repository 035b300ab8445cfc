"""
Rule expressions for attribute-based policy subjects.

An ABAC policy names its subject with a predicate instead of a URI:

    expr       := or_expr
    or_expr    := and_expr ("or" and_expr)*
    and_expr   := not_expr ("and" not_expr)*
    not_expr   := "not" not_expr | primary
    primary    := "(" expr ")" | comparison
    comparison := operand ("==" | "!=" | "in" | "not in") operand
    operand    := attribute | STRING | "[" STRING ("," STRING)* "]"
    attribute  := subject.uri | subject.kind | subject.path | subject.roles

``subject.roles`` is the set of role URIs the subject reaches through role
membership rows. Every comparison must reference at least one attribute.

Examples:
    'gamedeals://role/admin' in subject.roles
    subject.kind in ['user', 'untrusted-user'] and subject.path != 'banned'
"""

import logging
import re
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Callable, FrozenSet, List, Optional, Union

from gamedeals.models.authorization_models import ResourceURI

from .exceptions import PolicyConfigurationError

logger = logging.getLogger(__name__)

TOKEN_PATTERN = re.compile(
    r"""
    \s*(?:
        (?P<string>'[^']*'|"[^"]*")
      | (?P<op>==|!=)
      | (?P<punct>[()\[\],])
      | (?P<word>[A-Za-z_][A-Za-z0-9_.]*)
    )
    """,
    re.VERBOSE,
)

KEYWORDS = {"and", "or", "not", "in"}
SCALAR_ATTRIBUTES = {"subject.uri", "subject.kind", "subject.path"}
SET_ATTRIBUTES = {"subject.roles"}


@dataclass(frozen=True)
class SubjectAttributes:
    """Attributes of a concrete subject a rule expression is evaluated against"""

    uri: str
    kind: str = ""
    path: str = ""
    roles: FrozenSet[str] = field(default_factory=frozenset)

    @classmethod
    def from_uri(cls, uri: str, roles: FrozenSet[str] = frozenset()) -> "SubjectAttributes":
        try:
            parsed = ResourceURI.parse(uri)
        except ValueError:
            return cls(uri=uri, roles=roles)
        return cls(uri=uri, kind=parsed.kind.value, path=parsed.path, roles=roles)

    def lookup(self, attribute: str) -> Union[str, FrozenSet[str]]:
        if attribute == "subject.uri":
            return self.uri
        if attribute == "subject.kind":
            return self.kind
        if attribute == "subject.path":
            return self.path
        return self.roles


Predicate = Callable[[SubjectAttributes], bool]
Value = Union[str, FrozenSet[str]]


@dataclass(frozen=True)
class _Token:
    kind: str
    text: str
    position: int


@dataclass(frozen=True)
class _Operand:
    is_set: bool
    resolve: Callable[[SubjectAttributes], Value]
    is_attribute: bool


def _tokenize(source: str) -> List[_Token]:
    tokens = []
    position = 0
    while position < len(source):
        if source[position:].strip() == "":
            break
        match = TOKEN_PATTERN.match(source, position)
        if match is None or match.end() == position:
            raise PolicyConfigurationError(
                f"Unexpected character at position {position} in rule expression", details=source
            )
        kind = match.lastgroup
        text = match.group(kind)
        tokens.append(_Token(kind, text, match.start(kind)))
        position = match.end()
    return tokens


class RuleParser:
    """Recursive-descent parser that compiles a rule expression to a predicate."""

    def __init__(self, source: str):
        self.source = source
        self.tokens = _tokenize(source)
        self.index = 0

    def parse(self) -> Predicate:
        if not self.tokens:
            raise PolicyConfigurationError("Rule expression must not be empty")
        predicate = self._or_expr()
        if self.index != len(self.tokens):
            self._fail(f"Unexpected token {self._peek().text!r}")
        return predicate

    def _peek(self) -> Optional[_Token]:
        if self.index < len(self.tokens):
            return self.tokens[self.index]
        return None

    def _peek_word(self, offset: int = 0) -> Optional[str]:
        position = self.index + offset
        if position < len(self.tokens) and self.tokens[position].kind == "word":
            return self.tokens[position].text
        return None

    def _advance(self) -> _Token:
        token = self._peek()
        if token is None:
            self._fail("Unexpected end of rule expression")
        self.index += 1
        return token

    def _expect(self, text: str) -> None:
        token = self._advance()
        if token.text != text:
            self._fail(f"Expected {text!r} but found {token.text!r}")

    def _fail(self, message: str) -> None:
        raise PolicyConfigurationError(message, details=self.source)

    def _or_expr(self) -> Predicate:
        terms = [self._and_expr()]
        while self._peek_word() == "or":
            self._advance()
            terms.append(self._and_expr())
        if len(terms) == 1:
            return terms[0]
        return lambda subject: any(term(subject) for term in terms)

    def _and_expr(self) -> Predicate:
        terms = [self._not_expr()]
        while self._peek_word() == "and":
            self._advance()
            terms.append(self._not_expr())
        if len(terms) == 1:
            return terms[0]
        return lambda subject: all(term(subject) for term in terms)

    def _not_expr(self) -> Predicate:
        if self._peek_word() == "not":
            self._advance()
            inner = self._not_expr()
            return lambda subject: not inner(subject)
        return self._primary()

    def _primary(self) -> Predicate:
        token = self._peek()
        if token is not None and token.text == "(":
            self._advance()
            inner = self._or_expr()
            self._expect(")")
            return inner
        return self._comparison()

    def _comparison(self) -> Predicate:
        left = self._operand()

        operator = self._advance()
        if operator.kind == "op":
            op = operator.text
        elif operator.text == "in":
            op = "in"
        elif operator.text == "not" and self._peek_word() == "in":
            self._advance()
            op = "not in"
        else:
            self._fail(f"Expected a comparison operator but found {operator.text!r}")

        right = self._operand()

        if not (left.is_attribute or right.is_attribute):
            self._fail("Comparison must reference a subject attribute")

        if op in ("==", "!="):
            if left.is_set or right.is_set:
                self._fail(f"Operator {op!r} compares single values, use 'in' for sets")
            if op == "==":
                return lambda subject: left.resolve(subject) == right.resolve(subject)
            return lambda subject: left.resolve(subject) != right.resolve(subject)

        if left.is_set or not right.is_set:
            self._fail(f"Operator {op!r} needs a single value on the left and a set on the right")
        if op == "in":
            return lambda subject: left.resolve(subject) in right.resolve(subject)
        return lambda subject: left.resolve(subject) not in right.resolve(subject)

    def _operand(self) -> _Operand:
        token = self._advance()

        if token.kind == "string":
            value = token.text[1:-1]
            return _Operand(is_set=False, resolve=lambda subject: value, is_attribute=False)

        if token.text == "[":
            return self._list_literal()

        if token.kind == "word":
            if token.text in SCALAR_ATTRIBUTES or token.text in SET_ATTRIBUTES:
                name = token.text
                return _Operand(
                    is_set=name in SET_ATTRIBUTES,
                    resolve=lambda subject: subject.lookup(name),
                    is_attribute=True,
                )
            if token.text in KEYWORDS:
                self._fail(f"Unexpected keyword {token.text!r}")
            self._fail(f"Unknown attribute {token.text!r}")

        self._fail(f"Unexpected token {token.text!r}")

    def _list_literal(self) -> _Operand:
        items: List[str] = []
        while True:
            token = self._advance()
            if token.kind != "string":
                self._fail("List literals may only contain strings")
            items.append(token.text[1:-1])

            separator = self._advance()
            if separator.text == "]":
                break
            if separator.text != ",":
                self._fail(f"Expected ',' or ']' but found {separator.text!r}")

        values = frozenset(items)
        return _Operand(is_set=True, resolve=lambda subject: values, is_attribute=False)


class CompiledRule:
    """A parsed rule expression. Calling it evaluates the predicate."""

    def __init__(self, source: str, predicate: Predicate):
        self.source = source
        self._predicate = predicate

    def __call__(self, subject: SubjectAttributes) -> bool:
        return bool(self._predicate(subject))

    def __repr__(self) -> str:
        return f"CompiledRule({self.source!r})"


@lru_cache(maxsize=256)
def compile_rule(source: str) -> CompiledRule:
    """
    Compile a rule expression.

    Raises:
        PolicyConfigurationError: If the expression does not parse
    """
    if not source or not source.strip():
        raise PolicyConfigurationError("Rule expression must not be empty")

    rule = CompiledRule(source, RuleParser(source).parse())
    logger.debug(f"Compiled rule expression: {source}")
    return rule

