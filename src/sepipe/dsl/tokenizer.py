"""
Tokenizer - lark-based lexer shared by the substitution engine and the compiler.

Tokens keep exact character offsets into the source, so callers can splice
replacements into the original text without disturbing whitespace, comments
or string literals.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterator, List, Optional, Tuple

from lark import Lark
from lark.exceptions import UnexpectedCharacters, UnexpectedInput

from ..sepipe_exceptions import MalformedBlock


class TokenKind(Enum):
    """Coarse token classes that the core cares about."""
    IDENTIFIER = "identifier"
    LITERAL = "literal"
    PUNCTUATION = "punctuation"


_KIND_BY_TERMINAL = {
    "NAME": TokenKind.IDENTIFIER,
    "NUMBER": TokenKind.LITERAL,
    "STRING": TokenKind.LITERAL,
}

_OPENERS = {"(": ")", "[": "]", "{": "}"}
_CLOSERS = {v: k for k, v in _OPENERS.items()}


@dataclass(frozen=True)
class Token:
    """A lexical token with its position in the source.

    ::: This is-in-layer Domain-Specific-Language-Layer.
    ::: This is a value-object.
    ::: This is stateless.
    """
    kind: TokenKind
    value: str
    start: int
    end: int
    line: int
    column: int
    depth: int = 0  # bracket nesting level the token sits at

    @property
    def is_identifier(self) -> bool:
        return self.kind is TokenKind.IDENTIFIER


@dataclass(frozen=True)
class TokenStream:
    """The tokens of one source string.

    ::: This is-in-layer Domain-Specific-Language-Layer.
    ::: This is a value-object.
    ::: This is stateless.
    """
    source: str
    tokens: Tuple[Token, ...]

    def __iter__(self) -> Iterator[Token]:
        return iter(self.tokens)

    def __len__(self) -> int:
        return len(self.tokens)

    def is_attribute(self, index: int) -> bool:
        """True if the token at index is the name part of `obj.name`."""
        if index == 0:
            return False
        prev = self.tokens[index - 1]
        return prev.kind is TokenKind.PUNCTUATION and prev.value == "."

    def is_call_head(self, index: int) -> bool:
        """True if the token at index is directly followed by `(`."""
        if index + 1 >= len(self.tokens):
            return False
        nxt = self.tokens[index + 1]
        return nxt.kind is TokenKind.PUNCTUATION and nxt.value == "("

    def is_keyword_argument(self, index: int) -> bool:
        """True if the token at index names a keyword argument, as `k` in `f(k=1)`."""
        token = self.tokens[index]
        if not token.is_identifier or token.depth == 0:
            return False
        if index + 1 >= len(self.tokens):
            return False
        nxt = self.tokens[index + 1]
        return nxt.kind is TokenKind.PUNCTUATION and nxt.value == "="

    def identifiers(self) -> List[str]:
        """All identifier token values, in order, with repeats."""
        return [t.value for t in self.tokens if t.is_identifier]


# =============================================================================
# Lexer
# =============================================================================

class Tokenizer:
    """
    Lexer for templated code blocks and engine expression fragments.

    Usage:
        stream = Tokenizer().tokenize("mean(x) + 1")
        for token in stream:
            print(token.kind, token.value)

    ::: This is-in-layer Domain-Specific-Language-Layer.
    ::: This is a lexer.
    ::: This is-in-process Main-Process.
    ::: This is stateless.
    """

    _instance: Optional["Tokenizer"] = None
    _lark: Optional[Lark] = None
    _lock = threading.Lock()

    def __new__(cls) -> "Tokenizer":
        """Singleton pattern for lexer reuse."""
        with cls._lock:
            if cls._instance is None:
                cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        """Load the grammar file once."""
        with Tokenizer._lock:
            if Tokenizer._lark is not None:
                return

            grammar_path = Path(__file__).parent / "tokens.lark"
            if not grammar_path.exists():
                raise FileNotFoundError(f"Grammar file not found: {grammar_path}")

            with open(grammar_path, "r", encoding="utf-8") as f:
                grammar = f.read()

            Tokenizer._lark = Lark(
                grammar,
                start="start",
                parser="lalr",
                lexer="basic",
            )

    def tokenize(self, source: str, check_brackets: bool = True) -> TokenStream:
        """
        Split source into tokens.

        Args:
            source: Code block or expression fragment
            check_brackets: Reject unbalanced (), [] and {}

        Returns:
            TokenStream over source

        Raises:
            MalformedBlock: if source is not a string, contains characters no
                token accepts, or has unbalanced brackets
        """
        if not isinstance(source, str):
            raise MalformedBlock(f"expected str, got {type(source).__name__}")

        tokens = []
        depth = 0
        try:
            for raw in self._lark.lex(source):
                kind = _KIND_BY_TERMINAL.get(raw.type, TokenKind.PUNCTUATION)
                value = str(raw)
                if kind is TokenKind.PUNCTUATION and value in _CLOSERS:
                    depth = max(depth - 1, 0)
                token_depth = depth
                if kind is TokenKind.PUNCTUATION and value in _OPENERS:
                    depth += 1
                tokens.append(Token(
                    kind=kind,
                    value=value,
                    start=raw.start_pos,
                    end=raw.end_pos,
                    line=raw.line,
                    column=raw.column,
                    depth=token_depth,
                ))
        except UnexpectedCharacters as e:
            raise MalformedBlock(
                f"unexpected character {e.char!r}", e.line, e.column
            ) from e
        except UnexpectedInput as e:
            raise MalformedBlock(str(e), getattr(e, "line", None),
                                 getattr(e, "column", None)) from e

        if check_brackets:
            _check_brackets(tokens)
        return TokenStream(source, tuple(tokens))


def _check_brackets(tokens: List[Token]) -> None:
    stack: List[Token] = []
    for token in tokens:
        if token.kind is not TokenKind.PUNCTUATION:
            continue
        if token.value in _OPENERS:
            stack.append(token)
        elif token.value in _CLOSERS:
            if not stack or stack[-1].value != _CLOSERS[token.value]:
                raise MalformedBlock(f"unmatched {token.value!r}", token.line, token.column)
            stack.pop()
    if stack:
        opener = stack[-1]
        raise MalformedBlock(f"unclosed {opener.value!r}", opener.line, opener.column)


def tokenize(source: str, check_brackets: bool = True) -> TokenStream:
    """Tokenize source with the shared lexer."""
    return Tokenizer().tokenize(source, check_brackets)
