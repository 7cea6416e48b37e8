"""Tokenizer for the decision expression language."""

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from rotalabs_decision.core.errors import ExpressionSyntaxError


class TokenType(str, Enum):
    NUMBER = "number"
    STRING = "string"
    TEMPLATE = "template"
    IDENTIFIER = "identifier"
    KEYWORD = "keyword"
    OPERATOR = "operator"
    PUNCT = "punct"
    EOF = "eof"


KEYWORDS = frozenset({"true", "false", "null", "and", "or", "not", "in"})

# Longest first so that '..' wins over '.', '<=' over '<', and so on.
OPERATORS = (
    "??", "..", "==", "!=", "<=", ">=", "&&", "||",
    "+", "-", "*", "/", "%", "^", "<", ">", "!", "?", ":", ".",
)

PUNCTUATION = frozenset("()[]{},")

# ASCII only; str.isdigit() also accepts superscripts and other scripts.
DIGITS = frozenset("0123456789")

_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "\\": "\\", "'": "'", '"': '"', "`": "`", "$": "$"}


@dataclass(frozen=True)
class Token:
    """A lexical token.

    For TEMPLATE tokens ``value`` is the list of parts, where each part is
    either a literal string or an ``(expression_source, offset)`` tuple.
    """

    type: TokenType
    value: object
    position: int

    def is_op(self, *ops: str) -> bool:
        return self.type in (TokenType.OPERATOR, TokenType.KEYWORD) and self.value in ops

    def is_punct(self, *chars: str) -> bool:
        return self.type == TokenType.PUNCT and self.value in chars


class Lexer:
    """Converts expression text into a list of tokens."""

    def __init__(self, source: str):
        self.source = source
        self.pos = 0
        self.length = len(source)

    def error(self, message: str, position: Optional[int] = None) -> ExpressionSyntaxError:
        pos = self.pos if position is None else position
        return ExpressionSyntaxError(f"{message} at position {pos}", expression=self.source, position=pos)

    def tokenize(self) -> List[Token]:
        tokens: List[Token] = []
        while True:
            self._skip_whitespace()
            if self.pos >= self.length:
                tokens.append(Token(TokenType.EOF, None, self.pos))
                return tokens
            tokens.append(self._next_token())

    def _skip_whitespace(self) -> None:
        while self.pos < self.length and self.source[self.pos].isspace():
            self.pos += 1

    def _next_token(self) -> Token:
        ch = self.source[self.pos]
        start = self.pos

        if ch in DIGITS:
            return self._read_number()
        if ch in "'\"":
            return Token(TokenType.STRING, self._read_string(ch), start)
        if ch == "`":
            return self._read_template()
        if ch.isalpha() or ch in "_$#":
            return self._read_identifier()
        if ch in PUNCTUATION:
            self.pos += 1
            return Token(TokenType.PUNCT, ch, start)

        for op in OPERATORS:
            if self.source.startswith(op, self.pos):
                self.pos += len(op)
                return Token(TokenType.OPERATOR, op, start)

        raise self.error(f"Unexpected character {ch!r}")

    def _read_number(self) -> Token:
        start = self.pos
        while self.pos < self.length and (self.source[self.pos] in DIGITS or self.source[self.pos] == "_"):
            self.pos += 1

        is_float = False
        # A '.' followed by a digit is a fraction; '..' is the range operator.
        if (
            self.pos + 1 < self.length
            and self.source[self.pos] == "."
            and self.source[self.pos + 1] in DIGITS
        ):
            is_float = True
            self.pos += 1
            while self.pos < self.length and (self.source[self.pos] in DIGITS or self.source[self.pos] == "_"):
                self.pos += 1

        if self.pos < self.length and self.source[self.pos] in "eE":
            look = self.pos + 1
            if look < self.length and self.source[look] in "+-":
                look += 1
            if look < self.length and self.source[look] in DIGITS:
                is_float = True
                self.pos = look
                while self.pos < self.length and self.source[self.pos] in DIGITS:
                    self.pos += 1

        text = self.source[start:self.pos].replace("_", "")
        if text.endswith(".") or not text:
            raise self.error("Malformed number", start)
        try:
            value = float(text) if is_float else int(text)
        except ValueError:
            raise self.error("Malformed number", start)
        return Token(TokenType.NUMBER, value, start)

    def _read_escape(self) -> str:
        # Called with self.pos on the backslash.
        if self.pos + 1 >= self.length:
            raise self.error("Unterminated escape sequence")
        esc = self.source[self.pos + 1]
        self.pos += 2
        return _ESCAPES.get(esc, esc)

    def _read_string(self, quote: str) -> str:
        start = self.pos
        self.pos += 1
        chars = []
        while self.pos < self.length:
            ch = self.source[self.pos]
            if ch == "\\":
                chars.append(self._read_escape())
                continue
            if ch == quote:
                self.pos += 1
                return "".join(chars)
            chars.append(ch)
            self.pos += 1
        raise self.error("Unterminated string literal", start)

    def _read_template(self) -> Token:
        start = self.pos
        self.pos += 1
        parts: list = []
        chars: List[str] = []
        while self.pos < self.length:
            ch = self.source[self.pos]
            if ch == "\\":
                chars.append(self._read_escape())
                continue
            if ch == "`":
                self.pos += 1
                if chars:
                    parts.append("".join(chars))
                return Token(TokenType.TEMPLATE, parts, start)
            if ch == "$" and self.source.startswith("${", self.pos):
                if chars:
                    parts.append("".join(chars))
                    chars = []
                parts.append(self._read_interpolation())
                continue
            chars.append(ch)
            self.pos += 1
        raise self.error("Unterminated template literal", start)

    def _read_interpolation(self) -> tuple:
        # self.pos is on '$' of '${'
        self.pos += 2
        begin = self.pos
        depth = 1
        while self.pos < self.length:
            ch = self.source[self.pos]
            if ch in "'\"":
                self._read_string(ch)
                continue
            if ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    inner = self.source[begin:self.pos]
                    self.pos += 1
                    if not inner.strip():
                        raise self.error("Empty template interpolation", begin)
                    return (inner, begin)
            self.pos += 1
        raise self.error("Unterminated template interpolation", begin)

    def _read_identifier(self) -> Token:
        start = self.pos
        ch = self.source[self.pos]
        if ch in "$#":
            self.pos += 1
            return Token(TokenType.IDENTIFIER, ch, start)
        while self.pos < self.length and (self.source[self.pos].isalnum() or self.source[self.pos] == "_"):
            self.pos += 1
        word = self.source[start:self.pos]
        if word in KEYWORDS:
            return Token(TokenType.KEYWORD, word, start)
        return Token(TokenType.IDENTIFIER, word, start)


def tokenize(source: str) -> List[Token]:
    """Tokenize expression text."""
    return Lexer(source).tokenize()
