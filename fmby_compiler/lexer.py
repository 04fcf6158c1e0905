"""
Lexer / Tokenizer for the FMBY compiler.

Converts FMBY source text into a flat stream of tokens for the code
generator. Handles identifiers, digit-run numbers, string and character
literals, bracketed import paths, multi-character operators and the
structural punctuation the generator keys on.

Includes the source cleaner that runs before tokenizing: it strips line
comments and collapses whitespace so the lexer only ever sees one dense
line of code.
"""

from __future__ import annotations
import enum
import logging
import re
from dataclasses import dataclass
from typing import Dict, List

logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────
# Token types
# ──────────────────────────────────────────────

class TokenType(enum.Enum):
    # Literals
    NUMBER = "NUMBER"
    CHAR_LITERAL = "CHAR_LITERAL"
    STRING_LITERAL = "STRING_LITERAL"

    # Names, keywords and import paths
    IDENT = "IDENT"

    # Any operator, the text says which one
    OPERATION = "OPERATION"

    # Unrecognized single character
    SYMBOL = "SYMBOL"

    # Punctuation
    LPAREN = "("
    RPAREN = ")"
    LBRACE = "{"
    RBRACE = "}"
    LBRACKET = "["
    RBRACKET = "]"
    SEMI = ";"


# ──────────────────────────────────────────────
# Token data class
# ──────────────────────────────────────────────

@dataclass(frozen=True)
class Token:
    type: TokenType
    value: str
    pos: int = 0

    def __repr__(self):
        return f"Token({self.type.name}, {self.value!r}, @{self.pos})"


# ──────────────────────────────────────────────
# Operator tables
# ──────────────────────────────────────────────

STRUCTURAL: Dict[str, TokenType] = {
    "(": TokenType.LPAREN,
    ")": TokenType.RPAREN,
    "{": TokenType.LBRACE,
    "}": TokenType.RBRACE,
    "[": TokenType.LBRACKET,
    "]": TokenType.RBRACKET,
    ";": TokenType.SEMI,
}

# Operator start char -> characters that may follow it to form a
# two-character operator. '<' and '!' are handled separately.
OPERATOR_CONTINUATIONS: Dict[str, str] = {
    ">": "=",
    "-": "=>",
    "+": "=",
    "*": "=",
    "/": "=",
    "=": "=",
    "&": "&",
    "|": "|",
    ":": "=",
}

OPERATORS = frozenset({
    "+", "-", "*", "/", "=", "==", "!=", "<", ">", "<=", ">=",
    "&&", "||", "+=", "-=", "*=", "/=", "->", "!->", ":=", "&", "|", "!",
})

# Characters allowed between the brackets of an import path like <std/io.fm>
_INCLUDE_CHARS = re.compile(r"[A-Za-z0-9_./\-]")


# ──────────────────────────────────────────────
# Source cleaner
# ──────────────────────────────────────────────

class SourceCleaner:
    """Strip // comments and squeeze whitespace out of FMBY source."""

    _WHITESPACE = re.compile(r"\s+")
    _TIGHTEN = (("; ", ";"), ("{ ", "{"), (" }", "}"), (" )", ")"))

    def __init__(self, source: str):
        self.source = source

    def process(self) -> str:
        lines: List[str] = []
        for line in self.source.split("\n"):
            cut = line.find("//")
            lines.append(line if cut < 0 else line[:cut])

        code = self._WHITESPACE.sub(" ", "\n".join(lines))
        for before, after in self._TIGHTEN:
            code = code.replace(before, after)
        return code


def clean_code(source: str) -> str:
    return SourceCleaner(source).process()


# ──────────────────────────────────────────────
# Lexer
# ──────────────────────────────────────────────

class LexerError(Exception):
    """Malformed input: the lexer would have to read past the end of the text."""

    def __init__(self, message: str, pos: int):
        self.pos = pos
        super().__init__(f"Lexer error at offset {pos}: {message}")


class Lexer:
    """Tokenizes cleaned FMBY source into a list of Tokens."""

    def __init__(self, source: str, clean: bool = True):
        self.source = clean_code(source) if clean else source
        self.pos = 0
        self.tokens: List[Token] = []

    def _peek(self, offset: int = 0) -> str:
        """Character at pos+offset, or '' past the end of input."""
        i = self.pos + offset
        return self.source[i] if 0 <= i < len(self.source) else ""

    def _add(self, ttype: TokenType, value: str, pos: int):
        self.tokens.append(Token(ttype, value, pos))

    def _read_string_literal(self):
        start = self.pos
        self.pos += 1  # opening "
        begin = self.pos
        while self.pos < len(self.source):
            if self.source[self.pos] == '"' and self.source[self.pos - 1] != "\\":
                break
            self.pos += 1
        else:
            raise LexerError("Unterminated string literal", start)
        self._add(TokenType.STRING_LITERAL, self.source[begin:self.pos], start)
        self.pos += 1  # closing "

    def _read_char_literal(self):
        ch = self._peek(1)
        if not ch:
            raise LexerError("Unterminated character literal", self.pos)
        self._add(TokenType.CHAR_LITERAL, ch, self.pos)
        self.pos += 2

    def _read_include_path(self) -> bool:
        """Try to read <path>. Leaves pos untouched and returns False on failure."""
        end = self.pos + 1
        while end < len(self.source) and _INCLUDE_CHARS.match(self.source[end]):
            end += 1
        if end < len(self.source) and self.source[end] == ">" and end > self.pos + 1:
            self._add(TokenType.IDENT, self.source[self.pos:end + 1], self.pos)
            self.pos = end + 1
            return True
        return False

    def _read_operator(self, ch: str):
        start = self.pos
        nxt = self._peek(1)
        if not nxt:
            raise LexerError(f"Operator {ch!r} at end of input", start)

        if ch == "!":
            if nxt == "-":
                after = self._peek(2)
                if not after:
                    raise LexerError("Incomplete '!->' at end of input", start)
                if after == ">":
                    self._add(TokenType.OPERATION, "!->", start)
                    self.pos += 3
                    return
            if nxt == "=":
                self._add(TokenType.OPERATION, "!=", start)
                self.pos += 2
                return
            self._add(TokenType.OPERATION, "!", start)
            self.pos += 1
            return

        if ch == "<":
            continuations = "="
        else:
            continuations = OPERATOR_CONTINUATIONS[ch]

        if nxt in continuations:
            self._add(TokenType.OPERATION, ch + nxt, start)
            self.pos += 2
        elif ch == ":":
            self._add(TokenType.SYMBOL, ch, start)
            self.pos += 1
        else:
            self._add(TokenType.OPERATION, ch, start)
            self.pos += 1

    def _read_run(self, ttype: TokenType, accept):
        start = self.pos
        while self.pos < len(self.source) and accept(self.source[self.pos]):
            self.pos += 1
        self._add(ttype, self.source[start:self.pos], start)

    def tokenize(self) -> List[Token]:
        """Tokenize the entire source and return a list of tokens."""
        self.tokens = []
        self.pos = 0

        while self.pos < len(self.source):
            ch = self.source[self.pos]

            if ch in STRUCTURAL:
                self._add(STRUCTURAL[ch], ch, self.pos)
                self.pos += 1
                continue

            if ch == '"':
                self._read_string_literal()
                continue

            if ch == "'":
                self._read_char_literal()
                continue

            if ch == "<" and self._read_include_path():
                continue

            if ch == "<" or ch == "!" or ch in OPERATOR_CONTINUATIONS:
                self._read_operator(ch)
                continue

            if ch.isspace():
                self.pos += 1
                continue

            if ch.isalpha() or ch == "_":
                self._read_run(TokenType.IDENT, lambda c: c.isalpha() or c == "_")
                continue

            if ch in "0123456789":
                self._read_run(TokenType.NUMBER, lambda c: c in "0123456789")
                continue

            self._add(TokenType.SYMBOL, ch, self.pos)
            self.pos += 1

        logger.debug(f"Lexed {len(self.tokens)} tokens from {len(self.source)} chars")
        return self.tokens


def tokenize(text: str) -> List[Token]:
    """Tokenize text exactly as given (no comment stripping)."""
    return Lexer(text, clean=False).tokenize()
