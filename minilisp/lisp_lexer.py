"""
Turns source text into the token sequence consumed by the parser.
"""
import re
from typing import List, NamedTuple, Optional

from minilisp.lisp_datatypes import Token, TokenKind, LexError

RESERVED_WORDS = frozenset({
    "defun", "define", "lambda", "if", "cond", "let", "setq", "quote",
    "progn", "loop", "return", "car", "cdr", "cons", "list", "eval",
})

# Order matters: the first pattern that matches at a position wins.
# A None kind marks a span that is scanned but never emitted.
TOKEN_PATTERNS = [
    (re.compile(r"\("), TokenKind.OPEN_PAREN),
    (re.compile(r"\)"), TokenKind.CLOSE_PAREN),
    (re.compile(r"[-+]?\d+(?:\.\d+)?"), TokenKind.NUMBER),
    (re.compile(r'"[^"\\]*(?:\\.[^"\\]*)*"', re.S), TokenKind.STRING),
    (re.compile(r"[A-Za-z?!*-][A-Za-z0-9?!*-]*"), TokenKind.SYMBOL),
    (re.compile(r"<=|>=|[-+*/=<>]"), TokenKind.OPERATOR),
    (re.compile(r";[^\n]*"), None),
    (re.compile(r"\s+"), None),
]


class ParenCheck(NamedTuple):
    balanced: bool
    offset: int


def classify(lexeme: str) -> Optional[TokenKind]:
    """Returns the kind `lexeme` would be tokenized as, or None when it is
    not exactly one token."""
    for pattern, kind in TOKEN_PATTERNS:
        m = pattern.fullmatch(lexeme)
        if m:
            if kind is TokenKind.SYMBOL and lexeme in RESERVED_WORDS:
                return TokenKind.RESERVED_WORD
            return kind
    return None


def tokenize(source: str) -> List[Token]:
    """Splits `source` into tokens, dropping comments and whitespace."""
    tokens: List[Token] = []
    pos = 0
    end = len(source)
    while pos < end:
        for pattern, kind in TOKEN_PATTERNS:
            m = pattern.match(source, pos)
            if m is None:
                continue
            text = m.group()
            if kind is TokenKind.SYMBOL and text in RESERVED_WORDS:
                kind = TokenKind.RESERVED_WORD
            if kind is not None:
                tokens.append(Token(kind, text, pos))
            pos = m.end()
            break
        else:
            snippet = source[pos:pos + 10]
            raise LexError(f"unexpected character {source[pos]!r} at offset {pos} (near {snippet!r})", pos)
    return tokens


def check_parentheses(source: str) -> ParenCheck:
    """Counts parentheses without tokenizing.

    Returns (False, i) for the first ')' that closes nothing. When every ')'
    matches but some '(' is never closed, the offset is len(source): the scan
    cannot tell which '(' was meant to be closed.
    """
    depth = 0
    for i, ch in enumerate(source):
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth < 0:
                return ParenCheck(False, i)
    if depth != 0:
        return ParenCheck(False, len(source))
    return ParenCheck(True, -1)
