"""
Recursive-descent parser: builds the AST from a token sequence.
"""
import re
from typing import List, Sequence

from minilisp.lisp_datatypes import Token, TokenKind, Node, NodeKind, ParseError

__all__ = ["Parser", "parse", "SPECIAL_FORMS"]

SPECIAL_FORMS = frozenset({"defun", "define", "lambda", "if", "cond", "let", "setq", "quote"})

_ESCAPES = {"n": "\n", "t": "\t"}
_ESCAPE_RE = re.compile(r"\\(.)", re.S)


def _unescape(lexeme: str) -> str:
    """Strips the quotes from a string lexeme and decodes backslash escapes."""
    body = lexeme[1:-1]
    return _ESCAPE_RE.sub(lambda m: _ESCAPES.get(m.group(1), m.group(1)), body)


LEAF_KINDS_BY_TOKEN = {
    TokenKind.NUMBER: NodeKind.NUMBER,
    TokenKind.SYMBOL: NodeKind.SYMBOL,
    TokenKind.RESERVED_WORD: NodeKind.KEYWORD,
    TokenKind.OPERATOR: NodeKind.OPERATOR,
}


class Parser:
    def __init__(self, tokens: Sequence[Token]):
        self.tokens = list(tokens)
        self.pos = 0

    # --- token stream ---

    def eof(self) -> bool:
        return self.pos >= len(self.tokens)

    def _end_offset(self) -> int:
        if not self.tokens:
            return 0
        last = self.tokens[-1]
        return last.offset + len(last.lexeme) if last.offset >= 0 else -1

    def peek(self) -> Token:
        if self.eof():
            raise ParseError("unexpected end of input", self._end_offset())
        return self.tokens[self.pos]

    def advance(self) -> Token:
        '''Consume the next token and return it.'''
        tok = self.peek()
        self.pos += 1
        return tok

    def at(self, kind: TokenKind) -> bool:
        '''True when the next token has the given kind. Never raises.'''
        return not self.eof() and self.tokens[self.pos].kind is kind

    def expect(self, kind: TokenKind, what: str) -> Token:
        '''Consume the next token if it has the given kind, otherwise raise.'''
        tok = self.peek()
        if tok.kind is not kind:
            raise ParseError(f"expected {what}, got {tok.lexeme!r}", tok.offset)
        self.pos += 1
        return tok

    # --- grammar ---

    def parse(self) -> Node:
        if not self.tokens:
            return Node(NodeKind.NIL)
        exprs = []
        while not self.eof():
            exprs.append(self.parse_expression())
        return Node(NodeKind.PROGRAM, children=exprs, offset=self.tokens[0].offset)

    def parse_expression(self) -> Node:
        tok = self.advance()
        match tok.kind:
            case TokenKind.OPEN_PAREN:
                return self.parse_list(tok)
            case TokenKind.CLOSE_PAREN:
                self.pos -= 1
                raise ParseError("unexpected closing paren", tok.offset)
            case TokenKind.STRING:
                return Node(NodeKind.STRING, _unescape(tok.lexeme), offset=tok.offset)
            case _:
                return Node(LEAF_KINDS_BY_TOKEN[tok.kind], tok.lexeme, offset=tok.offset)

    def parse_list(self, open_tok: Token) -> Node:
        if self.at(TokenKind.CLOSE_PAREN):
            self.advance()
            return Node(NodeKind.LIST, offset=open_tok.offset)

        head = self.peek()
        if head.kind is TokenKind.RESERVED_WORD and head.lexeme in SPECIAL_FORMS:
            handler = getattr(self, f"_parse_{head.lexeme}")
            self.advance()
            return handler(head)

        items = self._parse_until_close()
        return Node(NodeKind.LIST, children=items, offset=open_tok.offset)

    def _parse_until_close(self) -> List[Node]:
        """Parses expressions up to and including the closing paren."""
        items = []
        while not self.at(TokenKind.CLOSE_PAREN):
            items.append(self.parse_expression())
        self.advance()
        return items

    def _close(self, form: str):
        tok = self.peek()
        if tok.kind is not TokenKind.CLOSE_PAREN:
            raise ParseError(f"expected ')' to close {form}, got {tok.lexeme!r}", tok.offset)
        self.advance()

    def _symbol(self, what: str) -> Node:
        tok = self.expect(TokenKind.SYMBOL, what)
        return Node(NodeKind.SYMBOL, tok.lexeme, offset=tok.offset)

    def _params(self, form: str) -> Node:
        open_tok = self.expect(TokenKind.OPEN_PAREN, f"parameter list for {form}")
        params = []
        seen = set()
        while not self.at(TokenKind.CLOSE_PAREN):
            p = self._symbol("a symbol as parameter")
            if p.value in seen:
                raise ParseError(f"duplicate parameter '{p.value}' in {form}", p.offset)
            seen.add(p.value)
            params.append(p)
        self.advance()
        return Node(NodeKind.PARAMS, children=params, offset=open_tok.offset)

    def _body(self, form: str, at_least_one: bool) -> List[Node]:
        body = self._parse_until_close()
        if at_least_one and not body:
            raise ParseError(f"{form} needs at least one body expression", self.tokens[self.pos - 1].offset)
        return body

    # --- special forms ---

    def _parse_define(self, kw: Token) -> Node:
        keyword = Node(NodeKind.KEYWORD, kw.lexeme, offset=kw.offset)
        name = self._symbol(f"a symbol after {kw.lexeme}")
        if kw.lexeme == "defun":
            params = self._params("defun")
            body = self._body("defun", at_least_one=False)
            return Node(NodeKind.DEFINE, children=[keyword, name, params, *body], offset=kw.offset)
        value = self.parse_expression()
        self._close("define")
        return Node(NodeKind.DEFINE, children=[keyword, name, value], offset=kw.offset)

    _parse_defun = _parse_define

    def _parse_lambda(self, kw: Token) -> Node:
        params = self._params("lambda")
        body = self._body("lambda", at_least_one=True)
        return Node(NodeKind.LAMBDA, children=[params, *body], offset=kw.offset)

    def _parse_if(self, kw: Token) -> Node:
        children = [self.parse_expression(), self.parse_expression()]
        if not self.at(TokenKind.CLOSE_PAREN):
            children.append(self.parse_expression())
        self._close("if")
        return Node(NodeKind.IF, children=children, offset=kw.offset)

    def _parse_cond(self, kw: Token) -> Node:
        clauses = []
        while not self.at(TokenKind.CLOSE_PAREN):
            open_tok = self.expect(TokenKind.OPEN_PAREN, "a cond clause")
            test = self.parse_expression()
            body = self._parse_until_close()
            clauses.append(Node(NodeKind.CLAUSE, children=[test, *body], offset=open_tok.offset))
        self.advance()
        return Node(NodeKind.COND, children=clauses, offset=kw.offset)

    def _parse_let(self, kw: Token) -> Node:
        open_tok = self.expect(TokenKind.OPEN_PAREN, "a binding list for let")
        bindings = []
        while not self.at(TokenKind.CLOSE_PAREN):
            b_open = self.expect(TokenKind.OPEN_PAREN, "a (name value) binding")
            name = self._symbol("a symbol in binding")
            value = self.parse_expression()
            self._close("binding")
            bindings.append(Node(NodeKind.BINDING, children=[name, value], offset=b_open.offset))
        self.advance()
        body = self._body("let", at_least_one=True)
        return Node(NodeKind.LET, children=[Node(NodeKind.BINDINGS, children=bindings, offset=open_tok.offset), *body],
                    offset=kw.offset)

    def _parse_setq(self, kw: Token) -> Node:
        name = self._symbol("a symbol after setq")
        value = self.parse_expression()
        self._close("setq")
        return Node(NodeKind.SETQ, children=[name, value], offset=kw.offset)

    def _parse_quote(self, kw: Token) -> Node:
        quoted = self.parse_expression()
        self._close("quote")
        return Node(NodeKind.QUOTE, children=[quoted], offset=kw.offset)


def parse(tokens: Sequence[Token]) -> Node:
    """Parses a whole token sequence into a Program node (or Nil when empty)."""
    return Parser(tokens).parse()
