"""
Defines the core data types for the minilisp interpreter.

This module provides the token and AST node types shared by the lexer and
parser, the runtime types the evaluator produces (symbols, closures,
environments), and the error taxonomy raised by every phase.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

# =================================================================
# Errors
# =================================================================

class LispError(Exception):
    """Base class for every error raised by the interpreter.

    `offset` is a character index into the source when known. `stacktrace`
    is filled by the evaluator with the (name, args) call frames active
    when the error was raised.
    """
    stacktrace: Optional[List[Tuple[str, List[Any]]]] = None

    def __init__(self, message: str, offset: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.offset = offset if offset is not None and offset >= 0 else None


class LexError(LispError):
    """No token pattern matches at the current scan position."""


class ParseError(LispError):
    """The token sequence violates the grammar."""


class EvalError(LispError):
    """Base class for errors raised while evaluating an AST."""


class UnboundSymbolError(EvalError):
    def __init__(self, name: str, offset: Optional[int] = None):
        super().__init__(f"unbound symbol '{name}'", offset)
        self.name = name


class NotCallableError(EvalError):
    def __init__(self, value: Any, offset: Optional[int] = None):
        from minilisp.lisp_printer import Printer
        super().__init__(f"not callable: {Printer().pformat(value)}", offset)
        self.value = value


class DivisionByZeroError(EvalError):
    pass


class NilAccessError(EvalError):
    pass


class ArityOrTypeError(EvalError):
    pass


# =================================================================
# Tokens
# =================================================================

class TokenKind(Enum):
    OPEN_PAREN = "OpenParen"
    CLOSE_PAREN = "CloseParen"
    NUMBER = "Number"
    STRING = "String"
    SYMBOL = "Symbol"
    RESERVED_WORD = "ReservedWord"
    OPERATOR = "Operator"


@dataclass(frozen=True)
class Token:
    """A lexeme tagged with its kind. `offset` is where it starts in the source."""
    kind: TokenKind
    lexeme: str
    offset: int = field(default=-1, compare=False)

    def __repr__(self) -> str:
        return f"Token({self.kind.value}, {self.lexeme!r})"


# =================================================================
# AST Nodes
# =================================================================

class NodeKind(Enum):
    PROGRAM = "Program"
    LIST = "List"
    DEFINE = "Define"
    LAMBDA = "Lambda"
    IF = "If"
    COND = "Cond"
    CLAUSE = "Clause"
    LET = "Let"
    BINDINGS = "Bindings"
    BINDING = "Binding"
    SETQ = "Setq"
    QUOTE = "Quote"
    PARAMS = "Params"
    SYMBOL = "Symbol"
    KEYWORD = "Keyword"
    NUMBER = "Number"
    STRING = "String"
    OPERATOR = "Operator"
    NIL = "Nil"


LEAF_KINDS = frozenset({
    NodeKind.SYMBOL, NodeKind.KEYWORD, NodeKind.NUMBER,
    NodeKind.STRING, NodeKind.OPERATOR, NodeKind.NIL,
})


@dataclass(frozen=True)
class Node:
    """An immutable AST node.

    Leaf kinds carry their literal text in `value` and never have children.
    Structural kinds are defined entirely by `children` and carry no value.
    """
    kind: NodeKind
    value: Optional[str] = None
    children: Tuple['Node', ...] = ()
    offset: int = field(default=-1, compare=False)

    def __post_init__(self):
        if not isinstance(self.children, tuple):
            object.__setattr__(self, "children", tuple(self.children))
        if self.kind in LEAF_KINDS:
            if self.children:
                raise ValueError(f"{self.kind.value} node cannot have children")
        elif self.value is not None:
            raise ValueError(f"{self.kind.value} node cannot carry a value")

    @property
    def is_leaf(self) -> bool:
        return self.kind in LEAF_KINDS

    def __repr__(self) -> str:
        if self.is_leaf:
            return f"Node<{self.kind.value} {self.value!r}>"
        return f"Node<{self.kind.value} {list(self.children)!r}>"


# =================================================================
# Runtime Types
# =================================================================

class Symbol(str):
    """A symbol value, as produced by `quote`.

    Distinct from a text value: a Symbol only equals another Symbol.
    """
    def __eq__(self, other):
        return isinstance(other, Symbol) and str.__eq__(self, other)

    def __ne__(self, other):
        return not self.__eq__(other)

    __hash__ = str.__hash__

    def __repr__(self) -> str:
        return f"Symbol({str(self)!r})"


class Environment:
    """A frame of bindings linked to its enclosing frame.

    Lookup walks self -> parent -> ... -> global. The global frame is the one
    with no parent.
    """
    def __init__(self, parent: Optional['Environment'] = None, bindings: Optional[Dict[str, Any]] = None):
        self.parent = parent
        self.bindings: Dict[str, Any] = dict(bindings or {})

    def find_owner(self, name: str) -> Optional['Environment']:
        """Finds the frame in the chain that binds `name`."""
        env = self
        while env is not None:
            if name in env.bindings:
                return env
            env = env.parent
        return None

    def lookup(self, name: str) -> Any:
        owner = self.find_owner(name)
        if owner is None:
            raise KeyError(name)
        return owner.bindings[name]

    def define(self, name: str, value: Any):
        """Binds `name` in this frame, shadowing any outer binding."""
        self.bindings[name] = value

    def set(self, name: str, value: Any):
        """Updates `name` in the frame that owns it, or binds it in the root frame."""
        (self.find_owner(name) or self.root).bindings[name] = value

    @property
    def root(self) -> 'Environment':
        env = self
        while env.parent is not None:
            env = env.parent
        return env

    @property
    def is_global(self) -> bool:
        return self.parent is None

    def __contains__(self, name: str) -> bool:
        return self.find_owner(name) is not None

    def __getitem__(self, name: str) -> Any:
        return self.lookup(name)

    def __setitem__(self, name: str, value: Any):
        self.define(name, value)

    def keys(self):
        """Returns a view of keys in this frame only."""
        return self.bindings.keys()

    def __repr__(self) -> str:
        keys = ', '.join(self.bindings.keys())
        parent_id = f", parent=#{id(self.parent)}" if self.parent else ""
        return f"<Environment bindings=[{keys}]{parent_id}>"


class Lambda:
    """A user-defined function: parameters, body and the frame it was built in.

    The frame is held by reference, so later mutations of the enclosing
    bindings are visible to the body.
    """
    def __init__(self, params: List[str], body: Tuple[Node, ...], closure: Environment, name: Optional[str] = None):
        self.params = list(params)
        self.body = tuple(body)
        self.closure = closure
        self.name = name

    @property
    def arity(self) -> int:
        return len(self.params)

    def __repr__(self) -> str:
        return f"<Lambda {self.name or 'anonymous'} ({' '.join(self.params)})>"

    def __eq__(self, other):
        if not isinstance(other, Lambda):
            return NotImplemented
        # NOTE: closure comparison is intentionally omitted.
        return self.params == other.params and self.body == other.body

    __hash__ = object.__hash__
