"""
The core minilisp interpreter: a tree-walking Evaluator over the AST.
"""
import os
import sys
from typing import Any, Dict, List, Optional, Sequence

from minilisp.lisp_datatypes import (
    Node, NodeKind, Token, TokenKind, Symbol, Environment, Lambda,
    LispError, EvalError, UnboundSymbolError, NotCallableError, ArityOrTypeError,
)
from minilisp.lisp_lexer import classify

# Keyword re-inserted when a special-form node is quoted back into data.
QUOTED_FORM_HEADS = {
    NodeKind.LAMBDA: "lambda",
    NodeKind.IF: "if",
    NodeKind.COND: "cond",
    NodeKind.LET: "let",
    NodeKind.SETQ: "setq",
    NodeKind.QUOTE: "quote",
}


def builtin_name(py_name: str) -> str:
    """Maps a StdLib method name to its binding: `_null_q` -> `null?`."""
    name = py_name.lstrip("_").replace("_", "-")
    if name.endswith("-q"):
        name = name[:-2] + "?"
    return name


def truthy(value: Any) -> bool:
    """nil, false and the empty list are false; everything else, 0 included, is true."""
    if value is None or value is False:
        return False
    if isinstance(value, list) and not value:
        return False
    return True


def quote_node(node: Node) -> Any:
    """Converts a subtree into data without evaluating any of it."""
    match node.kind:
        case NodeKind.NUMBER:
            return float(node.value)
        case NodeKind.STRING:
            return node.value
        case NodeKind.SYMBOL | NodeKind.KEYWORD | NodeKind.OPERATOR:
            return Symbol(node.value)
        case NodeKind.NIL:
            return None
    items = [quote_node(child) for child in node.children]
    head = QUOTED_FORM_HEADS.get(node.kind)
    if head is not None:
        items.insert(0, Symbol(head))
    return items


def _escape_string(text: str) -> str:
    return '"' + text.replace("\\", "\\\\").replace('"', '\\"') + '"'


def value_to_tokens(value: Any, out: Optional[List[Token]] = None) -> List[Token]:
    """Renders a data value back into the tokens that would read as it."""
    if out is None:
        out = []
    match value:
        case None | False:
            out.append(Token(TokenKind.OPEN_PAREN, "("))
            out.append(Token(TokenKind.CLOSE_PAREN, ")"))
        case True:
            out.append(Token(TokenKind.SYMBOL, "t"))
        case Symbol():
            kind = classify(str(value))
            if kind not in (TokenKind.SYMBOL, TokenKind.RESERVED_WORD, TokenKind.OPERATOR):
                raise ArityOrTypeError(f"cannot evaluate symbol {str(value)!r}")
            out.append(Token(kind, str(value)))
        case str():
            out.append(Token(TokenKind.STRING, _escape_string(value)))
        case int() | float():
            out.append(Token(TokenKind.NUMBER, repr(float(value))))
        case list():
            out.append(Token(TokenKind.OPEN_PAREN, "("))
            for item in value:
                value_to_tokens(item, out)
            out.append(Token(TokenKind.CLOSE_PAREN, ")"))
        case _:
            raise ArityOrTypeError(f"cannot evaluate {type(value).__name__} as code")
    return out


class Evaluator:
    """Walks AST nodes, producing values and mutating the global environment."""

    def __init__(self):
        self.global_env = Environment()
        self.call_stack: List[Dict[str, Any]] = []
        self.current_node: Optional[Node] = None
        from minilisp.lisp_runtime import StdLib
        self.stdlib = StdLib(self)
        self.stdlib.install(self.global_env)

    def _dbg(self, *parts):
        if os.environ.get("LISP_DEBUG"):
            print("[DBG]", *parts, file=sys.stderr)

    def eval(self, node: Node, env: Optional[Environment] = None) -> Any:
        """Public entry point for evaluation. `env` defaults to the global frame."""
        self.current_node = node
        return self._eval(node, env if env is not None else self.global_env)

    def eval_value(self, value: Any, env: Optional[Environment] = None) -> Any:
        """Evaluates a data value (as built by `quote` or `list`) as code."""
        from minilisp.lisp_parser import Parser
        parser = Parser(value_to_tokens(value))
        node = parser.parse_expression()
        return self._eval(node, env if env is not None else self.global_env)

    def _eval(self, node: Node, env: Environment) -> Any:
        match node.kind:
            case NodeKind.NUMBER:
                return float(node.value)
            case NodeKind.STRING:
                return node.value
            case NodeKind.NIL:
                return None
            case NodeKind.SYMBOL | NodeKind.KEYWORD | NodeKind.OPERATOR:
                return self._lookup(node, env)
            case NodeKind.LIST:
                if not node.children:
                    return []
                return self._apply(node, env)
            case NodeKind.PROGRAM:
                return self._eval_body(node.children, env)
            case NodeKind.QUOTE:
                return quote_node(node.children[0])
            case NodeKind.DEFINE:
                return self._eval_define(node, env)
            case NodeKind.LAMBDA:
                params_node, *body = node.children
                return Lambda([p.value for p in params_node.children], body, env)
            case NodeKind.IF:
                return self._eval_if(node, env)
            case NodeKind.COND:
                return self._eval_cond(node, env)
            case NodeKind.LET:
                return self._eval_let(node, env)
            case NodeKind.SETQ:
                return self._eval_setq(node, env)
            case _:
                raise EvalError(f"cannot evaluate a {node.kind.value} node here", node.offset)

    def _eval_body(self, body: Sequence[Node], env: Environment) -> Any:
        result = None
        for expr in body:
            result = self._eval(expr, env)
        return result

    def _lookup(self, node: Node, env: Environment) -> Any:
        name = node.value
        owner = env.find_owner(name)
        if owner is None and env.root is not self.global_env:
            owner = self.global_env.find_owner(name)
        if owner is None:
            raise UnboundSymbolError(name, node.offset)
        return owner.bindings[name]

    # --- special forms ---

    def _eval_define(self, node: Node, env: Environment) -> Symbol:
        keyword, name_node, *rest = node.children
        name = name_node.value
        if keyword.value == "defun":
            params_node, *body = rest
            value = Lambda([p.value for p in params_node.children], body, env, name=name)
        else:
            value = self._eval(rest[0], env)
            if isinstance(value, Lambda) and value.name is None:
                value.name = name
        self.global_env.define(name, value)
        self._dbg(keyword.value, name, type(value).__name__)
        return Symbol(name)

    def _eval_if(self, node: Node, env: Environment) -> Any:
        test, then, *otherwise = node.children
        if truthy(self._eval(test, env)):
            return self._eval(then, env)
        if otherwise:
            return self._eval(otherwise[0], env)
        return None

    def _eval_cond(self, node: Node, env: Environment) -> Any:
        for clause in node.children:
            test, *body = clause.children
            value = self._eval(test, env)
            if truthy(value):
                if not body:
                    return value
                return self._eval_body(body, env)
        return None

    def _eval_let(self, node: Node, env: Environment) -> Any:
        bindings_node, *body = node.children
        # Every value sees the outer env only; no binding sees its siblings.
        values = {}
        for binding in bindings_node.children:
            name_node, value_node = binding.children
            values[name_node.value] = self._eval(value_node, env)
        frame = Environment(parent=env, bindings=values)
        return self._eval_body(body, frame)

    def _eval_setq(self, node: Node, env: Environment) -> Any:
        name_node, value_node = node.children
        value = self._eval(value_node, env)
        if name_node.value in env:
            env.set(name_node.value, value)
        else:
            self.global_env.define(name_node.value, value)
        return value

    # --- application ---

    def _apply(self, node: Node, env: Environment) -> Any:
        head, *arg_nodes = node.children
        func = self._eval(head, env)
        if getattr(func, "_lisp_special", False):
            # Special builtins decide themselves which arguments get evaluated.
            return self.call(func, arg_nodes, node, env=env)
        args = [self._eval(arg, env) for arg in arg_nodes]
        return self.call(func, args, node)

    def _push_frame(self, name, func, args, call_site: Optional[Node]):
        self.call_stack.append({
            'name': name,
            'func': func,
            'args': args,
            'call_site': call_site.offset if call_site is not None else None,
        })

    def _pop_frame(self):
        if self.call_stack:
            self.call_stack.pop()

    @staticmethod
    def callable_name(func: Any) -> str:
        if isinstance(func, Lambda):
            return func.name or "lambda"
        return builtin_name(getattr(func, "__name__", "builtin"))

    def call(self, func: Any, args: List[Any], call_site: Optional[Node] = None, env: Optional[Environment] = None) -> Any:
        """Calls a Lambda or a builtin with already-evaluated arguments.

        Special builtins receive unevaluated argument nodes plus `env`.
        """
        offset = call_site.offset if call_site is not None and call_site.offset >= 0 else None
        if not isinstance(func, Lambda) and not callable(func):
            raise NotCallableError(func, offset)
        name = self.callable_name(func)
        self._dbg("Evaluator.call", name, "argc", len(args))
        self._push_frame(name, func, args, call_site)
        try:
            if isinstance(func, Lambda):
                return self._call_lambda(func, args)
            kwargs = {'env': env if env is not None else self.global_env} if getattr(func, "_lisp_special", False) else {}
            try:
                return func(*args, **kwargs)
            except TypeError as e:
                raise ArityOrTypeError(f"invalid arguments to ({name})", offset) from e
        except LispError as e:
            if e.offset is None:
                e.offset = offset
            if e.stacktrace is None:
                e.stacktrace = [(f['name'], list(f['args'])) for f in self.call_stack]
            raise
        finally:
            self._pop_frame()

    def _call_lambda(self, func: Lambda, args: List[Any]) -> Any:
        if len(args) != func.arity:
            raise ArityOrTypeError(
                f"({func.name or 'lambda'}) expects {func.arity} argument(s), got {len(args)}")
        frame = Environment(parent=func.closure, bindings=dict(zip(func.params, args)))
        self._dbg("Call-frame bindings", list(frame.keys()))
        return self._eval_body(func.body, frame)


_default_evaluator: Optional[Evaluator] = None


def evaluate(node: Node, env: Optional[Environment] = None) -> Any:
    """Evaluates `node` with the process-wide default Evaluator."""
    global _default_evaluator
    if _default_evaluator is None:
        _default_evaluator = Evaluator()
    return _default_evaluator.eval(node, env)
