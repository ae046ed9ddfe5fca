# lisp_runtime.py

import inspect
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Tuple

from minilisp.lisp_datatypes import (
    Node, Symbol, Environment, LispError,
    ArityOrTypeError, DivisionByZeroError, NilAccessError,
)
from minilisp.lisp_lexer import tokenize
from minilisp.lisp_parser import parse
from minilisp.lisp_interpreter import Evaluator, truthy, builtin_name
from minilisp.lisp_printer import Printer

# ===================================================================
# 1. Builtin helpers
# ===================================================================

# Source spellings bound to the same builtin as the method name.
OPERATOR_ALIASES = {
    '+': 'add', '-': 'sub', '*': 'mul', '/': 'div',
    '=': 'eq', '<': 'lt', '>': 'gt', '<=': 'lte', '>=': 'gte',
}


def special_form(func):
    """Marks a builtin that receives unevaluated argument nodes and `env`."""
    func._lisp_special = True
    return func


def _is_number(x) -> bool:
    return isinstance(x, (int, float)) and not isinstance(x, bool)


def _numbers(name: str, args) -> tuple:
    for a in args:
        if not _is_number(a):
            raise ArityOrTypeError(f"({name}) expects numbers, got {Printer().pformat(a)}")
    return args


def _non_empty(name: str, seq) -> list:
    if seq is None or (isinstance(seq, list) and not seq):
        raise NilAccessError(f"({name}) of an empty list")
    if not isinstance(seq, list):
        raise ArityOrTypeError(f"({name}) expects a list, got {Printer().pformat(seq)}")
    return seq


def _same(a, b) -> bool:
    # Keep 1 and t apart: Python treats True == 1.
    if isinstance(a, bool) or isinstance(b, bool):
        return a is b
    return a == b


def _chain(name: str, relation, args) -> bool:
    if not args:
        raise ArityOrTypeError(f"({name}) expects at least one argument")
    return all(relation(a, b) for a, b in zip(args, args[1:]))


# ===================================================================
# 2. The Standard Library
# ===================================================================
class StdLib:
    """Contains Python implementations for all builtins.

    Every method named `_name` is bound as `name`; underscores become dashes
    and a trailing `-q` becomes `?` (so `_null_q` is `null?`).
    """
    def __init__(self, evaluator: Evaluator):
        self.evaluator = evaluator

    def install(self, env: Environment):
        for name, member in inspect.getmembers(self):
            if name.startswith('_') and not name.startswith('__') and callable(member):
                env.define(builtin_name(name), member)
        for alias, target in OPERATOR_ALIASES.items():
            env.define(alias, env.lookup(target))
        env.define('t', True)
        env.define('nil', None)

    # --- Math ---
    def _add(self, *args):
        return float(sum(_numbers('+', args)))

    def _mul(self, *args):
        result = 1.0
        for x in _numbers('*', args):
            result *= x
        return float(result)

    def _sub(self, *args):
        nums = _numbers('-', args)
        if not nums:
            raise ArityOrTypeError("(-) expects at least one argument")
        if len(nums) == 1:
            return float(-nums[0])
        result = nums[0]
        for x in nums[1:]:
            result -= x
        return float(result)

    def _div(self, *args):
        nums = _numbers('/', args)
        if not nums:
            raise ArityOrTypeError("(/) expects at least one argument")
        if len(nums) == 1:
            result, divisors = 1.0, nums
        else:
            result, divisors = nums[0], nums[1:]
        if any(d == 0 for d in divisors):
            raise DivisionByZeroError("division by zero")
        for d in divisors:
            result /= d
        return float(result)

    # --- Comparison ---
    def _eq(self, *args): return _chain('=', _same, args)
    def _lt(self, *args): return _chain('<', lambda a, b: a < b, _numbers('<', args))
    def _gt(self, *args): return _chain('>', lambda a, b: a > b, _numbers('>', args))
    def _lte(self, *args): return _chain('<=', lambda a, b: a <= b, _numbers('<=', args))
    def _gte(self, *args): return _chain('>=', lambda a, b: a >= b, _numbers('>=', args))

    # --- Lists ---
    def _car(self, seq): return _non_empty('car', seq)[0]
    def _cdr(self, seq): return _non_empty('cdr', seq)[1:]

    def _cons(self, item, seq):
        if seq is None:
            seq = []
        if not isinstance(seq, list):
            raise ArityOrTypeError(f"(cons) expects a list as second argument, got {Printer().pformat(seq)}")
        return [item, *seq]

    def _list(self, *args): return list(args)

    def _length(self, seq):
        if seq is None:
            return 0.0
        if not isinstance(seq, (list, str)):
            raise ArityOrTypeError(f"(length) expects a list or string, got {Printer().pformat(seq)}")
        return float(len(seq))

    # --- Logic ---
    @special_form
    def _and(self, *args: Node, env: Environment):
        result = True
        for node in args:
            result = self.evaluator._eval(node, env)
            if not truthy(result):
                return result
        return result

    @special_form
    def _or(self, *args: Node, env: Environment):
        result = None
        for node in args:
            result = self.evaluator._eval(node, env)
            if truthy(result):
                return result
        return result

    def _not(self, x): return not truthy(x)

    # --- Type predicates ---
    def _null_q(self, x): return x is None or (isinstance(x, list) and not x)
    def _number_q(self, x): return _is_number(x)
    def _symbol_q(self, x): return isinstance(x, Symbol)
    def _list_q(self, x): return x is None or isinstance(x, list)

    # --- Evaluation ---
    def _progn(self, *args):
        return args[-1] if args else None

    def _eval(self, value):
        return self.evaluator.eval_value(value)


# ===================================================================
# 3. Script Execution
# ===================================================================

Token = Dict[str, Any]

@dataclass
class ExecutionResult:
    """The structured result of a script execution."""
    status: Literal['success', 'error']
    value: Any = None
    error_message: Optional[str] = None
    error_token: Optional[Token] = None

    def format_error(self) -> str:
        """Formats an error message with line and column if available."""
        if self.status != 'error':
            return ""
        msg = str(self.error_message or "Unknown error")
        if self.error_token and 'line' in self.error_token:
            line = self.error_token.get('line')
            col = self.error_token.get('col')
            if not msg.startswith("Error on line "):
                col_info = f", col {col}" if col is not None else ""
                return f"Error on line {line}{col_info}: {msg}"
        return msg


class ScriptRunner:
    """Tokenizes, parses, and evaluates minilisp source."""

    _prelude_ast: Optional[Node] = None

    def __init__(self, load_core: bool = True):
        self._initialized = False
        self._load_core = load_core
        self.evaluator = Evaluator()
        self.global_env = self.evaluator.global_env
        self.printer = Printer()

    @staticmethod
    def _line_col(source: str, offset: int) -> Tuple[int, int]:
        line = source.count("\n", 0, offset) + 1
        col = offset - (source.rfind("\n", 0, offset) + 1) + 1
        return line, col

    def _source_context(self, source: str, line: int, col: Optional[int], radius: int = 2) -> str:
        lines = source.splitlines()
        if not line or line < 1 or line > len(lines):
            return ""
        start = max(1, line - radius)
        end = min(len(lines), line + radius)
        width = len(str(end))
        out = []
        for i in range(start, end + 1):
            prefix = ">" if i == line else " "
            ln = str(i).rjust(width)
            out.append(f"{prefix} {ln} | {lines[i - 1]}")
            if i == line and col is not None:
                caret = " " * max(col - 1, 0)
                out.append(f"  {' ' * width} | {caret}^")
        return "\n".join(out)

    def _format_stacktrace(self, frames: Optional[List[Tuple[str, List[Any]]]]) -> str:
        if not frames:
            return ""
        rendered = []
        for name, args in frames:
            parts = [name] + [self.printer.pformat(a) for a in args]
            rendered.append(f"({' '.join(parts)})")
        return "stacktrace: " + " ".join(rendered)

    def _format_error(self, e: LispError, source: str) -> Tuple[str, Optional[Token]]:
        msg = f"{type(e).__name__}: {e.message}"
        token = None
        if e.offset is not None and e.offset <= len(source):
            line, col = self._line_col(source, e.offset)
            token = {'line': line, 'col': col, 'offset': e.offset}
            msg = f"{msg} (line {line}, col {col})"
            context = self._source_context(source, line, col)
            if context:
                msg = f"{msg}\n{context}"
        st = self._format_stacktrace(e.stacktrace)
        if st:
            msg += "\n" + st
        return msg, token

    def _initialize(self):
        """Evaluates prelude.lisp into the global environment once."""
        if self._initialized or not self._load_core:
            self._initialized = True
            return

        # AST is parsed once and cached on the class
        if ScriptRunner._prelude_ast is None:
            prelude_path = Path(__file__).parent / "prelude.lisp"
            source = prelude_path.read_text(encoding="utf-8")
            try:
                # Prelude nodes carry no offsets, so an error inside a library
                # function is located at the script's call into it.
                tokens = [replace(t, offset=-1) for t in tokenize(source)]
                ScriptRunner._prelude_ast = parse(tokens)
            except LispError as e:
                msg, _ = self._format_error(e, source)
                raise RuntimeError(f"Failed to parse prelude.lisp:\n{msg}") from e

        self.evaluator.eval(ScriptRunner._prelude_ast)
        self._initialized = True

    def pformat(self, value: Any) -> str:
        return self.printer.pformat(value)

    def handle_script(self, source_code: str) -> ExecutionResult:
        """The main entry point to execute a script."""
        self.evaluator.call_stack.clear()
        try:
            self._initialize()
            tokens = tokenize(source_code)
            ast = parse(tokens)
            self.evaluator._dbg("handle_script", "tokens", len(tokens), "top-level", len(ast.children))
            value = self.evaluator.eval(ast)
        except LispError as e:
            msg, token = self._format_error(e, source_code)
            return ExecutionResult(status='error', error_message=msg, error_token=token)
        except RecursionError:
            return ExecutionResult(status='error', error_message="InternalError: maximum recursion depth exceeded")
        except Exception as e:
            return ExecutionResult(status='error', error_message=f"InternalError: {e}")
        return ExecutionResult(status='success', value=value)
