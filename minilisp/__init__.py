from minilisp.lisp_lexer import tokenize, check_parentheses
from minilisp.lisp_parser import parse
from minilisp.lisp_interpreter import Evaluator, evaluate
from minilisp.lisp_runtime import ScriptRunner, ExecutionResult

__all__ = [
    "tokenize", "check_parentheses", "parse", "evaluate",
    "Evaluator", "ScriptRunner", "ExecutionResult",
]
