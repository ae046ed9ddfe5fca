"""
A pretty-printer for minilisp values and ASTs.
"""
import math

from minilisp.lisp_datatypes import Node, Symbol, Lambda


class Printer:
    """Formats runtime values into readable, source-like strings."""

    def __init__(self, indent_width=2):
        self._indent_char = " " * indent_width
        self._handlers = self._create_handlers()

    def pformat(self, obj, level=0):
        """Public entry point to format an object."""
        handler = self._get_handler(obj)
        return handler(obj, level)

    def _get_handler(self, obj):
        """Dispatcher to find the correct formatting method."""
        obj_type = type(obj)
        if obj_type in self._handlers:
            return self._handlers[obj_type]
        if isinstance(obj, list):
            return self._pformat_list
        if callable(obj):
            return self._pformat_builtin
        # Default to Python's repr for unknown types
        return lambda o, l: repr(o)

    def _create_handlers(self):
        return {
            float: self._pformat_number,
            int: self._pformat_number,
            str: self._pformat_str,
            Symbol: self._pformat_symbol,
            bool: self._pformat_bool,
            type(None): self._pformat_none,
            list: self._pformat_list,
            Lambda: self._pformat_lambda,
            Node: self._pformat_node,
        }

    def _pformat_number(self, obj, level):
        if isinstance(obj, float) and math.isfinite(obj) and obj.is_integer():
            return str(int(obj))
        return repr(obj)

    def _pformat_str(self, obj, level):
        escaped = obj.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n").replace("\t", "\\t")
        return f'"{escaped}"'

    def _pformat_symbol(self, obj, level):
        return str(obj)

    def _pformat_bool(self, obj, level):
        return 't' if obj else 'nil'

    def _pformat_none(self, obj, level):
        return 'nil'

    def _pformat_list(self, obj, level):
        return "(" + " ".join(self.pformat(item, level + 1) for item in obj) + ")"

    def _pformat_lambda(self, obj, level):
        return f"#<lambda {obj.name}>" if obj.name else "#<lambda>"

    def _pformat_builtin(self, obj, level):
        from minilisp.lisp_interpreter import builtin_name
        return f"#<builtin {builtin_name(getattr(obj, '__name__', 'builtin'))}>"

    def _pformat_node(self, obj, level):
        # Render an AST fragment the way it would be written in source.
        from minilisp.lisp_interpreter import quote_node
        return self.pformat(quote_node(obj), level)

    def pformat_ast(self, node: Node, level: int = 0) -> str:
        """Dumps an AST as an indented tree, one node per line."""
        line = f"{self._indent_char * level}{node.kind.name}"
        if node.value is not None:
            line += f": {node.value}"
        lines = [line]
        for child in node.children:
            lines.append(self.pformat_ast(child, level + 1))
        return "\n".join(lines)
