import pytest

from minilisp.lisp_lexer import tokenize
from minilisp.lisp_parser import parse
from minilisp.lisp_interpreter import Evaluator, evaluate, truthy, quote_node
from minilisp.lisp_datatypes import (
    Environment, Lambda, Symbol,
    UnboundSymbolError, NotCallableError, DivisionByZeroError,
    NilAccessError, ArityOrTypeError,
)


@pytest.fixture
def evaluator():
    """Returns a new Evaluator for each test."""
    return Evaluator()


def run(evaluator, src: str):
    return evaluator.eval(parse(tokenize(src)))


# --- Literals and lookup ---

def test_addition_returns_float(evaluator):
    result = run(evaluator, "(+ 1 2)")
    assert result == 3.0
    assert isinstance(result, float)


def test_string_literal(evaluator):
    assert run(evaluator, '"hello"') == "hello"


def test_empty_list_is_empty_sequence(evaluator):
    assert run(evaluator, "()") == []


def test_empty_program_is_nil(evaluator):
    assert evaluator.eval(parse([])) is None


def test_define_then_lookup(evaluator):
    assert run(evaluator, "(define x 42)") == Symbol("x")
    assert run(evaluator, "x") == 42.0


def test_unbound_symbol(evaluator):
    with pytest.raises(UnboundSymbolError) as exc:
        run(evaluator, "nowhere")
    assert exc.value.name == "nowhere"
    assert exc.value.offset == 0


def test_undispatched_reserved_word_is_an_ordinary_name(evaluator):
    with pytest.raises(UnboundSymbolError):
        run(evaluator, "(loop 1)")


def test_non_callable_head(evaluator):
    with pytest.raises(NotCallableError):
        run(evaluator, "(1 2)")
    with pytest.raises(NotCallableError):
        run(evaluator, '("f")')


def test_program_returns_last_value(evaluator):
    assert run(evaluator, "1 2 3") == 3.0


# --- if / cond ---

@pytest.mark.parametrize("src, expected", [
    ("(if (> 3 2) 1 0)", 1.0),
    ("(if (> 2 3) 1 0)", 0.0),
    ("(if (> 2 3) 1)", None),
    ("(if 0 1 2)", 1.0),
    ('(if "" 1 2)', 1.0),
    ("(if () 1 2)", 2.0),
    ("(if nil 1 2)", 2.0),
])
def test_if(evaluator, src, expected):
    assert run(evaluator, src) == expected


def test_if_evaluates_only_one_branch(evaluator):
    assert run(evaluator, "(if t 1 (/ 1 0))") == 1.0
    assert run(evaluator, "(if nil (/ 1 0) 2)") == 2.0


def test_cond_takes_first_truthy_clause(evaluator):
    src = """
    (define x 5)
    (cond ((< x 0) (quote negative))
          ((= x 0) (quote zero))
          (t 1 2 (quote positive)))
    """
    assert run(evaluator, src) == Symbol("positive")


def test_cond_short_circuits_remaining_clauses(evaluator):
    assert run(evaluator, "(cond (t 1) ((/ 1 0) 2))") == 1.0


def test_cond_without_match_is_nil(evaluator):
    assert run(evaluator, "(cond (nil 1) (() 2))") is None
    assert run(evaluator, "(cond)") is None


def test_cond_clause_without_body_returns_condition(evaluator):
    assert run(evaluator, "(cond (nil) (5))") == 5.0


# --- quote ---

def test_quote_returns_symbols_without_lookup(evaluator):
    run(evaluator, "(define a 1)")
    result = run(evaluator, "(quote (a b c))")
    assert result == [Symbol("a"), Symbol("b"), Symbol("c")]
    assert all(isinstance(x, Symbol) for x in result)


def test_quote_nested_structures(evaluator):
    assert run(evaluator, '(quote (1 "two" (three) ()))') == [1.0, "two", [Symbol("three")], []]


def test_quote_special_forms_keep_their_keyword(evaluator):
    assert run(evaluator, "(quote (if a b))") == [Symbol("if"), Symbol("a"), Symbol("b")]
    assert run(evaluator, "(quote (let ((x 1)) x))") == [
        Symbol("let"), [[Symbol("x"), 1.0]], Symbol("x")]
    assert run(evaluator, "(quote (defun f (x) x))") == [
        Symbol("defun"), Symbol("f"), [Symbol("x")], Symbol("x")]


def test_quote_node_on_leaf():
    assert quote_node(parse(tokenize("+")).children[0]) == Symbol("+")


# --- functions ---

def test_defun_and_call(evaluator):
    assert run(evaluator, "(defun sq (y) (* y y))") == Symbol("sq")
    assert run(evaluator, "(sq 5)") == 25.0
    assert isinstance(evaluator.global_env.lookup("sq"), Lambda)


def test_defun_body_runs_in_sequence(evaluator):
    src = """
    (define log 0)
    (defun f (x) (setq log x) (+ x 1))
    (f 9)
    """
    assert run(evaluator, src) == 10.0
    assert run(evaluator, "log") == 9.0


def test_defun_with_empty_body_returns_nil(evaluator):
    run(evaluator, "(defun noop ())")
    assert run(evaluator, "(noop)") is None


def test_recursion(evaluator):
    src = """
    (defun fact (n) (if (< n 2) 1 (* n (fact (- n 1)))))
    (fact 5)
    """
    assert run(evaluator, src) == 120.0


def test_each_call_gets_its_own_frame(evaluator):
    src = """
    (defun fib (n) (if (< n 2) n (+ (fib (- n 1)) (fib (- n 2)))))
    (fib 10)
    """
    assert run(evaluator, src) == 55.0


def test_lambda_applied_directly(evaluator):
    assert run(evaluator, "((lambda (x) (* x x)) 4)") == 16.0


def test_define_names_an_anonymous_lambda(evaluator):
    run(evaluator, "(define twice (lambda (x) (* 2 x)))")
    fn = evaluator.global_env.lookup("twice")
    assert fn.name == "twice"
    assert run(evaluator, "(twice 4)") == 8.0


def test_arity_mismatch(evaluator):
    run(evaluator, "(defun f (a b) a)")
    with pytest.raises(ArityOrTypeError):
        run(evaluator, "(f 1)")
    with pytest.raises(ArityOrTypeError):
        run(evaluator, "(f 1 2 3)")


def test_parameters_do_not_leak(evaluator):
    run(evaluator, "(defun f (p) p)")
    run(evaluator, "(f 1)")
    with pytest.raises(UnboundSymbolError):
        run(evaluator, "p")


# --- scoping ---

def test_define_inside_function_is_global(evaluator):
    run(evaluator, "(defun mk () (define inner 7))")
    run(evaluator, "(mk)")
    assert run(evaluator, "inner") == 7.0


def test_closure_captures_defining_frame(evaluator):
    src = """
    (defun make-adder (n) (lambda (x) (+ x n)))
    (define add5 (make-adder 5))
    (add5 10)
    """
    assert run(evaluator, src) == 15.0


def test_closure_sees_later_mutation_of_enclosing_frame(evaluator):
    # Frames are linked by reference, not copied when the closure is built.
    src = """
    (let ((n 1))
      (define get-n (lambda () n))
      (setq n 2)
      (get-n))
    """
    assert run(evaluator, src) == 2.0


def test_function_sees_later_global_redefinition(evaluator):
    src = """
    (define y 1)
    (defun get-y () y)
    (setq y 2)
    (get-y)
    """
    assert run(evaluator, src) == 2.0


def test_let_binds_simultaneously(evaluator):
    with pytest.raises(UnboundSymbolError):
        run(evaluator, "(let ((x 1) (y x)) y)")
    assert run(evaluator, "(define x 10) (let ((x 1) (y x)) (list x y))") == [1.0, 10.0]


def test_let_bindings_are_local(evaluator):
    assert run(evaluator, "(let ((a 1) (b 2)) (+ a b))") == 3.0
    with pytest.raises(UnboundSymbolError):
        run(evaluator, "a")


def test_setq_creates_global(evaluator):
    assert run(evaluator, "(setq z 3)") == 3.0
    assert run(evaluator, "z") == 3.0


def test_setq_updates_innermost_owner(evaluator):
    assert run(evaluator, "(let ((a 1)) (setq a 2) a)") == 2.0
    with pytest.raises(UnboundSymbolError):
        run(evaluator, "a")
    run(evaluator, "(defun f (x) (setq x 5) x)")
    assert run(evaluator, "(f 1)") == 5.0
    with pytest.raises(UnboundSymbolError):
        run(evaluator, "x")


def test_setq_from_function_updates_global(evaluator):
    src = """
    (define counter 0)
    (defun bump () (setq counter (+ counter 1)))
    (bump)
    (bump)
    counter
    """
    assert run(evaluator, src) == 2.0


def test_explicit_local_env_is_searched_before_global():
    env = Environment(bindings={"q": 9.0})
    assert evaluate(parse(tokenize("(+ q 1)")), env) == 10.0


# --- errors ---

def test_division_and_nil_access_errors(evaluator):
    with pytest.raises(DivisionByZeroError):
        run(evaluator, "(/ 1 0)")
    with pytest.raises(NilAccessError):
        run(evaluator, "(car (list))")


def test_earlier_definitions_survive_a_failure(evaluator):
    with pytest.raises(NilAccessError):
        run(evaluator, "(define kept 1) (car (list))")
    assert run(evaluator, "kept") == 1.0


def test_error_carries_call_site_and_stacktrace(evaluator):
    with pytest.raises(DivisionByZeroError) as exc:
        run(evaluator, "(defun f (x) (/ x 0)) (f 1)")
    assert exc.value.offset == 13
    assert exc.value.stacktrace == [("f", [1.0]), ("div", [1.0, 0.0])]
    assert evaluator.call_stack == []


def test_pure_expression_is_idempotent(evaluator):
    run(evaluator, "(define k 4)")
    node = parse(tokenize("(list (+ k 1) (* k k) (quote k))"))
    first = evaluator.eval(node)
    assert evaluator.eval(node) == first == [5.0, 16.0, Symbol("k")]


# --- truthiness ---

@pytest.mark.parametrize("value, expected", [
    (None, False),
    (False, False),
    ([], False),
    (0.0, True),
    ("", True),
    ([None], True),
    (Symbol("nil"), True),
    (True, True),
])
def test_truthy(value, expected):
    assert truthy(value) is expected


def test_global_env_is_per_evaluator():
    a, b = Evaluator(), Evaluator()
    run(a, "(define only-a 1)")
    with pytest.raises(UnboundSymbolError):
        run(b, "only-a")
