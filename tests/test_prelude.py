import pytest

from minilisp.lisp_runtime import ScriptRunner


@pytest.fixture(scope="module")
def runner():
    return ScriptRunner(load_core=True)


def run_lisp(runner, src):
    res = runner.handle_script(src)
    assert res.status == 'success', res.format_error()
    return res.value


@pytest.mark.parametrize("src, expected", [
    ("(abs -3)", 3.0),
    ("(abs 3)", 3.0),
    ("(zero? 0)", True),
    ("(zero? 1)", False),
    ("(max2 1 2)", 2.0),
    ("(min2 1 2)", 1.0),
    ("(append2 (list 1 2) (list 3))", [1.0, 2.0, 3.0]),
    ("(append2 nil (list 3))", [3.0]),
    ("(reverse (list 1 2 3))", [3.0, 2.0, 1.0]),
    ("(reverse (list))", []),
    ("(nth 1 (list 10 20 30))", 20.0),
    ("(map (lambda (x) (* x x)) (list 1 2 3))", [1.0, 4.0, 9.0]),
    ("(map abs (list))", []),
    ("(filter (lambda (x) (> x 1)) (list 1 2 3))", [2.0, 3.0]),
    ("(filter zero? (list 1 0 2 0))", [0.0, 0.0]),
    ("(foldl + 0 (list 1 2 3))", 6.0),
    ("(foldl (lambda (acc x) (cons x acc)) nil (list 1 2))", [2.0, 1.0]),
])
def test_prelude_functions(runner, src, expected):
    assert run_lisp(runner, src) == expected


def test_nth_past_the_end_is_nil_access(runner):
    res = runner.handle_script("(nth 5 (list 1))")
    assert res.status == 'error'
    assert res.error_message.startswith("NilAccessError")
    assert "(nth 5 (1))" in res.error_message
    # Located at the call in the script, not inside the prelude.
    assert res.error_token == {'line': 1, 'col': 1, 'offset': 0}


def test_prelude_functions_compose(runner):
    src = """
    (defun sum (xs) (foldl + 0 xs))
    (sum (map abs (filter (lambda (x) (< x 0)) (list -1 2 -3))))
    """
    assert run_lisp(runner, src) == 4.0


def test_prelude_function_may_be_redefined():
    runner = ScriptRunner(load_core=True)
    run_lisp(runner, "(defun abs (x) 0)")
    assert run_lisp(runner, "(abs -5)") == 0.0


def test_each_runner_loads_its_own_prelude():
    first = ScriptRunner(load_core=True)
    run_lisp(first, "(defun map (f xs) 1)")
    second = ScriptRunner(load_core=True)
    assert run_lisp(second, "(map abs (list -1))") == [1.0]
