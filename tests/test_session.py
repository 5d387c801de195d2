"""
Session Manager Test Suite
==========================

End-to-end tests running source through the session in each mode:
parse, ir and jit. Covers unit rotation, evaluation, error recovery,
the runtime library and configuration.
"""

import operator
import re

import pytest
from kscope.lang import jit
from kscope.lang.ast import ANONYMOUS_FUNCTION_NAME
from kscope.lang.errors import (
    ArityMismatchError,
    BackendError,
    KSyntaxError,
    RedefinitionError,
    UnexpectedTokenError,
    UnknownVariableError,
)
from kscope.lang.session import (
    EventKind,
    Session,
    SessionMode,
    SessionOptions,
)


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def jit_session():
    return Session(SessionOptions(mode=SessionMode.JIT))


@pytest.fixture
def ir_session():
    return Session(SessionOptions(mode=SessionMode.IR))


@pytest.fixture
def parse_session():
    return Session(SessionOptions(mode=SessionMode.PARSE))


def kinds(events) -> list:
    return [e.kind for e in events]


REFERENCE_PRECEDENCE = {"<": 10, "+": 20, "-": 20, "*": 40}
REFERENCE_OPERATORS = {
    "<": lambda a, b: float(a < b),
    "+": operator.add,
    "-": operator.sub,
    "*": operator.mul,
}


def reference_eval(source: str) -> float:
    """Two-stack evaluator for flat binary expressions, all left-associative."""
    values, ops = [], []

    def reduce():
        b, a = values.pop(), values.pop()
        values.append(REFERENCE_OPERATORS[ops.pop()](a, b))

    for token in re.findall(r"\d+(?:\.\d*)?|[-+*<]", source):
        if token in REFERENCE_PRECEDENCE:
            while ops and REFERENCE_PRECEDENCE[ops[-1]] >= REFERENCE_PRECEDENCE[token]:
                reduce()
            ops.append(token)
        else:
            values.append(float(token))
    while ops:
        reduce()
    return values[0]


def record_loads(engine, monkeypatch) -> list:
    """Capture every UnitHandle the engine hands out."""
    handles = []
    load_unit = engine.load_unit

    def recording(unit):
        handle = load_unit(unit)
        handles.append(handle)
        return handle

    monkeypatch.setattr(engine, "load_unit", recording)
    return handles


# =============================================================================
# JIT Evaluation
# =============================================================================

class TestEvaluation:
    """Top-level expressions are compiled, run and reported."""

    def test_precedence(self, jit_session):
        assert jit_session.evaluate("1+2*3") == 7.0

    def test_parentheses(self, jit_session):
        assert jit_session.evaluate("(1+2)*3") == 9.0

    def test_comparison(self, jit_session):
        assert jit_session.evaluate("1 < 2") == 1.0
        assert jit_session.evaluate("2 < 1") == 0.0

    def test_subtraction_left_associative(self, jit_session):
        assert jit_session.evaluate("10-3-2") == 5.0

    def test_identity_function(self, jit_session):
        events = jit_session.run_source("def id(x) x; id(5)")
        assert kinds(events) == [EventKind.DEFINITION, EventKind.EXPRESSION]
        assert events[1].value == 5.0
        assert events[1].message == "Evaluated to 5.0"

    def test_definitions_persist_across_calls(self, jit_session):
        jit_session.run_source("def sq(x) x*x")
        jit_session.run_source("def sumsq(a b) sq(a) + sq(b)")
        assert jit_session.evaluate("sumsq(3, 4)") == 25.0

    def test_extern_then_definition(self, jit_session):
        assert jit_session.evaluate("extern foo(x); def foo(x) x*2; foo(4)") == 8.0

    def test_recursive_definition_generates(self, jit_session):
        events = jit_session.run_source("def fib(x) (x<3) + fib(x-1) + fib(x-2)")
        assert kinds(events) == [EventKind.DEFINITION]
        assert "fib" in jit_session.registry

    def test_later_definition_shadows_earlier(self, jit_session):
        assert jit_session.evaluate("def f(x) x; def f(x) x+1; f(1)") == 2.0

    def test_unoptimised(self):
        session = Session(SessionOptions(opt_level=0))
        assert session.evaluate("def f(a b) a*b-1; f(3, 4)") == 11.0

    @pytest.mark.parametrize("source", [
        "1<2+3",
        "2*3-4*5<0",
        "8-2-1*3",
        "1-2-3-4",
        "2*3*4-5",
        "1+2<3",
        "3<1+1",
        "10-2*3<4+0.5",
        "1<2<3",
        "0.5*4-1+2*2",
    ])
    def test_mixed_operators_match_reference(self, jit_session, source):
        assert jit_session.evaluate(source) == reference_eval(source)


# =============================================================================
# Unit Lifecycle
# =============================================================================

class TestUnitLifecycle:
    """Units rotate on hand-off and anonymous units are unloaded."""

    def test_anonymous_function_unloaded(self, jit_session):
        jit_session.evaluate("1+1")
        assert jit_session.engine.resolve_symbol(ANONYMOUS_FUNCTION_NAME) is None
        assert jit_session.engine.loaded_units == []

    def test_definition_stays_loaded(self, jit_session):
        jit_session.run_source("def triple(x) x*3")
        assert jit_session.engine.call("triple", 2.0) == 6.0
        assert len(jit_session.engine.loaded_units) == 1

    def test_unit_rotates_after_definition(self, jit_session):
        first = jit_session.unit
        jit_session.run_source("def f(x) x")
        assert jit_session.unit is not first
        assert jit_session.unit.name == "kscope.2"
        assert jit_session.backend.lookup_function(jit_session.unit, "f") is None

    def test_unit_rotates_after_extern(self, jit_session):
        first = jit_session.unit
        jit_session.run_source("extern sin(x)")
        assert jit_session.unit is not first
        assert "sin" in jit_session.registry

    def test_failed_definition_keeps_unit(self, jit_session):
        first = jit_session.unit
        jit_session.run_source("def f(x) y")
        assert jit_session.unit is first

    def test_unit_name_prefix(self):
        session = Session(SessionOptions(unit_name="repl"))
        assert session.unit.name == "repl.1"

    def test_anonymous_code_freed_after_evaluation(self, jit_session, monkeypatch):
        handles = record_loads(jit_session.engine, monkeypatch)
        assert jit_session.evaluate("1+1") == 2.0

        (handle,) = handles
        assert not handle.loaded
        assert handle.tracker is None
        assert not jit_session.engine.is_resident(handle, ANONYMOUS_FUNCTION_NAME)

    def test_unloaded_definition_not_resident(self, jit_session, monkeypatch):
        handles = record_loads(jit_session.engine, monkeypatch)
        jit_session.run_source("def triple(x) x*3")
        (handle,) = handles
        assert jit_session.engine.is_resident(handle, "triple")

        jit_session.engine.unload_unit(handle)
        assert jit_session.engine.resolve_symbol("triple") is None
        assert not jit_session.engine.is_resident(handle, "triple")

    def test_repeated_evaluation_in_fresh_units(self, jit_session):
        for n in range(1, 6):
            assert jit_session.evaluate(f"{n}*2") == n * 2.0
        assert jit_session.engine.loaded_units == []

    def test_close(self, jit_session):
        jit_session.run_source("def f(x) x")
        jit_session.close()
        assert jit_session.engine is None


# =============================================================================
# Error Recovery
# =============================================================================

class TestErrorRecovery:
    """Errors are reported per construct and the loop continues."""

    def test_arity_mismatch(self, jit_session):
        events = jit_session.run_source("def id(x) x; id(1, 2)")
        assert events[1].is_error
        assert isinstance(events[1].error, ArityMismatchError)

    def test_unknown_variable_leaves_registry_unchanged(self, jit_session):
        before = jit_session.registry.snapshot()
        events = jit_session.run_source("def f(x) y")
        assert isinstance(events[0].error, UnknownVariableError)
        assert jit_session.registry.snapshot() == before

    def test_syntax_error_skips_one_token(self, jit_session):
        events = jit_session.run_source(") 1+1")
        assert kinds(events) == [EventKind.ERROR, EventKind.EXPRESSION]
        assert isinstance(events[0].error, UnexpectedTokenError)
        assert events[1].value == 2.0

    def test_later_constructs_still_run(self, jit_session):
        events = jit_session.run_source("def (x) x; def g(x) x+1; g(1)")
        assert any(isinstance(e.error, KSyntaxError) for e in events)
        assert events[-1].value == 2.0

    def test_errors_collected(self, jit_session):
        jit_session.run_source("foo(1); bar")
        assert jit_session.errors.error_count() == 2

        report = jit_session.errors.report()
        assert "unknown function referenced 'foo'" in report
        assert report.endswith("2 errors")

        jit_session.errors.clear()
        assert not jit_session.errors.has_errors()

    def test_evaluate_raises_first_error(self, jit_session):
        with pytest.raises(UnknownVariableError):
            jit_session.evaluate("x + 1")

    def test_top_level_semicolons_skipped(self, jit_session):
        events = jit_session.run_source(";;; 4 ;")
        assert kinds(events) == [EventKind.EXPRESSION]
        assert events[0].value == 4.0

    def test_unresolved_extern_reported(self, jit_session):
        events = jit_session.run_source("extern nosuchfn(x); nosuchfn(1); 1+1")
        assert kinds(events) == [EventKind.EXTERN, EventKind.ERROR, EventKind.EXPRESSION]
        assert isinstance(events[1].error, BackendError)
        assert "nosuchfn" in events[1].message
        assert events[2].value == 2.0
        assert jit_session.engine.loaded_units == []

    def test_definition_calling_unresolved_extern_discarded(self, jit_session):
        events = jit_session.run_source("extern nosuchfn(x); def g(x) nosuchfn(x)+1")
        assert kinds(events) == [EventKind.EXTERN, EventKind.ERROR]
        assert isinstance(events[1].error, BackendError)
        assert "g" not in jit_session.registry
        assert jit_session.engine.resolve_symbol("g") is None

    def test_failed_redefinition_keeps_previous_prototype(self, jit_session):
        jit_session.run_source("extern nosuchfn(x); def g(x) x*2")
        previous = jit_session.registry.get("g")
        events = jit_session.run_source("def g(x) nosuchfn(x)")
        assert events[0].is_error
        assert jit_session.registry.get("g") is previous
        assert jit_session.evaluate("g(4)") == 8.0

    def test_redefinition_in_ir_mode(self, ir_session):
        events = ir_session.run_source("def f(x) x; def f(x) x+1")
        assert kinds(events) == [EventKind.DEFINITION, EventKind.ERROR]
        assert isinstance(events[1].error, RedefinitionError)


# =============================================================================
# Runtime Library
# =============================================================================

class TestRuntimeLibrary:
    """putchard and printd are callable from programs."""

    def test_printd(self, jit_session, capsys):
        value = jit_session.evaluate("extern printd(x); printd(42)")
        assert value == 0.0
        assert "42.000000\n" in capsys.readouterr().out

    def test_putchard(self, jit_session, capsys):
        jit_session.evaluate("extern putchard(c); putchard(72) + putchard(105)")
        assert "Hi" in capsys.readouterr().err

    def test_putchard_negative_value(self, jit_session, capsys):
        assert jit_session.evaluate("extern putchard(c); putchard(0-1)") == 0.0
        assert chr(255) in capsys.readouterr().err

    @pytest.mark.parametrize("value,expected", [(-1.0, chr(255)), (321.0, "A"), (10.5, "\n")])
    def test_putchard_wraps_to_byte(self, capsys, value, expected):
        assert jit.putchard(value) == 0.0
        assert capsys.readouterr().err == expected

    def test_math_library_extern(self, jit_session):
        assert jit_session.evaluate("extern cos(x); cos(0)") == 1.0


# =============================================================================
# Parse and IR Modes
# =============================================================================

class TestModes:
    """Parse-only and IR-only sessions."""

    def test_parse_messages(self, parse_session):
        events = parse_session.run_source("def f(x) x; extern g(); f(1)")
        assert [e.message for e in events] == [
            "Parsed a function definition.",
            "Parsed an extern",
            "Parsed a top-level expr",
        ]
        assert parse_session.backend is None
        assert parse_session.finish() is None

    def test_parse_mode_reports_syntax_errors(self, parse_session):
        events = parse_session.run_source("def f x")
        assert events[0].is_error

    def test_ir_events(self, ir_session):
        events = ir_session.run_source("def sq(x) x*x; extern sin(a); sq(2)")
        assert kinds(events) == [EventKind.DEFINITION, EventKind.EXTERN, EventKind.EXPRESSION]
        assert "fmul" in events[0].ir
        assert "declare double" in events[1].ir
        assert events[2].value is None
        assert ir_session.engine is None

    def test_ir_anonymous_erased(self, ir_session):
        ir_session.run_source("1+2; 3")
        assert ir_session.backend.lookup_function(ir_session.unit, ANONYMOUS_FUNCTION_NAME) is None

    def test_finish_returns_module(self, ir_session):
        ir_session.run_source("def sq(x) x*x; sq(3)")
        module = ir_session.finish()
        assert "@sq" in module
        assert ANONYMOUS_FUNCTION_NAME not in module

    def test_no_ir(self):
        session = Session(SessionOptions(mode=SessionMode.IR, print_ir=False))
        events = session.run_source("def f(x) x")
        assert events[0].ir is None
        assert events[0].message == "Read function definition:"


# =============================================================================
# Configuration
# =============================================================================

class TestSessionOptions:
    """SessionOptions defaults, validation and environment."""

    def test_defaults(self):
        options = SessionOptions()
        assert options.mode == SessionMode.JIT
        assert options.opt_level == 2
        assert options.print_ir is True

    def test_mode_from_string(self):
        assert SessionOptions(mode="IR").mode == SessionMode.IR

    def test_invalid_opt_level(self):
        with pytest.raises(ValueError):
            SessionOptions(opt_level=5)

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("KSCOPE_MODE", "parse")
        monkeypatch.setenv("KSCOPE_OPT_LEVEL", "0")
        monkeypatch.setenv("KSCOPE_PRINT_IR", "false")
        options = SessionOptions.from_env()
        assert options.mode == SessionMode.PARSE
        assert options.opt_level == 0
        assert options.print_ir is False

    def test_from_env_ignores_invalid(self, monkeypatch):
        monkeypatch.setenv("KSCOPE_MODE", "compile")
        monkeypatch.setenv("KSCOPE_OPT_LEVEL", "7")
        options = SessionOptions.from_env()
        assert options.mode == SessionMode.JIT
        assert options.opt_level == 2
