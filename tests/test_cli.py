"""
CLI Test Suite
==============

Tests for the kscope command-line tool using click's CliRunner.
"""

import pytest
from click.testing import CliRunner

from kscope import __version__
from kscope.cli.errors import ExitCode
from kscope.cli.kscope import main


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def script(tmp_path):
    """Write a kscope source file and return its path."""
    def write(source: str, name: str = "program.ks"):
        path = tmp_path / name
        path.write_text(source)
        return path
    return write


# =============================================================================
# Basic Options
# =============================================================================

class TestBasicOptions:
    """Help, version and argument validation."""

    def test_help(self, runner):
        result = runner.invoke(main, ["--help"])
        assert result.exit_code == 0
        assert "Run kscope interactively" in result.output

    def test_version(self, runner):
        result = runner.invoke(main, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_missing_source_file(self, runner, tmp_path):
        result = runner.invoke(main, [str(tmp_path / "missing.ks")])
        assert result.exit_code == ExitCode.INVALID_ARGS

    def test_opt_level_out_of_range(self, runner):
        result = runner.invoke(main, ["-O", "9"], input="1\n")
        assert result.exit_code == ExitCode.INVALID_ARGS

    def test_unknown_mode(self, runner):
        result = runner.invoke(main, ["--mode", "compile"], input="1\n")
        assert result.exit_code == ExitCode.INVALID_ARGS


# =============================================================================
# JIT Mode
# =============================================================================

class TestJitMode:
    """Running scripts and standard input through the JIT."""

    def test_script(self, runner, script):
        path = script("def double(x) x*2;\ndouble(21);\n")
        result = runner.invoke(main, [str(path)])
        assert result.exit_code == 0
        assert "Read function definition:" in result.output
        assert "Evaluated to 42.0" in result.output

    def test_stdin(self, runner):
        result = runner.invoke(main, [], input="1+2*3\n")
        assert result.exit_code == 0
        assert "Evaluated to 7.0" in result.output
        # No prompt when stdin is not a terminal
        assert "ready>" not in result.output

    def test_printd(self, runner, script):
        path = script("extern printd(x)\nprintd(42)\n")
        result = runner.invoke(main, [str(path)])
        assert result.exit_code == 0
        assert "42.000000" in result.output

    def test_no_ir(self, runner):
        result = runner.invoke(main, ["--no-ir"], input="def f(x) x+1;\n")
        assert result.exit_code == 0
        assert "define" not in result.output

    def test_opt_level_zero(self, runner):
        result = runner.invoke(main, ["-O", "0"], input="def f(a b) a*b; f(6, 7)\n")
        assert result.exit_code == 0
        assert "Evaluated to 42.0" in result.output


# =============================================================================
# Diagnostics
# =============================================================================

class TestDiagnostics:
    """Language errors and exit status."""

    def test_script_with_errors_fails(self, runner, script):
        path = script("def f(x) y\n1+1\n", name="bad.ks")
        result = runner.invoke(main, [str(path)])
        assert result.exit_code == ExitCode.DIAGNOSTICS
        assert "unknown variable name 'y'" in result.output
        assert "bad.ks:1:" in result.output
        # Later constructs still run
        assert "Evaluated to 2.0" in result.output

    def test_stdin_errors_do_not_fail(self, runner):
        result = runner.invoke(main, [], input="foo(1)\n2\n")
        assert result.exit_code == 0
        assert "unknown function referenced 'foo'" in result.output
        assert "Evaluated to 2.0" in result.output


# =============================================================================
# Parse and IR Modes
# =============================================================================

class TestModes:
    """--mode parse / ir and --ast."""

    def test_parse_mode_with_ast(self, runner):
        result = runner.invoke(main, ["--mode", "parse", "--ast"], input="def f(x) x+2*3\n")
        assert result.exit_code == 0
        assert "Parsed a function definition." in result.output
        assert "Function: f(x)" in result.output
        assert "(x + (2 * 3))" in result.output

    def test_ir_mode_prints_module(self, runner, script):
        path = script("def sq(x) x*x\nsq(2)\n")
        result = runner.invoke(main, ["--mode", "ir", str(path)])
        assert result.exit_code == 0
        assert "Read top-level expression:" in result.output
        assert "@sq" in result.output
        assert "Evaluated to" not in result.output

    def test_mode_from_environment(self, runner):
        result = runner.invoke(
            main, [], input="1+1\n", env={"KSCOPE_MODE": "parse"},
        )
        assert result.exit_code == 0
        assert "Parsed a top-level expr" in result.output

    def test_option_overrides_environment(self, runner):
        result = runner.invoke(
            main, ["--mode", "jit"], input="1+1\n", env={"KSCOPE_MODE": "parse"},
        )
        assert "Evaluated to 2.0" in result.output
