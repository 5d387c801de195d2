"""
kscope Command-Line Interface
=============================

This package provides the command-line tool for kscope:

- **kscope**: REPL and script runner (parse, ir and jit modes)

The tool is implemented as a Click-based CLI application with
comprehensive help and error reporting.
"""

__all__ = ["kscope"]
