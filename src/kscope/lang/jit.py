"""
kscope Execution Engine
=======================

This module hosts finished compilation units in an llvmlite ORC LLJIT
instance and turns their symbols into Python callables.

Unit Lifecycle
--------------
    load_unit(unit)      -> UnitHandle   (finalize, resolve, link)
    resolve_symbol(name) -> callable     (ctypes wrapper over native code)
    unload_unit(handle)                  (free the unit's code and symbols)

Every unit with definitions becomes its own JIT library, named after the
unit. Calls to functions defined in earlier units are linked against the
library that provides them. Unloading closes the library's resource
tracker, which frees its code: nothing of an unloaded unit stays resident
or callable.

A symbol resolves only while the unit defining it is loaded. When two
loaded units define the same name, the most recently loaded one wins,
which is how a redefinition in a later unit shadows the earlier one.

Every external function a unit calls is resolved before it is linked. A
call that nothing provides is reported as a BackendError instead of being
left for the JIT to trip over.

Runtime Library
---------------
Two host functions are registered with LLVM so programs can declare and
call them:

    extern putchard(x)   # writes chr(x) to stderr, returns 0
    extern printd(x)     # prints x as "%f" and a newline, returns 0

The host math library is loaded as well, so its functions (sin, cos,
sqrt, ...) can be declared with extern and called directly.
"""

import ctypes
import ctypes.util
import functools
import logging
import sys
from dataclasses import dataclass, field
from typing import Callable, Optional

import llvmlite.binding as llvm
from llvmlite import ir

from kscope.lang.codegen import LLVMBackend, LLVMUnit, initialize_llvm
from kscope.lang.errors import BackendError

logger = logging.getLogger(__name__)


# =============================================================================
# Runtime Library
# =============================================================================

def putchard(value: float) -> float:
    """Write the character with code `value` (truncated to a byte) to stderr."""
    sys.stderr.write(chr(int(value) & 0xFF))
    sys.stderr.flush()
    return 0.0


def printd(value: float) -> float:
    """Print `value` as "%f" on its own line."""
    sys.stdout.write(f"{value:f}\n")
    sys.stdout.flush()
    return 0.0


_DOUBLE_TO_DOUBLE = ctypes.CFUNCTYPE(ctypes.c_double, ctypes.c_double)

# ctypes callbacks must stay referenced for as long as native code may call them
RUNTIME_LIBRARY = {
    "putchard": _DOUBLE_TO_DOUBLE(putchard),
    "printd": _DOUBLE_TO_DOUBLE(printd),
}


@functools.lru_cache(maxsize=None)
def register_runtime_library() -> None:
    """Make the runtime library and the math library visible to LLVM."""
    for name, callback in RUNTIME_LIBRARY.items():
        address = ctypes.cast(callback, ctypes.c_void_p).value
        llvm.add_symbol(name, address)
        logger.debug(f"Registered runtime symbol '{name}' at 0x{address:X}")

    libm = ctypes.util.find_library("m")
    if libm:
        try:
            llvm.load_library_permanently(libm)
        except RuntimeError as e:
            logger.warning(f"Could not load math library {libm}: {e}")
        else:
            logger.debug(f"Loaded math library {libm}")


def called_functions(unit: LLVMUnit) -> set[str]:
    """Names of every function called from a function defined in `unit`."""
    names = set()
    for fn in unit.module.functions:
        if fn.is_declaration:
            continue
        for block in fn.blocks:
            for instr in block.instructions:
                if isinstance(instr, ir.CallInstr):
                    names.add(instr.callee.name)
    return names


# =============================================================================
# Execution Engine
# =============================================================================

@dataclass(eq=False)
class UnitHandle:
    """
    A unit loaded into the engine.

    Attributes:
        name: Unit name, also the name of its JIT library
        symbols: Defined function name -> number of parameters
        addresses: Defined function name -> native address
        tracker: Resource tracker owning the unit's code (None for units
                 that define nothing)
        sequence: Load order, higher is newer
        loaded: False once the unit has been unloaded
    """
    name: str
    symbols: dict[str, int] = field(default_factory=dict)
    addresses: dict[str, int] = field(default_factory=dict)
    tracker: Optional[llvm.ResourceTracker] = None
    sequence: int = 0
    loaded: bool = True


class JITEngine:
    """
    ORC LLJIT-backed execution engine.

    Usage:
        engine = JITEngine(backend)
        handle = engine.load_unit(unit)
        fn = engine.resolve_symbol("__anon_expr")
        print(fn())
        engine.unload_unit(handle)
    """

    def __init__(self, backend: LLVMBackend):
        self.backend = backend
        initialize_llvm()
        register_runtime_library()

        self._lljit = llvm.create_lljit_compiler()

        # Symbol name -> the loaded unit currently providing it
        self._symbols: dict[str, UnitHandle] = {}
        self._units: list[UnitHandle] = []
        self._sequence = 0

    @property
    def loaded_units(self) -> list[UnitHandle]:
        return list(self._units)

    def load_unit(self, unit: LLVMUnit) -> UnitHandle:
        """
        Finalize `unit` and link it into the JIT.

        A unit that defines no functions (only extern declarations) has
        nothing to link and is recorded without a library.

        Raises:
            BackendError: If the unit fails verification, calls a function
                          nothing provides, or cannot be linked
        """
        llmod = self.backend.finalize_unit(unit)
        symbols = {
            fn.name: len(list(fn.arguments))
            for fn in llmod.functions
            if not fn.is_declaration
        }

        self._sequence += 1
        handle = UnitHandle(name=unit.name, symbols=symbols, sequence=self._sequence)

        if symbols:
            providers, imports = self._resolve_externals(unit, symbols)

            builder = llvm.JITLibraryBuilder().add_ir(str(llmod))
            for provider in providers:
                builder.add_jit_library(provider.name)
            for name, address in imports.items():
                builder.import_symbol(name, address)
            for name in symbols:
                builder.export_symbol(name)

            try:
                handle.tracker = builder.link(self._lljit, unit.name)
            except RuntimeError as e:
                raise BackendError(f"cannot load unit '{unit.name}': {e}") from e
            handle.addresses = {name: handle.tracker[name] for name in symbols}

        self._units.append(handle)
        for name in symbols:
            self._symbols[name] = handle

        logger.debug(f"Loaded unit '{unit.name}' defining {sorted(symbols) or 'nothing'}")
        return handle

    def _resolve_externals(
        self,
        unit: LLVMUnit,
        defined: dict[str, int],
    ) -> tuple[list[UnitHandle], dict[str, int]]:
        """
        Find a provider for every function `unit` calls but does not define.

        Returns:
            (loaded units to link against, newest first;
             host symbol name -> address)

        Raises:
            BackendError: If no loaded unit and no host symbol provides a name
        """
        providers: dict[str, UnitHandle] = {}
        imports: dict[str, int] = {}

        for name in sorted(called_functions(unit) - set(defined)):
            handle = self._symbols.get(name)
            if handle is not None:
                providers[handle.name] = handle
                continue

            address = llvm.address_of_symbol(name)
            if address:
                imports[name] = address
                continue

            raise BackendError(
                f"unresolved external function '{name}' in unit '{unit.name}'",
                hint="no loaded definition or host library provides it",
            )

        ordered = sorted(providers.values(), key=lambda h: h.sequence, reverse=True)
        return ordered, imports

    def resolve_symbol(self, name: str) -> Optional[Callable[..., float]]:
        """
        Return a callable for the function `name`, or None if no loaded
        unit defines it.
        """
        handle = self._symbols.get(name)
        if handle is None:
            return None

        arity = handle.symbols[name]
        signature = ctypes.CFUNCTYPE(ctypes.c_double, *([ctypes.c_double] * arity))
        return signature(handle.addresses[name])

    def is_resident(self, handle: UnitHandle, name: str) -> bool:
        """Ask the JIT itself whether `name` can still be looked up in `handle`'s library."""
        if handle.loaded:
            return name in handle.addresses

        try:
            tracker = self._lljit.lookup(handle.name, name)
        except RuntimeError:
            return False
        tracker.close()
        return True

    def unload_unit(self, handle: UnitHandle) -> None:
        """Remove a unit from the engine, freeing its code and symbols."""
        if not handle.loaded:
            return

        if handle.tracker is not None:
            handle.tracker.close()
            handle.tracker = None
        handle.addresses.clear()
        handle.loaded = False

        self._units.remove(handle)
        for name in handle.symbols:
            if self._symbols.get(name) is handle:
                del self._symbols[name]

        logger.debug(f"Unloaded unit '{handle.name}'")

    def call(self, name: str, *args: float) -> float:
        """
        Resolve `name` and call it with `args`.

        Raises:
            BackendError: If the symbol is not loaded
        """
        fn = self.resolve_symbol(name)
        if fn is None:
            raise BackendError(f"function '{name}' not found in execution engine")
        return fn(*args)

    def close(self) -> None:
        """Unload every unit, newest first, and release the JIT."""
        for handle in reversed(self._units):
            self.unload_unit(handle)
        self._lljit.close()
