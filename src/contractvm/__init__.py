"""contractvm: compiler and prover runtime for directive-annotated contracts."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("contractvm")
except PackageNotFoundError:
    __version__ = "dev"

# Public API exports
from contractvm.api import RunReport, build_report, compile_contract, link, parse, run_function
from contractvm.codes import ErrorCode
from contractvm.kernel.errors import (
    AuthorizationError,
    CompileError,
    ContractVMError,
    ExecutionError,
    InputError,
    KeyFormatError,
    LinkError,
    ParseError,
)
from contractvm.kernel.publickey import Key

__all__ = [
    "__version__",
    "parse",
    "compile_contract",
    "link",
    "run_function",
    "build_report",
    "RunReport",
    "ErrorCode",
    "Key",
    "ContractVMError",
    "CompileError",
    "ParseError",
    "KeyFormatError",
    "InputError",
    "LinkError",
    "ExecutionError",
    "AuthorizationError",
]
