"""Exception hierarchy shared by the compiler and the prover runtime."""

from typing import Optional

from contractvm.codes import ErrorCode


class ContractVMError(Exception):
    """Base exception for all contractvm failures."""
    code: ErrorCode = ErrorCode.ABORTED


class CompileError(ContractVMError):
    """Raised when a declaration set cannot be compiled.

    Always fatal to the compilation; the message is meant to be shown verbatim.
    """

    def __init__(self, message: str, code: ErrorCode = ErrorCode.TYPE_MISMATCH, line: Optional[int] = None):
        self.message = message
        self.code = code
        self.line = line
        if line:
            message = f"{message} (line {line})"
        super().__init__(message)


class ParseError(CompileError):
    """Raised when source text does not match the grammar."""

    def __init__(self, message: str, line: Optional[int] = None, column: Optional[int] = None):
        self.column = column
        super().__init__(message, ErrorCode.PARSE_ERROR, line)


class KeyFormatError(ContractVMError, ValueError):
    """Raised when a public key encoding is malformed or not on the curve."""
    code = ErrorCode.KEY_FORMAT


class InputError(ContractVMError):
    """Raised when call data does not match the ABI."""
    code = ErrorCode.INVALID_INPUT

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid input for '{field}': {reason}")


class LinkError(ContractVMError):
    """Raised when bytecode and ABI disagree."""
    code = ErrorCode.LINK_ERROR


class ExecutionError(ContractVMError):
    """Raised when execution aborts. No partial state is returned."""

    def __init__(self, message: str, code: ErrorCode = ErrorCode.ABORTED):
        self.message = message
        self.code = code
        super().__init__(message)


class AuthorizationError(ExecutionError):
    """Raised when the caller does not satisfy the function's call policy."""

    MESSAGE = "You are not authorized to call this function"

    def __init__(self):
        super().__init__(self.MESSAGE, ErrorCode.UNAUTHORIZED)
