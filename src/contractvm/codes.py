"""Error code constants for contractvm exceptions.

These constants prevent stringly-typed error codes and let callers tell
failure kinds apart without parsing messages.
"""

from enum import Enum


class ErrorCode(str, Enum):
    """Stable error codes carried by every ContractVMError."""

    # Compilation (fatal, never retried)
    PARSE_ERROR = "PARSE_ERROR"
    UNKNOWN_CONTRACT = "UNKNOWN_CONTRACT"
    UNKNOWN_FUNCTION = "UNKNOWN_FUNCTION"
    UNKNOWN_FIELD = "UNKNOWN_FIELD"
    UNKNOWN_TYPE = "UNKNOWN_TYPE"
    UNKNOWN_IDENTIFIER = "UNKNOWN_IDENTIFIER"
    TYPE_MISMATCH = "TYPE_MISMATCH"
    INVALID_DIRECTIVE = "INVALID_DIRECTIVE"
    DUPLICATE_DECLARATION = "DUPLICATE_DECLARATION"
    UNSUPPORTED = "UNSUPPORTED"

    # Per-call input problems
    KEY_FORMAT = "KEY_FORMAT"
    INVALID_INPUT = "INVALID_INPUT"

    # Bytecode/ABI consistency
    LINK_ERROR = "LINK_ERROR"

    # Execution
    ABORTED = "ABORTED"
    UNAUTHORIZED = "UNAUTHORIZED"
    STEP_LIMIT = "STEP_LIMIT"
