"""contractvm CLI: compile and run contract functions."""

import argparse
import json
import logging
import sys
from importlib.metadata import version as get_version, PackageNotFoundError
from pathlib import Path

from contractvm._internal.canonical_json import canonical_dumps, load_json, write_json
from contractvm.api import build_report, compile_contract, link
from contractvm.kernel.errors import (
    CompileError,
    ContractVMError,
    ExecutionError,
    InputError,
    KeyFormatError,
    LinkError,
)
from contractvm.kernel.inputs import Inputs
from contractvm.kernel.prover import RunOptions, compile_program, run

EXIT_COMPILE = 1
EXIT_INPUT = 2
EXIT_EXECUTION = 3


def _exit_code(error: ContractVMError) -> int:
    if isinstance(error, (CompileError, LinkError)):
        return EXIT_COMPILE
    if isinstance(error, (InputError, KeyFormatError)):
        return EXIT_INPUT
    if isinstance(error, ExecutionError):
        return EXIT_EXECUTION
    return EXIT_COMPILE


def _fail(code: int, message: str) -> None:
    print(f"Error: {message}", file=sys.stderr)
    sys.exit(code)


def _positive_int(text: str) -> int:
    value = int(text)
    if value <= 0:
        raise argparse.ArgumentTypeError("must be a positive integer")
    return value


def _read_source(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except OSError as e:
        _fail(EXIT_INPUT, f"Cannot read source {path}: {e}")


def _read_json(path, what: str, default=None):
    if path is None:
        return default
    try:
        return load_json(path)
    except (OSError, json.JSONDecodeError) as e:
        _fail(EXIT_INPUT, f"Cannot read {what} from {path}: {e}")


def _cmd_compile(args) -> None:
    bytecode, abi = compile_contract(_read_source(args.source), args.contract, args.function)
    compile_program(abi, bytecode)
    if args.bytecode_out is not None:
        args.bytecode_out.write_text(bytecode, encoding="utf-8")
    abi_json = canonical_dumps(abi.model_dump(mode="json"))
    if args.abi_out is not None:
        write_json(args.abi_out, abi.model_dump(mode="json"))
    if not args.quiet:
        print(abi_json)


def _cmd_run(args) -> None:
    program = link(_read_source(args.source), args.contract, args.function)
    inputs = Inputs.build(
        program.abi,
        caller_key=_read_json(args.caller_key, "caller key"),
        this_salts=_read_json(args.this_salts, "salts"),
        this=_read_json(args.this, "receiver"),
        args=_read_json(args.args, "arguments", default=[]),
        other_records=_read_json(args.other_records, "other records"),
    )
    output = run(program, inputs, RunOptions(max_steps=args.max_steps))
    report = build_report(program, output)
    if not args.quiet:
        print(canonical_dumps(report.model_dump(mode="json")))


def main():
    """Main CLI entry point for contractvm commands."""
    try:
        contractvm_version = get_version("contractvm")
    except PackageNotFoundError:
        contractvm_version = "dev"

    parser = argparse.ArgumentParser(
        prog="contractvm",
        description="contractvm: compile contract functions and run them over a witness"
    )
    parser.add_argument("--version", action="version", version=f"contractvm {contractvm_version}")
    parent_parser = argparse.ArgumentParser(add_help=False)
    parent_parser.add_argument("source", type=Path, help="Path to contract source")
    parent_parser.add_argument("--contract", required=True, help="Contract (record) name")
    parent_parser.add_argument("--function", required=True, help="Function name, or .readAuth")
    parent_parser.add_argument(
        "--quiet",
        action="store_true",
        help="Suppress all non-error output."
    )
    parent_parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging on stderr."
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    compile_parser = subparsers.add_parser(
        "compile",
        help="Compile a function and print its ABI",
        parents=[parent_parser]
    )
    compile_parser.add_argument(
        "--bytecode-out",
        type=Path,
        default=None,
        help="Write the bytecode text to this path"
    )
    compile_parser.add_argument(
        "--abi-out",
        type=Path,
        default=None,
        help="Write the ABI as canonical JSON to this path"
    )

    run_parser = subparsers.add_parser(
        "run",
        help="Compile and run a function, printing a JSON report",
        parents=[parent_parser]
    )
    run_parser.add_argument("--this", type=Path, default=None, help="JSON file with the receiver record")
    run_parser.add_argument("--args", type=Path, default=None, help="JSON file with the argument list")
    run_parser.add_argument(
        "--caller-key",
        type=Path,
        default=None,
        help="JSON file with the caller public key (object or hex string)"
    )
    run_parser.add_argument(
        "--other-records",
        type=Path,
        default=None,
        help="JSON file mapping record type names to lists of records"
    )
    run_parser.add_argument(
        "--this-salts",
        type=Path,
        default=None,
        help="JSON file with one salt per receiver field (defaults to zeros)"
    )
    run_parser.add_argument(
        "--max-steps",
        type=_positive_int,
        default=RunOptions().max_steps,
        help="Abort execution after this many instructions"
    )

    args = parser.parse_args()
    if args.command is None:
        parser.print_help()
        sys.exit(EXIT_COMPILE)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        if args.command == "compile":
            _cmd_compile(args)
        elif args.command == "run":
            _cmd_run(args)
    except ContractVMError as e:
        _fail(_exit_code(e), f"[{e.code.value}] {e}")


if __name__ == "__main__":
    main()
