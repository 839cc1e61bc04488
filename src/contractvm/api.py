"""Public API for the contractvm package.

High-level functions that go from source text to a structured result.
Callers should use these instead of importing from ``_internal``.
"""

import logging
from typing import Any, List, Mapping, Optional, Sequence, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field

from contractvm.kernel import ast
from contractvm.kernel.abi import Abi
from contractvm.kernel.compiler import compile as compile_function
from contractvm.kernel.hash_utils import hash_abi
from contractvm.kernel.inputs import Inputs
from contractvm.kernel.parser import parse_program
from contractvm.kernel.prover import Program, RunOptions, RunOutput, compile_program, run
from contractvm.kernel.types import value_to_json

logger = logging.getLogger(__name__)

Source = Union[str, ast.Program]


class RunReport(BaseModel):
    """Stable, JSON-ready summary of one execution."""
    contract: str
    function: str
    program: str = Field(description="sha256 fingerprint of the bytecode")
    abi_hash: str
    this: Optional[Any] = None
    result: Optional[Any] = None
    result_hash: Optional[List[int]] = None
    dependent_fields: List[str] = Field(default_factory=list)
    hashes: List[List[int]] = Field(default_factory=list)
    read_auth: bool = False
    steps: int = 0

    model_config = ConfigDict(frozen=True, extra="forbid")


def parse(source: str) -> ast.Program:
    """Parse contract source text."""
    return parse_program(source)


def _program(source: Source) -> ast.Program:
    return source if isinstance(source, ast.Program) else parse_program(source)


def compile_contract(source: Source, contract: str, function: str) -> Tuple[str, Abi]:
    """Compile one function of a contract to (bytecode, Abi).

    ``function`` may be ``.readAuth`` for the synthesized read check.
    """
    return compile_function(_program(source), contract, function)


def link(source: Source, contract: str, function: str) -> Program:
    """Compile and link in one step."""
    bytecode, abi = compile_contract(source, contract, function)
    return compile_program(abi, bytecode)


def run_function(
    source: Union[Source, Program],
    contract: str,
    function: str,
    this: Any = None,
    args: Sequence[Any] = (),
    caller_key: Any = None,
    other_records: Optional[Mapping[str, Sequence[Any]]] = None,
    this_salts: Optional[Sequence[int]] = None,
    options: Optional[RunOptions] = None,
) -> RunOutput:
    """Compile, link, build inputs and run.

    Salts default to zero for every field. Pass an already linked Program
    as ``source`` to skip compilation.
    """
    program = source if isinstance(source, Program) else link(source, contract, function)
    inputs = Inputs.build(
        program.abi,
        caller_key=caller_key,
        this_salts=this_salts,
        this=this,
        args=args,
        other_records=other_records,
    )
    return run(program, inputs, options)


def build_report(program: Program, output: RunOutput) -> RunReport:
    """Build a JSON-ready RunReport from a program and its output."""
    abi = program.abi
    return RunReport(
        contract=abi.contract,
        function=abi.function,
        program=program.fingerprint,
        abi_hash=hash_abi(abi),
        this=value_to_json(output.this) if output.this is not None else None,
        result=value_to_json(output.result) if output.result is not None else None,
        result_hash=list(output.result_hash) if output.result_hash is not None else None,
        dependent_fields=abi.dependent_field_names(),
        hashes=[list(h) for h in output.hashes],
        read_auth=output.read_auth,
        steps=output.steps,
    )
