"""Runtime tests: witness construction, execution semantics and commitments."""

import pytest

from contractvm.api import link, run_function
from contractvm.codes import ErrorCode
from contractvm.kernel.errors import ExecutionError, InputError, KeyFormatError, LinkError
from contractvm.kernel.hash_utils import commit_field, commit_value
from contractvm.kernel.inputs import Inputs
from contractvm.kernel.prover import RunOptions, run
from contractvm.kernel.types import (
    UINT32,
    ArrayValue,
    BooleanValue,
    Float32Value,
    Int32Value,
    Int64Value,
    StringValue,
    StructValue,
    UInt32Value,
)

BALANCE = """
contract Account {
    id: string;
    name: string;
    balance: u32;

    @call
    addBalance(amount: u32) {
        this.balance = this.balance + amount;
    }
}
"""


def _field(output, name):
    return output.this.get(name)


class TestFieldHashes:
    """Tests for dependent fields and their commitments."""

    def test_balance_is_the_only_dependency(self):
        program = link(BALANCE, "Account", "addBalance")
        output = run_function(program, "Account", "addBalance", this={"id": "john", "name": "John Doe", "balance": 0}, args=[10])
        assert output.this == StructValue((
            ("id", StringValue("")),
            ("name", StringValue("")),
            ("balance", UInt32Value(10)),
        ))
        assert program.abi.dependent_fields == (("balance", UINT32),)
        assert output.hashes == (commit_field("Account", "balance", 0, UInt32Value(10)),)

    def test_hash_uses_post_execution_value_and_salt(self):
        program = link(BALANCE, "Account", "addBalance")
        this = {"id": "john", "name": "", "balance": 5}
        unsalted = run_function(program, "Account", "addBalance", this=this, args=[10])
        salted = run_function(program, "Account", "addBalance", this=this, args=[10], this_salts=[1, 2, 3])
        assert unsalted.hashes == (commit_field("Account", "balance", 0, UInt32Value(15)),)
        assert salted.hashes == (commit_field("Account", "balance", 3, UInt32Value(15)),)
        assert salted.hashes != unsalted.hashes

    def test_runs_are_deterministic(self):
        program = link(BALANCE, "Account", "addBalance")
        this = {"id": "a", "name": "b", "balance": 1}
        first = run_function(program, "Account", "addBalance", this=this, args=[2])
        second = run_function(program, "Account", "addBalance", this=this, args=[2])
        assert first == second

    def test_digest_words_are_u64(self):
        output = run_function(BALANCE, "Account", "addBalance", this={"id": "", "name": "", "balance": 0}, args=[1])
        (digest,) = output.hashes
        assert len(digest) == 4
        assert all(0 <= word < 2**64 for word in digest)

    def test_missing_receiver_defaults(self):
        output = run_function(BALANCE, "Account", "addBalance", args=[7])
        assert _field(output, "balance") == UInt32Value(7)


class TestReturning:
    """Tests for functions with a return value."""

    SOURCE = """
    @public
    contract Account {
        id: string;
        name: string;

        @call
        getName(): string {
            return this.name;
        }
    }
    """

    def test_returns_field_value(self):
        program = link(self.SOURCE, "Account", "getName")
        output = run_function(program, "Account", "getName", this={"id": "", "name": "John"})
        assert output.result == StringValue("John")
        assert output.result_hash == commit_value(StringValue("John"))
        assert output.hashes == (commit_field("Account", "name", 0, StringValue("John")),)
        assert program.abi.dependent_field_names() == ["name"]

    def test_void_function_has_no_result(self):
        output = run_function(BALANCE, "Account", "addBalance", args=[1])
        assert output.result is None
        assert output.result_hash is None

    def test_missing_return_aborts(self):
        source = """
        contract A {
            id: string;
            @call
            f(flag: boolean): u32 {
                if (flag) return 1;
            }
        }
        """
        assert run_function(source, "A", "f", args=[True]).result == UInt32Value(1)
        with pytest.raises(ExecutionError, match="did not return a value"):
            run_function(source, "A", "f", args=[False])


class TestArrays:
    """Tests for array methods and indexing."""

    SOURCE = """
    contract Account {
        id: string;
        result: i32;
        @call
        indexOf(arr: $T[], item: $T) {
            this.result = arr.indexOf(item);
        }
    }
    """

    @pytest.mark.parametrize(
        "element_type, arr, item, expected",
        [
            ("string", ["a", "b"], "a", 0),
            ("string", ["a", "b"], "b", 1),
            ("string", ["a", "b"], "c", -1),
            ("i32", [1, 2], 2, 1),
        ],
    )
    def test_index_of(self, element_type, arr, item, expected):
        source = self.SOURCE.replace("$T", element_type)
        output = run_function(source, "Account", "indexOf", this={"id": "test", "result": 123456}, args=[arr, item])
        assert _field(output, "result") == Int32Value(expected)
        assert _field(output, "id") == StringValue("")

    def test_push_length_and_includes(self):
        source = """
        contract A {
            id: string;
            tags: string[];
            count: u32;
            seen: boolean;
            @call
            tag(t: string) {
                this.tags.push(t);
                this.count = this.tags.length;
                this.seen = this.tags.includes("a");
            }
        }
        """
        output = run_function(source, "A", "tag", this={"id": "", "tags": ["a"], "count": 0, "seen": False}, args=["b"])
        assert _field(output, "tags") == ArrayValue((StringValue("a"), StringValue("b")))
        assert _field(output, "count") == UInt32Value(2)
        assert _field(output, "seen") == BooleanValue(True)

    def test_index_assignment_and_bounds(self):
        source = """
        contract A {
            id: string;
            xs: i32[];
            @call
            set(i: u32, v: i32) {
                this.xs[i] = v;
            }
        }
        """
        output = run_function(source, "A", "set", this={"id": "", "xs": [1, 2]}, args=[1, 9])
        assert _field(output, "xs") == ArrayValue((Int32Value(1), Int32Value(9)))
        with pytest.raises(ExecutionError, match="out of bounds"):
            run_function(source, "A", "set", this={"id": "", "xs": [1, 2]}, args=[5, 9])


class TestArithmetic:
    """Tests for checked arithmetic and control flow."""

    def _calc(self, type_name, expression, a, b):
        source = f"""
        contract A {{
            id: string;
            @call
            f(a: {type_name}, b: {type_name}): {type_name} {{
                return {expression};
            }}
        }}
        """
        return run_function(source, "A", "f", args=[a, b]).result

    def test_overflow_aborts(self):
        with pytest.raises(ExecutionError, match="overflow"):
            self._calc("u32", "a + b", 2**32 - 1, 1)

    def test_underflow_aborts(self):
        with pytest.raises(ExecutionError, match="overflow"):
            self._calc("u32", "a - b", 0, 1)

    def test_division_by_zero(self):
        with pytest.raises(ExecutionError, match="Division by zero"):
            self._calc("i32", "a / b", 1, 0)

    def test_signed_division_truncates(self):
        assert self._calc("i64", "a / b", -7, 2) == Int64Value(-3)
        assert self._calc("i64", "a % b", -7, 2) == Int64Value(-1)

    def test_f32_results_are_rounded(self):
        result = self._calc("f32", "a + b", 0.1, 0.2)
        assert isinstance(result, Float32Value)
        assert result.value != 0.1 + 0.2

    def test_while_loop(self):
        source = """
        contract A {
            id: string;
            @call
            sum(n: u32): u32 {
                let total: u32 = 0;
                let i: u32 = 0;
                while (i < n) {
                    i += 1;
                    total += i;
                }
                return total;
            }
        }
        """
        assert run_function(source, "A", "sum", args=[4]).result == UInt32Value(10)

    def test_short_circuit(self):
        source = """
        contract A {
            id: string;
            xs: u32[];
            @call
            f(): boolean {
                return this.xs.length > 0 && this.xs[0] == 1;
            }
        }
        """
        assert run_function(source, "A", "f", this={"id": "", "xs": []}).result == BooleanValue(False)
        assert run_function(source, "A", "f", this={"id": "", "xs": [1]}).result == BooleanValue(True)


class TestAborts:
    """Tests for error() and execution limits."""

    def test_error_message(self):
        source = """
        contract A {
            id: string;
            @call
            f() {
                error("nope: " + this.id);
            }
        }
        """
        with pytest.raises(ExecutionError) as excinfo:
            run_function(source, "A", "f", this={"id": "x"})
        assert str(excinfo.value) == "nope: x"
        assert excinfo.value.code == ErrorCode.ABORTED

    def test_step_limit(self):
        source = """
        contract A {
            id: string;
            @call
            f() {
                while (true) {}
            }
        }
        """
        with pytest.raises(ExecutionError) as excinfo:
            run_function(source, "A", "f", options=RunOptions(max_steps=50))
        assert excinfo.value.code == ErrorCode.STEP_LIMIT

    def test_steps_are_reported(self):
        output = run_function(BALANCE, "Account", "addBalance", args=[1])
        assert output.steps > 0

    def test_max_steps_must_be_positive(self):
        with pytest.raises(ValueError):
            RunOptions(max_steps=0)


class TestInputs:
    """Tests for witness validation."""

    def test_wrong_argument_count(self):
        with pytest.raises(InputError) as excinfo:
            run_function(BALANCE, "Account", "addBalance", args=[])
        assert excinfo.value.field == "args"

    def test_argument_out_of_range(self):
        with pytest.raises(InputError) as excinfo:
            run_function(BALANCE, "Account", "addBalance", args=[-1])
        assert excinfo.value.field == "amount"

    def test_receiver_type_mismatch(self):
        with pytest.raises(InputError) as excinfo:
            run_function(BALANCE, "Account", "addBalance", this={"id": "", "name": "", "balance": "ten"}, args=[1])
        assert excinfo.value.field == "this.balance"

    def test_receiver_missing_field(self):
        with pytest.raises(InputError) as excinfo:
            run_function(BALANCE, "Account", "addBalance", this={"id": ""}, args=[1])
        assert excinfo.value.field == "this.name"

    def test_receiver_unknown_field(self):
        with pytest.raises(InputError, match="unknown field"):
            run_function(BALANCE, "Account", "addBalance", this={"id": "", "name": "", "balance": 0, "x": 1}, args=[1])

    def test_salt_count_must_match_fields(self):
        with pytest.raises(InputError) as excinfo:
            run_function(BALANCE, "Account", "addBalance", args=[1], this_salts=[0])
        assert excinfo.value.field == "this_salts"

    def test_malformed_caller_key(self):
        with pytest.raises(KeyFormatError):
            run_function(BALANCE, "Account", "addBalance", args=[1], caller_key="00" * 10)

    def test_input_error_message_names_field(self):
        with pytest.raises(InputError, match="Invalid input for 'amount'"):
            run_function(BALANCE, "Account", "addBalance", args=["x"])

    def test_inputs_for_other_function_rejected(self):
        program = link(BALANCE, "Account", "addBalance")
        inputs = Inputs.build(link(BALANCE, "Account", ".readAuth").abi)
        with pytest.raises(LinkError):
            run(program, inputs)


class TestOtherRecords:
    """Tests for records supplied alongside the receiver."""

    SOURCE = """
    contract User {
        id: string;
        name: string;
    }

    contract Account {
        id: string;
        owner: User;
        ownerName: string;

        @call
        sync() {
            this.ownerName = this.owner.name;
        }

        @call
        syncIf(enabled: boolean) {
            if (enabled) {
                this.ownerName = this.owner.name;
            }
        }

        @call
        syncUnlessDone(done: boolean) {
            if (done) {
                return;
            }
            this.ownerName = this.owner.name;
        }
    }
    """

    def test_reads_through_reference(self):
        output = run_function(
            self.SOURCE, "Account", "sync",
            this={"id": "", "owner": {"id": "u1"}, "ownerName": ""},
            other_records={"User": [({"id": "u1", "name": "Ann"}, [0, 0]), {"id": "u2", "name": "Bob"}]},
        )
        assert _field(output, "ownerName") == StringValue("Ann")

    def test_missing_record_type(self):
        with pytest.raises(InputError) as excinfo:
            run_function(self.SOURCE, "Account", "sync", this={"id": "", "owner": "u1", "ownerName": ""})
        assert excinfo.value.field == "other_records.User"

    def test_unreferenced_record_type(self):
        with pytest.raises(InputError) as excinfo:
            run_function(
                self.SOURCE, "Account", "sync",
                this={"id": "", "owner": "u1", "ownerName": ""},
                other_records={"User": [], "Ghost": []},
            )
        assert excinfo.value.field == "other_records.Ghost"

    def test_dangling_reference(self):
        with pytest.raises(InputError) as excinfo:
            run_function(
                self.SOURCE, "Account", "sync",
                this={"id": "", "owner": "u9", "ownerName": ""},
                other_records={"User": [{"id": "u1", "name": "Ann"}]},
            )
        assert excinfo.value.field == "this.owner"

    def test_empty_required_reference_is_input_error(self):
        assert link(self.SOURCE, "Account", "sync").abi.required_references == ("owner",)
        with pytest.raises(InputError) as excinfo:
            run_function(
                self.SOURCE, "Account", "sync",
                this={"id": "", "owner": "", "ownerName": ""},
                other_records={"User": []},
            )
        assert excinfo.value.field == "this.owner"

    def test_conditional_reference_may_be_empty(self):
        program = link(self.SOURCE, "Account", "syncIf")
        assert program.abi.required_references == ()
        output = run_function(
            program, "Account", "syncIf",
            this={"id": "", "owner": "", "ownerName": "old"},
            args=[False],
            other_records={"User": []},
        )
        assert _field(output, "ownerName") == StringValue("")

    def test_conditional_deref_of_empty_reference_aborts(self):
        with pytest.raises(ExecutionError, match="was not supplied"):
            run_function(
                self.SOURCE, "Account", "syncIf",
                this={"id": "", "owner": "", "ownerName": ""},
                args=[True],
                other_records={"User": []},
            )

    def test_deref_after_early_return_is_not_required(self):
        program = link(self.SOURCE, "Account", "syncUnlessDone")
        assert program.abi.required_references == ()
        run_function(
            program, "Account", "syncUnlessDone",
            this={"id": "", "owner": "", "ownerName": ""},
            args=[True],
            other_records={"User": []},
        )
