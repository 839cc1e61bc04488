"""Authorization scenarios: call policies, delegates, literal keys and read checks."""

import pytest

from contractvm.api import link, run_function
from contractvm.codes import ErrorCode
from contractvm.kernel.errors import AuthorizationError, ExecutionError, InputError
from contractvm.kernel.hash_utils import commit_field
from contractvm.kernel.types import (
    PUBLIC_KEY,
    ContractReferenceType,
    ContractReferenceValue,
    PublicKeyValue,
    StringValue,
    StructValue,
)

PK_ACCOUNT = """
contract Account {
    id: string;
    pk: PublicKey;

    constructor (id: string, pk: PublicKey) {
        this.id = id;
        this.pk = pk;
    }

    @call(pk)
    changePk(newPk: PublicKey) {
        this.pk = newPk;
    }
}
"""

NAME_ACCOUNT = """
{directives}
contract Account {{
    id: string;
    name: string;

    setName(name: string) {{
        this.name = name;
    }}
}}
"""

DELEGATE_ACCOUNT = """
contract User {
    id: string;
    @delegate
    pk: PublicKey;
}

contract Account {
    id: string;
    name: string;
    user: User;

    @call(user)
    changeName(name: string) {
        this.name = name;
    }
}
"""

READ_FIELD = """
@private
contract Account {
    id: string;
    @read
    pk: PublicKey;
}
"""

READ_RECORD = """
@read
contract Account {
    id: string;
    pk: PublicKey;
}
"""


def _run(source, function, this, args=(), caller_key=None, other_records=None, contract="Account"):
    program = link(source, contract, function)
    output = run_function(
        program, contract, function,
        this=this, args=args, caller_key=caller_key, other_records=other_records,
    )
    return program.abi, output


def _literal_account(key_hex):
    return f"""
    contract Account {{
        id: string;
        name: string;

        @call(eth#{key_hex})
        changeName(name: string) {{
            this.name = name;
        }}
    }}
    """


class TestRecordCallDirective:
    """Tests for record-level @call and the default-deny rule."""

    def test_no_directive_is_denied(self):
        source = NAME_ACCOUNT.format(directives="")
        with pytest.raises(AuthorizationError) as excinfo:
            _run(source, "setName", {"id": "", "name": ""}, ["test"])
        assert excinfo.value.code == ErrorCode.UNAUTHORIZED
        assert "You are not authorized to call this function" in str(excinfo.value)

    def test_private_without_call_is_denied(self, pk1_json, pk2_json):
        source = """
        @private
        contract Account {
            id: string;
            pk: PublicKey;
            changePk(newPk: PublicKey) {
                this.pk = newPk;
            }
        }
        """
        with pytest.raises(AuthorizationError):
            _run(source, "changePk", {"id": "test", "pk": pk1_json}, [pk2_json])

    @pytest.mark.parametrize("keyword", ["contract", "collection"])
    def test_call_on_record_allows_anyone(self, keyword):
        source = NAME_ACCOUNT.format(directives="@call").replace("contract Account", f"{keyword} Account")
        abi, output = _run(source, "setName", {"id": "", "name": ""}, ["test"])
        assert output.this == StructValue((("id", StringValue("")), ("name", StringValue("test"))))
        assert output.hashes == ()
        assert abi.dependent_fields == ()

    def test_call_on_record_writes_key(self, pk1_json, pk2_json, pk2_key):
        source = """
        @call
        contract Account {
            id: string;
            pk: PublicKey;

            changePk(newPk: PublicKey) {
                this.pk = newPk;
            }
        }
        """
        abi, output = _run(source, "changePk", {"id": "test", "pk": pk1_json}, [pk2_json])
        assert output.this == StructValue((("id", StringValue("")), ("pk", PublicKeyValue(pk2_key))))
        assert abi.dependent_fields == (("pk", PUBLIC_KEY),)
        assert output.hashes == (commit_field("Account", "pk", 0, PublicKeyValue(pk2_key)),)


class TestConstructor:
    """Tests for constructor calls, which need no authorization."""

    def test_constructor_without_auth(self):
        source = """
        contract Account {
            id: string;
            constructor (id: string) {
                this.id = id;
            }
        }
        """
        abi, output = _run(source, "constructor", {"id": ""}, ["id1"])
        assert output.this == StructValue((("id", StringValue("id1")),))
        assert output.hashes == ()
        assert abi.dependent_fields == ()

    def test_constructor_captures_caller_key(self, pk1_key, pk2_json):
        source = """
        contract Account {
            id: string;
            pk: PublicKey;
            constructor (id: string) {
                this.id = id;
                if (ctx.publicKey)
                    this.pk = ctx.publicKey;
                else error("missing public key");
            }
        }
        """
        abi, output = _run(source, "constructor", {"id": "", "pk": pk2_json}, ["id1"], caller_key=pk1_key)
        assert output.this == StructValue((("id", StringValue("id1")), ("pk", PublicKeyValue(pk1_key))))
        assert abi.dependent_fields == (("pk", PUBLIC_KEY),)
        assert output.hashes == (commit_field("Account", "pk", 0, PublicKeyValue(pk1_key)),)

    def test_constructor_without_caller_key_aborts(self):
        source = """
        contract Account {
            id: string;
            pk: PublicKey;
            constructor (id: string) {
                if (ctx.publicKey)
                    this.pk = ctx.publicKey;
                else error("missing public key");
            }
        }
        """
        with pytest.raises(ExecutionError, match="missing public key"):
            _run(source, "constructor", None, ["id1"])


class TestFieldKey:
    """Tests for @call(<PublicKey field>)."""

    def test_correct_key(self, pk1_json, pk1_key, pk2_json, pk2_key):
        abi, output = _run(PK_ACCOUNT, "changePk", {"id": "test", "pk": pk1_json}, [pk2_json], caller_key=pk1_key)
        assert output.this == StructValue((("id", StringValue("")), ("pk", PublicKeyValue(pk2_key))))
        assert abi.dependent_fields == (("pk", PUBLIC_KEY),)
        assert output.hashes == (commit_field("Account", "pk", 0, PublicKeyValue(pk2_key)),)

    def test_wrong_key(self, pk1_json, pk2_json, pk2_key):
        with pytest.raises(AuthorizationError):
            _run(PK_ACCOUNT, "changePk", {"id": "test", "pk": pk1_json}, [pk2_json], caller_key=pk2_key)

    def test_no_key(self, pk1_json, pk2_json):
        with pytest.raises(AuthorizationError):
            _run(PK_ACCOUNT, "changePk", {"id": "test", "pk": pk1_json}, [pk2_json])

    def test_unset_field_never_matches(self, pk1_key, pk2_json):
        """A null key in the guarded field does not authorize anyone."""
        with pytest.raises(AuthorizationError):
            _run(PK_ACCOUNT, "changePk", {"id": "test", "pk": None}, [pk2_json], caller_key=pk1_key)

    def test_caller_key_accepts_hex(self, pk1_json, pk1_key, pk2_json):
        _, output = _run(
            PK_ACCOUNT, "changePk", {"id": "test", "pk": pk1_json}, [pk2_json],
            caller_key=pk1_key.to_64_byte_hex(),
        )
        assert output.this.get("pk") != PublicKeyValue(pk1_key)

    def test_function_call_without_arguments_allows_anyone(self, pk1_json, pk2_json, pk2_key):
        source = PK_ACCOUNT.replace("@call(pk)", "@call")
        abi, output = _run(source, "changePk", {"id": "test", "pk": pk1_json}, [pk2_json])
        assert output.this.get("pk") == PublicKeyValue(pk2_key)
        assert abi.dependent_fields == (("pk", PUBLIC_KEY),)
        assert output.hashes == (commit_field("Account", "pk", 0, PublicKeyValue(pk2_key)),)


class TestDelegate:
    """Tests for @call(<reference to a record with a @delegate key>)."""

    def _run_delegate(self, pk1_json, caller_key):
        return _run(
            DELEGATE_ACCOUNT, "changeName",
            {"id": "test", "name": "test", "user": {"id": "user1", "pk": pk1_json}},
            ["test2"],
            caller_key=caller_key,
            other_records={"User": [{"id": "user1", "pk": pk1_json}]},
        )

    def test_correct_key(self, pk1_json, pk1_key):
        abi, output = self._run_delegate(pk1_json, pk1_key)
        assert output.this == StructValue((
            ("id", StringValue("")),
            ("name", StringValue("test2")),
            ("user", ContractReferenceValue(b"user1")),
        ))
        assert abi.dependent_fields == (("user", ContractReferenceType(contract="User")),)
        assert [t.name for t in abi.other_contract_types] == ["User"]
        assert output.hashes == (commit_field("Account", "user", 0, ContractReferenceValue(b"user1")),)

    def test_wrong_key(self, pk1_json, pk2_key):
        with pytest.raises(AuthorizationError):
            self._run_delegate(pk1_json, pk2_key)

    def test_no_key(self, pk1_json):
        with pytest.raises(AuthorizationError):
            self._run_delegate(pk1_json, None)

    def test_empty_reference_is_input_error(self, pk1_key):
        assert link(DELEGATE_ACCOUNT, "Account", "changeName").abi.required_references == ("user",)
        with pytest.raises(InputError) as excinfo:
            _run(
                DELEGATE_ACCOUNT, "changeName",
                {"id": "test", "name": "test", "user": ""},
                ["test2"],
                caller_key=pk1_key,
                other_records={"User": []},
            )
        assert excinfo.value.field == "this.user"


class TestAnyOf:
    """Tests for @call with several arguments: the first satisfied one authorizes."""

    SOURCE = """
    contract User {
        id: string;
        @delegate
        pk: PublicKey;
    }

    contract Account {
        id: string;
        pk: PublicKey;
        user: User;
        name: string;

        @call(pk, user)
        changeName(name: string) {
            this.name = name;
        }
    }
    """

    def _run_any_of(self, pk1_json, user, caller_key, users=()):
        return _run(
            self.SOURCE, "changeName",
            {"id": "a", "pk": pk1_json, "user": user, "name": "old"},
            ["new"],
            caller_key=caller_key,
            other_records={"User": list(users)},
        )

    def test_key_field_authorizes_without_delegate(self, pk1_json, pk1_key):
        abi, output = self._run_any_of(pk1_json, "", pk1_key)
        assert output.this.get("name") == StringValue("new")
        assert abi.required_references == ()
        assert [name for name, _ in abi.dependent_fields] == ["pk", "user"]

    def test_delegate_authorizes(self, pk1_json, pk2_json, pk2_key):
        _, output = self._run_any_of(pk1_json, "u1", pk2_key, users=[{"id": "u1", "pk": pk2_json}])
        assert output.this.get("user") == ContractReferenceValue(b"u1")

    def test_unset_delegate_denies(self, pk1_json, pk2_key):
        with pytest.raises(AuthorizationError):
            self._run_any_of(pk1_json, "", pk2_key)

    def test_no_member_matches(self, pk1_json, pk2_key):
        with pytest.raises(AuthorizationError):
            self._run_any_of(pk1_json, "u1", pk2_key, users=[{"id": "u1", "pk": pk1_json}])


class TestLiteralKey:
    """Tests for @call(eth#<hex>)."""

    def test_correct_key(self, pk1_key):
        source = _literal_account(pk1_key.to_64_byte_hex())
        abi, output = _run(source, "changeName", {"id": "test", "name": "test"}, ["test2"], caller_key=pk1_key)
        assert output.this == StructValue((("id", StringValue("")), ("name", StringValue("test2"))))
        assert output.hashes == ()
        assert abi.dependent_fields == ()

    def test_wrong_key(self, pk1_key, pk2_key):
        source = _literal_account(pk1_key.to_64_byte_hex())
        with pytest.raises(AuthorizationError):
            _run(source, "changeName", {"id": "test", "name": "test"}, ["test2"], caller_key=pk2_key)

    def test_compressed_literal(self, pk1_key):
        source = _literal_account(pk1_key.to_compressed_33_byte_hex())
        abi, output = _run(source, "changeName", {"id": "test", "name": "test"}, ["test2"], caller_key=pk1_key)
        assert output.this == StructValue((("id", StringValue("")), ("name", StringValue("test2"))))
        assert abi.dependent_fields == ()


class TestReadAuth:
    """Tests for the synthesized .readAuth function."""

    def test_field_read_correct_caller(self, pk1_json, pk1_key):
        abi, output = _run(READ_FIELD, ".readAuth", {"id": "", "pk": pk1_json}, caller_key=pk1_key)
        assert output.read_auth is True
        assert abi.dependent_fields == (("pk", PUBLIC_KEY),)
        assert output.hashes == (commit_field("Account", "pk", 0, PublicKeyValue(pk1_key)),)

    def test_field_read_wrong_caller(self, pk1_json, pk2_key):
        _, output = _run(READ_FIELD, ".readAuth", {"id": "", "pk": pk1_json}, caller_key=pk2_key)
        assert output.read_auth is False

    def test_field_read_no_caller(self, pk1_json, pk1_key):
        abi, output = _run(READ_FIELD, ".readAuth", {"id": "", "pk": pk1_json})
        assert output.read_auth is False
        assert abi.dependent_fields == (("pk", PUBLIC_KEY),)
        assert output.hashes == (commit_field("Account", "pk", 0, PublicKeyValue(pk1_key)),)

    def test_record_read_with_caller(self, pk1_json, pk1_key):
        _, output = _run(READ_RECORD, ".readAuth", {"id": "", "pk": pk1_json}, caller_key=pk1_key)
        assert output.read_auth is True

    def test_record_read_without_caller(self, pk1_json):
        abi, output = _run(READ_RECORD, ".readAuth", {"id": "", "pk": pk1_json})
        assert output.read_auth is True
        assert abi.dependent_fields == ()
        assert output.hashes == ()

    def test_private_record_is_unreadable(self, pk1_key):
        source = "@private contract Account { id: string; }"
        _, output = _run(source, ".readAuth", {"id": "x"}, caller_key=pk1_key)
        assert output.read_auth is False

    def test_read_with_arguments(self, pk1_json, pk1_key, pk2_key):
        source = """
        @read(owner)
        contract Account {
            id: string;
            owner: PublicKey;
        }
        """
        _, allowed = _run(source, ".readAuth", {"id": "", "owner": pk1_json}, caller_key=pk1_key)
        _, denied = _run(source, ".readAuth", {"id": "", "owner": pk1_json}, caller_key=pk2_key)
        assert allowed.read_auth is True
        assert denied.read_auth is False

    def test_read_auth_result_is_boolean(self, pk1_json, pk1_key):
        _, output = _run(READ_FIELD, ".readAuth", {"id": "", "pk": pk1_json}, caller_key=pk1_key)
        assert output.result.value is True
        assert output.result_hash is not None
