"""Tests for the compiled program loader."""

import json

import pytest

from primitives.field import STARK_PRIME
from vm.errors import LoadError
from vm.program import ApTracking, Program

from tests.helpers import PUSH_IMM, RET


def artifact(**overrides):
    j = {
        "prime": hex(STARK_PRIME),
        "data": [hex(PUSH_IMM), "0x5", hex(RET)],
        "builtins": [],
        "hints": {
            "0": [{
                "code": "memory[ap] = segments.add()",
                "accessible_scopes": ["__main__", "__main__.main"],
                "flow_tracking_data": {
                    "ap_tracking": {"group": 1, "offset": 2},
                    "reference_ids": {"__main__.main.x": 0},
                },
            }],
        },
        "identifiers": {
            "__main__.main": {"type": "function", "pc": 0},
            "__main__.helper": {"type": "alias", "destination": "__main__.main"},
            "__main__.SIZE": {"type": "const", "value": 3},
            "__main__.NEG": {"type": "const", "value": "-0x1"},
        },
        "reference_manager": {
            "references": [
                {"pc": 0, "value": "[cast(fp + (-3), felt*)]",
                 "ap_tracking_data": {"group": 1, "offset": 0}},
            ],
        },
        "main_scope": "__main__",
    }
    j.update(overrides)
    return j


class TestProgramLoading:
    """Tests for Program.from_dict / Program.load."""

    def test_from_dict(self) -> None:
        program = Program.from_dict(artifact())
        assert program.data == [PUSH_IMM, 5, RET]
        assert program.main == 0
        assert program.start is None and program.end is None
        hint = program.hints[0][0]
        assert hint.code == "memory[ap] = segments.add()"
        assert hint.flow_tracking_data.ap_tracking == ApTracking(1, 2)
        assert hint.flow_tracking_data.reference_ids == {"__main__.main.x": 0}
        assert program.references[0].value == "[cast(fp + (-3), felt*)]"

    def test_load_from_file(self, tmp_path) -> None:
        path = tmp_path / "program.json"
        path.write_text(json.dumps(artifact()))
        assert Program.load(path).data == [PUSH_IMM, 5, RET]

    def test_invalid_json(self, tmp_path) -> None:
        path = tmp_path / "program.json"
        path.write_text("{")
        with pytest.raises(LoadError):
            Program.load(path)

    def test_start_and_end_labels(self) -> None:
        ids = artifact()["identifiers"]
        ids["__main__.__start__"] = {"type": "label", "pc": 1}
        ids["__main__.__end__"] = {"type": "label", "pc": 2}
        program = Program.from_dict(artifact(identifiers=ids))
        assert (program.start, program.end) == (1, 2)

    def test_missing_data_raises(self) -> None:
        j = artifact()
        del j["data"]
        with pytest.raises(LoadError):
            Program.from_dict(j)

    def test_missing_main_raises(self) -> None:
        ids = artifact()["identifiers"]
        del ids["__main__.main"], ids["__main__.helper"]
        with pytest.raises(LoadError, match="main"):
            Program.from_dict(artifact(identifiers=ids))

    def test_start_label_without_main(self) -> None:
        ids = {"__main__.__start__": {"type": "label", "pc": 0}}
        program = Program.from_dict(artifact(identifiers=ids))
        assert program.main is None
        assert program.start == 0

    def test_wrong_prime_raises(self) -> None:
        with pytest.raises(LoadError, match="prime"):
            Program.from_dict(artifact(prime="0x11"))


class TestProgramValidation:
    """Tests for load-time checks."""

    def test_unknown_builtin(self) -> None:
        with pytest.raises(LoadError, match="keccak"):
            Program(data=[RET], builtins=["output", "keccak"])

    def test_non_canonical_builtin_order(self) -> None:
        with pytest.raises(LoadError):
            Program(data=[RET], builtins=["range_check", "output"])

    def test_repeated_builtin(self) -> None:
        with pytest.raises(LoadError):
            Program(data=[RET], builtins=["output", "output"])

    def test_canonical_order_accepted(self) -> None:
        program = Program(data=[RET], builtins=["output", "pedersen", "range_check", "poseidon"])
        assert program.builtins[-1] == "poseidon"

    def test_data_must_be_field_elements(self) -> None:
        with pytest.raises(LoadError):
            Program(data=[STARK_PRIME])

    def test_no_entry_point(self) -> None:
        with pytest.raises(LoadError, match="__start__"):
            Program(data=[RET], main=None)

    def test_hint_outside_program(self) -> None:
        with pytest.raises(LoadError):
            Program(data=[RET], hints={3: []})


class TestIdentifiers:
    """Tests for identifier lookups."""

    def test_alias_is_followed(self) -> None:
        program = Program.from_dict(artifact())
        assert program.get_label("__main__.helper") == 0

    def test_const(self) -> None:
        program = Program.from_dict(artifact())
        assert program.get_const("__main__.SIZE") == 3
        assert program.get_const("__main__.NEG") == -1

    def test_missing_identifier(self) -> None:
        program = Program.from_dict(artifact())
        with pytest.raises(KeyError):
            program.get_identifier("__main__.nope")
