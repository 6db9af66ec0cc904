from __future__ import annotations

import pytest

from backend.app.engine.program_syntax import (
    CallExpression,
    ExportDeclaration,
    FunctionExpression,
    ImportDeclaration,
    MemberExpression,
    NumberLiteral,
    ProgramSyntaxError,
    ReturnStatement,
    VariableDeclaration,
    parse_program,
    tokenize,
)


def test_tokenizer_skips_comments_and_tracks_lines() -> None:
    tokens = tokenize("// heading\nconst a = 0x10; /* block */\nconst b = 1e3;")

    values = [token.value for token in tokens if token.kind != "eof"]
    assert values == ["const", "a", "=", "0x10", ";", "const", "b", "=", "1e3", ";"]
    assert tokens[0].line == 2
    assert tokens[5].line == 3


def test_hex_and_exponent_numbers_are_decoded() -> None:
    program = parse_program("const a = 0xff; const b = 2.5e2;")

    first, second = program.body
    assert isinstance(first, VariableDeclaration)
    assert isinstance(first.declarations[0].init, NumberLiteral)
    assert first.declarations[0].init.value == 255.0
    assert second.declarations[0].init.value == 250.0


def test_generated_program_shape_is_understood() -> None:
    source = """
    import { Fn, sin, time } from 'three/tsl';

    const shader = Fn(() => {
      const t = time;
      const wave = sin(t.mul(2));
      return wave;
    });

    export default shader;
    """

    program = parse_program(source)

    assert isinstance(program.body[0], ImportDeclaration)
    declaration = program.body[1]
    assert isinstance(declaration, VariableDeclaration)
    call = declaration.declarations[0].init
    assert isinstance(call, CallExpression)
    function = call.arguments[0]
    assert isinstance(function, FunctionExpression)
    assert isinstance(function.body[-1], ReturnStatement)
    wave = function.body[1].declarations[0].init
    assert isinstance(wave.arguments[0], CallExpression)
    assert isinstance(wave.arguments[0].callee, MemberExpression)
    assert wave.arguments[0].callee.property == "mul"
    assert isinstance(program.body[2], ExportDeclaration)


def test_semicolons_are_optional() -> None:
    program = parse_program("const a = float(1)\nconst b = float(2)\n")

    assert len(program.body) == 2


def test_syntax_errors_carry_line_and_column() -> None:
    with pytest.raises(ProgramSyntaxError) as excinfo:
        parse_program("const a = 1;\nconst = 2;")

    assert excinfo.value.line == 2
    assert excinfo.value.column == 7


def test_unterminated_string_is_rejected() -> None:
    with pytest.raises(ProgramSyntaxError):
        parse_program("const a = 'open")


@pytest.mark.parametrize(
    "literal",
    ["²", "0x_", "0x" + "f" * 300, "1e999"],
)
def test_malformed_numbers_raise_positioned_errors(literal: str) -> None:
    with pytest.raises(ProgramSyntaxError) as excinfo:
        parse_program(f"const ok = 1;\nconst a = {literal};")

    assert excinfo.value.line == 2
    assert excinfo.value.column == 11


def test_non_ascii_digits_are_not_numbers() -> None:
    with pytest.raises(ProgramSyntaxError) as excinfo:
        tokenize("const a = ٣;")

    assert "Unexpected character" in excinfo.value.message


@pytest.mark.parametrize(
    "expression",
    [
        "(" * 400 + "1" + ")" * 400,
        "!" * 2000 + "1",
        " ** ".join(["2"] * 2000),
        "[" * 400 + "]" * 400,
    ],
)
def test_deep_nesting_raises_syntax_error(expression: str) -> None:
    with pytest.raises(ProgramSyntaxError) as excinfo:
        parse_program(f"const a = {expression};")

    assert excinfo.value.line == 1
    assert "nested too deeply" in excinfo.value.message


def test_moderate_nesting_still_parses() -> None:
    program = parse_program("const a = " + "(" * 30 + "1" + ")" * 30 + ";")

    assert program.body[0].declarations[0].init.value == 1.0
