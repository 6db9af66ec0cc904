from __future__ import annotations

import math
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterator

KEYWORDS = frozenset(
    {
        "import",
        "export",
        "const",
        "let",
        "var",
        "return",
        "function",
        "new",
        "if",
        "else",
        "default",
        "typeof",
    }
)
PUNCTUATORS = (
    "===",
    "!==",
    "**=",
    "...",
    "=>",
    "==",
    "!=",
    "<=",
    ">=",
    "&&",
    "||",
    "??",
    "?.",
    "**",
    "++",
    "--",
    "+=",
    "-=",
    "*=",
    "/=",
    "%=",
    "{",
    "}",
    "(",
    ")",
    "[",
    "]",
    ";",
    ",",
    ".",
    "<",
    ">",
    "+",
    "-",
    "*",
    "/",
    "%",
    "=",
    "!",
    "?",
    ":",
    "&",
    "|",
    "^",
    "~",
)
BINARY_PRECEDENCE: dict[str, int] = {
    "??": 1,
    "||": 2,
    "&&": 3,
    "|": 4,
    "^": 5,
    "&": 6,
    "==": 7,
    "!=": 7,
    "===": 7,
    "!==": 7,
    "<": 8,
    ">": 8,
    "<=": 8,
    ">=": 8,
    "+": 9,
    "-": 9,
    "*": 10,
    "/": 10,
    "%": 10,
    "**": 11,
}
ASSIGNMENT_OPERATORS = frozenset({"=", "+=", "-=", "*=", "/=", "%=", "**="})
UNARY_OPERATORS = frozenset({"-", "+", "!", "~", "typeof"})
DECIMAL_DIGITS = frozenset("0123456789")
HEX_DIGITS = frozenset("0123456789abcdefABCDEF_")
MAX_NESTING_DEPTH = 64


class ProgramSyntaxError(Exception):
    def __init__(self, message: str, line: int, column: int):
        self.message = message
        self.line = line
        self.column = column
        super().__init__(f"{message} ({line}:{column})")


@dataclass(slots=True)
class Token:
    kind: str
    value: str
    position: int
    line: int
    column: int


# Expressions


@dataclass(slots=True)
class Identifier:
    name: str


@dataclass(slots=True)
class NumberLiteral:
    value: float
    raw: str


@dataclass(slots=True)
class StringLiteral:
    value: str


@dataclass(slots=True)
class TemplateLiteral:
    raw: str


@dataclass(slots=True)
class ArrayLiteral:
    elements: list[object] = field(default_factory=list)


@dataclass(slots=True)
class Property:
    key: str
    value: object
    shorthand: bool = False


@dataclass(slots=True)
class ObjectLiteral:
    properties: list[Property] = field(default_factory=list)


@dataclass(slots=True)
class Spread:
    argument: object


@dataclass(slots=True)
class CallExpression:
    callee: object
    arguments: list[object] = field(default_factory=list)


@dataclass(slots=True)
class NewExpression:
    callee: object
    arguments: list[object] = field(default_factory=list)


@dataclass(slots=True)
class MemberExpression:
    object: object
    property: str | None
    computed: object | None = None


@dataclass(slots=True)
class UnaryExpression:
    operator: str
    argument: object


@dataclass(slots=True)
class BinaryExpression:
    operator: str
    left: object
    right: object


@dataclass(slots=True)
class ConditionalExpression:
    test: object
    consequent: object
    alternate: object


@dataclass(slots=True)
class AssignmentExpression:
    operator: str
    target: object
    value: object


@dataclass(slots=True)
class FunctionExpression:
    params: list[str]
    body: list[object] | object
    name: str | None = None


# Statements


@dataclass(slots=True)
class ImportDeclaration:
    specifiers: list[str]
    source: str


@dataclass(slots=True)
class ExportDeclaration:
    declaration: object


@dataclass(slots=True)
class VariableDeclarator:
    name: str
    init: object | None


@dataclass(slots=True)
class VariableDeclaration:
    kind: str
    declarations: list[VariableDeclarator]


@dataclass(slots=True)
class ReturnStatement:
    argument: object | None


@dataclass(slots=True)
class ExpressionStatement:
    expression: object


@dataclass(slots=True)
class BlockStatement:
    body: list[object]


@dataclass(slots=True)
class IfStatement:
    test: object
    consequent: object
    alternate: object | None


@dataclass(slots=True)
class Program:
    body: list[object]


def tokenize(source: str) -> list[Token]:
    tokens: list[Token] = []
    index = 0
    line = 1
    line_start = 0
    length = len(source)

    def error(message: str, at: int) -> ProgramSyntaxError:
        return ProgramSyntaxError(message, line, at - line_start + 1)

    while index < length:
        char = source[index]

        if char == "\n":
            index += 1
            line += 1
            line_start = index
            continue

        if char.isspace():
            index += 1
            continue

        if source.startswith("//", index):
            newline = source.find("\n", index)
            index = length if newline == -1 else newline
            continue

        if source.startswith("/*", index):
            end = source.find("*/", index + 2)
            if end == -1:
                raise error("Unterminated comment", index)
            comment = source[index : end + 2]
            newlines = comment.count("\n")
            if newlines:
                line += newlines
                line_start = index + comment.rfind("\n") + 1
            index = end + 2
            continue

        column = index - line_start + 1

        if char.isalpha() or char in "_$":
            start = index
            index += 1
            while index < length and (source[index].isalnum() or source[index] in "_$"):
                index += 1
            word = source[start:index]
            kind = "keyword" if word in KEYWORDS else "identifier"
            tokens.append(Token(kind=kind, value=word, position=start, line=line, column=column))
            continue

        if char in DECIMAL_DIGITS or (char == "." and index + 1 < length and source[index + 1] in DECIMAL_DIGITS):
            start = index
            if source.startswith(("0x", "0X"), index):
                index += 2
                while index < length and source[index] in HEX_DIGITS:
                    index += 1
                if not source[start + 2 : index].replace("_", ""):
                    raise error("Invalid hexadecimal literal", start)
            else:
                while index < length and (source[index] in DECIMAL_DIGITS or source[index] == "_"):
                    index += 1
                if index < length and source[index] == ".":
                    index += 1
                    while index < length and (source[index] in DECIMAL_DIGITS or source[index] == "_"):
                        index += 1
                if index < length and source[index] in "eE":
                    exponent = index + 1
                    if exponent < length and source[exponent] in "+-":
                        exponent += 1
                    if exponent >= length or source[exponent] not in DECIMAL_DIGITS:
                        raise error("Invalid number exponent", index)
                    index = exponent
                    while index < length and source[index] in DECIMAL_DIGITS:
                        index += 1
            if index < length and (source[index].isalpha() or source[index] == "_"):
                raise error(f"Unexpected character '{source[index]}' after number", index)
            tokens.append(Token(kind="number", value=source[start:index], position=start, line=line, column=column))
            continue

        if char in {"'", '"'}:
            start = index
            index += 1
            chars: list[str] = []
            while True:
                if index >= length or source[index] == "\n":
                    raise error("Unterminated string literal", start)
                current = source[index]
                if current == "\\" and index + 1 < length:
                    chars.append(source[index + 1])
                    index += 2
                    continue
                if current == char:
                    index += 1
                    break
                chars.append(current)
                index += 1
            tokens.append(Token(kind="string", value="".join(chars), position=start, line=line, column=column))
            continue

        if char == "`":
            start = index
            index += 1
            depth = 0
            while True:
                if index >= length:
                    raise error("Unterminated template literal", start)
                current = source[index]
                if current == "\\":
                    index += 2
                    continue
                if current == "\n":
                    line += 1
                    line_start = index + 1
                elif source.startswith("${", index):
                    depth += 1
                    index += 2
                    continue
                elif current == "}" and depth:
                    depth -= 1
                elif current == "`" and not depth:
                    index += 1
                    break
                index += 1
            tokens.append(
                Token(kind="template", value=source[start + 1 : index - 1], position=start, line=line, column=column)
            )
            continue

        for punctuator in PUNCTUATORS:
            if source.startswith(punctuator, index):
                tokens.append(Token(kind="punct", value=punctuator, position=index, line=line, column=column))
                index += len(punctuator)
                break
        else:
            raise error(f"Unexpected character '{char}'", index)

    tokens.append(Token(kind="eof", value="", position=length, line=line, column=length - line_start + 1))
    return tokens


class ProgramSyntaxParser:
    """Recursive-descent parser for the JavaScript subset shader programs use.

    Covers module imports and exports, variable declarations, arrow and
    function expressions, calls, member chains, ``new`` expressions, object
    and array literals, and the usual unary, binary and conditional operators.
    Anything else raises :class:`ProgramSyntaxError` with the offending position.
    """

    def __init__(self, source: str) -> None:
        self._tokens = tokenize(source)
        self._index = 0
        self._depth = 0

    def parse(self) -> Program:
        body: list[object] = []
        while not self._at("eof"):
            body.append(self._parse_statement())
        return Program(body=body)

    def _peek(self, offset: int = 0) -> Token:
        index = min(self._index + offset, len(self._tokens) - 1)
        return self._tokens[index]

    def _consume(self) -> Token:
        token = self._tokens[self._index]
        if token.kind != "eof":
            self._index += 1
        return token

    def _at(self, kind: str, value: str | None = None) -> bool:
        token = self._peek()
        return token.kind == kind and (value is None or token.value == value)

    def _at_punct(self, *values: str) -> bool:
        token = self._peek()
        return token.kind == "punct" and token.value in values

    def _accept(self, kind: str, value: str) -> bool:
        if self._at(kind, value):
            self._consume()
            return True
        return False

    def _expect(self, kind: str, value: str | None = None) -> Token:
        token = self._peek()
        if token.kind != kind or (value is not None and token.value != value):
            expected = f"'{value}'" if value is not None else kind
            raise self._error(f"Expected {expected}", token)
        return self._consume()

    def _expect_name(self) -> str:
        token = self._peek()
        if token.kind not in {"identifier", "keyword"}:
            raise self._error("Expected identifier", token)
        return self._consume().value

    @staticmethod
    def _error(message: str, token: Token) -> ProgramSyntaxError:
        found = "end of input" if token.kind == "eof" else f"'{token.value}'"
        return ProgramSyntaxError(f"{message} but found {found}", token.line, token.column)

    @contextmanager
    def _nested(self) -> Iterator[None]:
        token = self._peek()
        self._depth += 1
        try:
            if self._depth > MAX_NESTING_DEPTH:
                raise ProgramSyntaxError("Program is nested too deeply", token.line, token.column)
            yield
        finally:
            self._depth -= 1

    def _end_statement(self) -> None:
        self._accept("punct", ";")

    # Statements

    def _parse_statement(self) -> object:
        with self._nested():
            return self._parse_statement_body()

    def _parse_statement_body(self) -> object:
        token = self._peek()
        if token.kind == "punct" and token.value == ";":
            self._consume()
            return ExpressionStatement(expression=None)
        if token.kind == "punct" and token.value == "{":
            return BlockStatement(body=self._parse_block())
        if token.kind == "keyword":
            if token.value == "import":
                return self._parse_import()
            if token.value == "export":
                return self._parse_export()
            if token.value in {"const", "let", "var"}:
                declaration = self._parse_variable_declaration()
                self._end_statement()
                return declaration
            if token.value == "return":
                return self._parse_return()
            if token.value == "function":
                return self._parse_function()
            if token.value == "if":
                return self._parse_if()
        expression = self._parse_expression()
        self._end_statement()
        return ExpressionStatement(expression=expression)

    def _parse_block(self) -> list[object]:
        self._expect("punct", "{")
        body: list[object] = []
        while not self._at_punct("}"):
            if self._at("eof"):
                raise self._error("Expected '}'", self._peek())
            body.append(self._parse_statement())
        self._consume()
        return body

    def _parse_import(self) -> ImportDeclaration:
        self._expect("keyword", "import")
        specifiers: list[str] = []
        if self._at("string"):
            source = self._consume().value
            self._end_statement()
            return ImportDeclaration(specifiers=specifiers, source=source)

        if self._at("identifier"):
            specifiers.append(self._consume().value)
            self._accept("punct", ",")
        if self._accept("punct", "*"):
            self._expect("identifier", "as")
            specifiers.append(self._expect_name())
        elif self._accept("punct", "{"):
            while not self._at_punct("}"):
                imported = self._expect_name()
                local = imported
                if self._at("identifier", "as"):
                    self._consume()
                    local = self._expect_name()
                specifiers.append(local)
                if not self._accept("punct", ","):
                    break
            self._expect("punct", "}")
        self._expect("identifier", "from")
        source = self._expect("string").value
        self._end_statement()
        return ImportDeclaration(specifiers=specifiers, source=source)

    def _parse_export(self) -> ExportDeclaration:
        self._expect("keyword", "export")
        if self._accept("keyword", "default"):
            if self._at("keyword", "function"):
                return ExportDeclaration(declaration=self._parse_function())
            expression = self._parse_expression()
            self._end_statement()
            return ExportDeclaration(declaration=ExpressionStatement(expression=expression))
        if self._at("keyword") and self._peek().value in {"const", "let", "var"}:
            declaration = self._parse_variable_declaration()
            self._end_statement()
            return ExportDeclaration(declaration=declaration)
        if self._at("keyword", "function"):
            return ExportDeclaration(declaration=self._parse_function())
        if self._accept("punct", "{"):
            names: list[str] = []
            while not self._at_punct("}"):
                names.append(self._expect_name())
                if self._at("identifier", "as"):
                    self._consume()
                    self._expect_name()
                if not self._accept("punct", ","):
                    break
            self._expect("punct", "}")
            self._end_statement()
            exported = ArrayLiteral(elements=[Identifier(name=name) for name in names])
            return ExportDeclaration(declaration=ExpressionStatement(expression=exported))
        raise self._error("Unsupported export", self._peek())

    def _parse_variable_declaration(self) -> VariableDeclaration:
        kind = self._consume().value
        declarations: list[VariableDeclarator] = []
        while True:
            token = self._peek()
            if token.kind != "identifier":
                raise self._error("Expected variable name (destructuring is not supported)", token)
            name = self._consume().value
            init = None
            if self._accept("punct", "="):
                init = self._parse_assignment()
            elif kind == "const":
                raise self._error("Missing initializer in const declaration", self._peek())
            declarations.append(VariableDeclarator(name=name, init=init))
            if not self._accept("punct", ","):
                break
        return VariableDeclaration(kind=kind, declarations=declarations)

    def _parse_return(self) -> ReturnStatement:
        self._expect("keyword", "return")
        if self._at_punct(";", "}") or self._at("eof"):
            self._end_statement()
            return ReturnStatement(argument=None)
        argument = self._parse_expression()
        self._end_statement()
        return ReturnStatement(argument=argument)

    def _parse_if(self) -> IfStatement:
        self._expect("keyword", "if")
        self._expect("punct", "(")
        test = self._parse_expression()
        self._expect("punct", ")")
        consequent = self._parse_statement()
        alternate = None
        if self._accept("keyword", "else"):
            alternate = self._parse_statement()
        return IfStatement(test=test, consequent=consequent, alternate=alternate)

    def _parse_function(self) -> FunctionExpression:
        self._expect("keyword", "function")
        name = None
        if self._at("identifier"):
            name = self._consume().value
        params = self._parse_parameters()
        body = self._parse_block()
        return FunctionExpression(params=params, body=body, name=name)

    def _parse_parameters(self) -> list[str]:
        self._expect("punct", "(")
        params: list[str] = []
        while not self._at_punct(")"):
            self._accept("punct", "...")
            if self._at_punct("{", "["):
                raise self._error("Destructured parameters are not supported", self._peek())
            params.append(self._expect("identifier").value)
            if self._accept("punct", "="):
                self._parse_assignment()
            if not self._accept("punct", ","):
                break
        self._expect("punct", ")")
        return params

    # Expressions

    def _parse_expression(self) -> object:
        expression = self._parse_assignment()
        while self._accept("punct", ","):
            expression = self._parse_assignment()
        return expression

    def _parse_assignment(self) -> object:
        with self._nested():
            return self._parse_assignment_body()

    def _parse_assignment_body(self) -> object:
        if self._is_arrow_ahead():
            return self._parse_arrow()
        target = self._parse_conditional()
        token = self._peek()
        if token.kind == "punct" and token.value in ASSIGNMENT_OPERATORS:
            if not isinstance(target, (Identifier, MemberExpression)):
                raise self._error("Invalid assignment target", token)
            operator = self._consume().value
            value = self._parse_assignment()
            return AssignmentExpression(operator=operator, target=target, value=value)
        return target

    def _is_arrow_ahead(self) -> bool:
        token = self._peek()
        if token.kind == "identifier":
            following = self._peek(1)
            return following.kind == "punct" and following.value == "=>"
        if token.kind != "punct" or token.value != "(":
            return False
        depth = 0
        offset = 0
        while True:
            current = self._peek(offset)
            if current.kind == "eof":
                return False
            if current.kind == "punct" and current.value in {"(", "[", "{"}:
                depth += 1
            elif current.kind == "punct" and current.value in {")", "]", "}"}:
                depth -= 1
                if depth == 0:
                    following = self._peek(offset + 1)
                    return following.kind == "punct" and following.value == "=>"
            offset += 1

    def _parse_arrow(self) -> FunctionExpression:
        if self._at("identifier"):
            params = [self._consume().value]
        else:
            params = self._parse_parameters()
        self._expect("punct", "=>")
        if self._at_punct("{"):
            return FunctionExpression(params=params, body=self._parse_block())
        return FunctionExpression(params=params, body=self._parse_assignment())

    def _parse_conditional(self) -> object:
        test = self._parse_binary(0)
        if self._accept("punct", "?"):
            consequent = self._parse_assignment()
            self._expect("punct", ":")
            alternate = self._parse_assignment()
            return ConditionalExpression(test=test, consequent=consequent, alternate=alternate)
        return test

    def _parse_binary(self, min_precedence: int) -> object:
        left = self._parse_unary()
        while True:
            token = self._peek()
            precedence = BINARY_PRECEDENCE.get(token.value) if token.kind == "punct" else None
            if precedence is None or precedence <= min_precedence:
                return left
            operator = self._consume().value
            # ** is right-associative
            next_min = precedence - 1 if operator == "**" else precedence
            with self._nested():
                right = self._parse_binary(next_min)
            left = BinaryExpression(operator=operator, left=left, right=right)

    def _parse_unary(self) -> object:
        token = self._peek()
        if token.kind in {"punct", "keyword"} and token.value in UNARY_OPERATORS:
            operator = self._consume().value
            with self._nested():
                return UnaryExpression(operator=operator, argument=self._parse_unary())
        if token.kind == "punct" and token.value in {"++", "--"}:
            raise self._error("Update expressions are not supported", token)
        return self._parse_postfix()

    def _parse_postfix(self) -> object:
        if self._at("keyword", "new"):
            expression = self._parse_new()
        else:
            expression = self._parse_primary()
        while True:
            if self._accept("punct", "."):
                expression = MemberExpression(object=expression, property=self._expect_name())
            elif self._accept("punct", "?."):
                if self._at_punct("("):
                    expression = CallExpression(callee=expression, arguments=self._parse_arguments())
                else:
                    expression = MemberExpression(object=expression, property=self._expect_name())
            elif self._accept("punct", "["):
                computed = self._parse_expression()
                self._expect("punct", "]")
                expression = MemberExpression(object=expression, property=None, computed=computed)
            elif self._at_punct("("):
                expression = CallExpression(callee=expression, arguments=self._parse_arguments())
            else:
                return expression

    def _parse_new(self) -> NewExpression:
        self._expect("keyword", "new")
        callee: object = Identifier(name=self._expect("identifier").value)
        while self._accept("punct", "."):
            callee = MemberExpression(object=callee, property=self._expect_name())
        arguments = self._parse_arguments() if self._at_punct("(") else []
        return NewExpression(callee=callee, arguments=arguments)

    def _parse_arguments(self) -> list[object]:
        self._expect("punct", "(")
        arguments: list[object] = []
        while not self._at_punct(")"):
            if self._accept("punct", "..."):
                arguments.append(Spread(argument=self._parse_assignment()))
            else:
                arguments.append(self._parse_assignment())
            if not self._accept("punct", ","):
                break
        self._expect("punct", ")")
        return arguments

    def _parse_primary(self) -> object:
        token = self._peek()

        if token.kind == "identifier":
            self._consume()
            return Identifier(name=token.value)

        if token.kind == "number":
            self._consume()
            return NumberLiteral(value=self._number_value(token), raw=token.value)

        if token.kind == "string":
            self._consume()
            return StringLiteral(value=token.value)

        if token.kind == "template":
            self._consume()
            return TemplateLiteral(raw=token.value)

        if token.kind == "keyword" and token.value == "function":
            return self._parse_function()

        if token.kind == "punct" and token.value == "(":
            self._consume()
            expression = self._parse_expression()
            self._expect("punct", ")")
            return expression

        if token.kind == "punct" and token.value == "[":
            self._consume()
            elements: list[object] = []
            while not self._at_punct("]"):
                if self._accept("punct", "..."):
                    elements.append(Spread(argument=self._parse_assignment()))
                else:
                    elements.append(self._parse_assignment())
                if not self._accept("punct", ","):
                    break
            self._expect("punct", "]")
            return ArrayLiteral(elements=elements)

        if token.kind == "punct" and token.value == "{":
            return self._parse_object()

        raise self._error("Unexpected token", token)

    def _parse_object(self) -> ObjectLiteral:
        self._expect("punct", "{")
        properties: list[Property] = []
        while not self._at_punct("}"):
            if self._accept("punct", "..."):
                properties.append(Property(key="...", value=Spread(argument=self._parse_assignment())))
            else:
                key_token = self._peek()
                if key_token.kind in {"identifier", "keyword", "string"}:
                    key = self._consume().value
                elif key_token.kind == "number":
                    key = self._consume().value
                else:
                    raise self._error("Expected property name", key_token)

                if self._accept("punct", ":"):
                    properties.append(Property(key=key, value=self._parse_assignment()))
                elif self._at_punct("("):
                    params = self._parse_parameters()
                    body = self._parse_block()
                    properties.append(Property(key=key, value=FunctionExpression(params=params, body=body, name=key)))
                elif key_token.kind == "identifier":
                    properties.append(Property(key=key, value=Identifier(name=key), shorthand=True))
                else:
                    raise self._error("Expected ':'", self._peek())
            if not self._accept("punct", ","):
                break
        self._expect("punct", "}")
        return ObjectLiteral(properties=properties)

    @staticmethod
    def _number_value(token: Token) -> float:
        raw = token.value.replace("_", "")
        message = f"Invalid number literal '{token.value}'"
        try:
            value = float(int(raw[2:], 16)) if raw[:2].lower() == "0x" else float(raw)
        except (OverflowError, ValueError) as exc:
            raise ProgramSyntaxError(message, token.line, token.column) from exc
        if math.isinf(value):
            raise ProgramSyntaxError(message, token.line, token.column)
        return value


def parse_program(source: str) -> Program:
    try:
        return ProgramSyntaxParser(source).parse()
    except RecursionError as exc:
        raise ProgramSyntaxError("Program is nested too deeply", 1, 1) from exc
