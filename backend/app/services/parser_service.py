from __future__ import annotations

import logging
from dataclasses import dataclass, field

from backend.app.engine.program_syntax import (
    ArrayLiteral,
    AssignmentExpression,
    BinaryExpression,
    BlockStatement,
    CallExpression,
    ConditionalExpression,
    ExportDeclaration,
    ExpressionStatement,
    FunctionExpression,
    Identifier,
    IfStatement,
    MemberExpression,
    NewExpression,
    NumberLiteral,
    ObjectLiteral,
    ProgramSyntaxError,
    ReturnStatement,
    Spread,
    StringLiteral,
    TemplateLiteral,
    UnaryExpression,
    VariableDeclaration,
    parse_program,
)
from backend.app.models.graph import GraphEdge, GraphNode, new_node_id
from backend.app.models.operation import OperationParam, OperationSpec
from backend.app.models.program import ParsedProgram, ProgramError
from backend.app.services.operation_service import (
    OUTPUT_CHANNELS,
    OUTPUT_KIND,
    PRIMARY_OUTPUT_CHANNEL,
    SPLIT_KIND,
    OperationService,
)

logger = logging.getLogger(__name__)

OUTPUT_LABEL = "Output"
SCALE_METHOD = "mul"
NESTING_ERROR_MESSAGE = "Program is nested too deeply"
SPLIT_CHANNELS = frozenset("xyzw")
COLOR_CONSTRUCTORS = frozenset({"color", "Color"})
VECTOR_CONSTRUCTORS = frozenset({"vec2", "vec3", "vec4", "Vector2", "Vector3", "Vector4"})


@dataclass(slots=True)
class PortRef:
    node_id: str
    port_id: str


@dataclass(slots=True)
class Binding:
    node_id: str
    kind: str
    output_port: str


@dataclass(slots=True)
class _ReconstructionState:
    nodes: list[GraphNode] = field(default_factory=list)
    connections: list[GraphEdge] = field(default_factory=list)
    bindings: dict[str, Binding] = field(default_factory=dict)
    has_output: bool = False


def hex_color(value: float) -> str:
    return "#" + format(max(0, round(value)), "x").rjust(6, "0")


class ProgramParser:
    """Rebuilds a node graph from shader program text.

    Every node gets a fresh id and the program variable name as its label;
    identity is restored later by the merger. Declarations whose callee does
    not resolve in the registry are skipped without an error.
    """

    def __init__(self, operation_service: OperationService) -> None:
        self._operation_service = operation_service

    def parse(self, program_text: str) -> ParsedProgram:
        if not program_text.strip():
            return ParsedProgram()

        try:
            program = parse_program(program_text)
        except ProgramSyntaxError as exc:
            logger.debug("Program parse failed at %s:%s: %s", exc.line, exc.column, exc.message)
            return ParsedProgram(errors=[ProgramError(message=exc.message, line=exc.line, column=exc.column)])

        state = _ReconstructionState()
        try:
            self._walk_statements(program.body, state)
        except RecursionError:
            logger.debug("Program reconstruction exceeded the recursion limit")
            return ParsedProgram(errors=[ProgramError(message=NESTING_ERROR_MESSAGE, line=1, column=1)])

        if not state.has_output:
            self._create_output(state)

        return ParsedProgram(nodes=state.nodes, connections=state.connections)

    # Traversal

    def _walk_statements(self, statements: list[object], state: _ReconstructionState) -> None:
        for statement in statements:
            self._walk_statement(statement, state)

    def _walk_statement(self, statement: object, state: _ReconstructionState) -> None:
        if isinstance(statement, VariableDeclaration):
            for declarator in statement.declarations:
                if declarator.init is None:
                    continue
                self._visit_declaration(declarator.name, declarator.init, state)
                self._walk_nested(declarator.init, state)
        elif isinstance(statement, ReturnStatement):
            if statement.argument is not None:
                self._visit_return(statement.argument, state)
                self._walk_nested(statement.argument, state)
        elif isinstance(statement, ExportDeclaration):
            self._walk_statement(statement.declaration, state)
        elif isinstance(statement, ExpressionStatement):
            if statement.expression is not None:
                self._walk_nested(statement.expression, state)
        elif isinstance(statement, BlockStatement):
            self._walk_statements(statement.body, state)
        elif isinstance(statement, IfStatement):
            self._walk_statement(statement.consequent, state)
            if statement.alternate is not None:
                self._walk_statement(statement.alternate, state)
        elif isinstance(statement, FunctionExpression):
            self._walk_function(statement, state)

    def _walk_function(self, function: FunctionExpression, state: _ReconstructionState) -> None:
        if isinstance(function.body, list):
            self._walk_statements(function.body, state)
        else:
            self._walk_nested(function.body, state)

    def _walk_nested(self, expression: object, state: _ReconstructionState) -> None:
        """Descend into function bodies nested anywhere inside an expression."""
        if isinstance(expression, FunctionExpression):
            self._walk_function(expression, state)
        elif isinstance(expression, (CallExpression, NewExpression)):
            self._walk_nested(expression.callee, state)
            for argument in expression.arguments:
                self._walk_nested(argument, state)
        elif isinstance(expression, MemberExpression):
            self._walk_nested(expression.object, state)
        elif isinstance(expression, ObjectLiteral):
            for prop in expression.properties:
                self._walk_nested(prop.value, state)
        elif isinstance(expression, ArrayLiteral):
            for element in expression.elements:
                self._walk_nested(element, state)
        elif isinstance(expression, (BinaryExpression, AssignmentExpression)):
            left = expression.left if isinstance(expression, BinaryExpression) else expression.target
            right = expression.right if isinstance(expression, BinaryExpression) else expression.value
            self._walk_nested(left, state)
            self._walk_nested(right, state)
        elif isinstance(expression, ConditionalExpression):
            self._walk_nested(expression.consequent, state)
            self._walk_nested(expression.alternate, state)
        elif isinstance(expression, (UnaryExpression, Spread)):
            self._walk_nested(expression.argument, state)

    # Declarations

    def _visit_declaration(self, var_name: str, init: object, state: _ReconstructionState) -> None:
        if isinstance(init, Identifier):
            self._visit_identifier_declaration(var_name, init.name, state)
            return
        if isinstance(init, CallExpression):
            self._visit_call_declaration(var_name, init, state)

    def _visit_identifier_declaration(self, var_name: str, name: str, state: _ReconstructionState) -> None:
        # a declared variable shadows the binding of the same name
        source = self._resolve_reference(Identifier(name=name), state)
        if source is None:
            spec = self._operation_service.get_by_binding(name)
            if spec is not None and not spec.inputs and not spec.is_sink:
                node = self._create_node(spec, var_name, state)
                self._bind(var_name, node, spec, state)
            return

        split_spec = self._operation_service.get_operation(SPLIT_KIND)
        if split_spec is None:
            return
        node = self._create_node(split_spec, var_name, state)
        self._connect(source, node.id, split_spec.inputs[0].id, state)
        self._bind(var_name, node, split_spec, state)

    def _visit_call_declaration(self, var_name: str, call: CallExpression, state: _ReconstructionState) -> None:
        chained_object: object | None = None
        if isinstance(call.callee, Identifier):
            func_name = call.callee.name
        elif isinstance(call.callee, MemberExpression) and call.callee.property is not None:
            func_name = call.callee.property
            chained_object = call.callee.object
        else:
            return

        spec = self._operation_service.resolve(func_name)
        if spec is None or spec.is_sink:
            logger.debug("Skipping '%s': '%s' does not resolve to an operation", var_name, func_name)
            return

        node = self._create_node(spec, var_name, state)
        arguments = call.arguments

        if spec.named_parameters or (
            len(arguments) == 1 and isinstance(arguments[0], ObjectLiteral) and chained_object is None
        ):
            if arguments and isinstance(arguments[0], ObjectLiteral):
                self._apply_named_parameters(node, spec, arguments[0], state)
            self._bind(var_name, node, spec, state)
            return

        input_index = 0
        if chained_object is not None and spec.inputs:
            source = self._resolve_reference(chained_object, state)
            if source is not None:
                self._connect(source, node.id, spec.inputs[0].id, state)
            input_index = 1

        for position, argument in enumerate(arguments):
            port = spec.inputs[input_index + position] if input_index + position < len(spec.inputs) else None
            reference = self._resolve_argument_reference(argument, spec, port.id if port else None, node, state)
            if reference is not None:
                if port is None:
                    break
                self._connect(reference, node.id, port.id, state)
                continue

            literal = self._extract_literal(argument)
            if literal is None:
                continue
            if spec.is_constructor:
                keys = list(spec.default_values)
                key = keys[position] if position < len(keys) else "value"
                if key == "hex" and isinstance(literal, float):
                    node.params[key] = hex_color(literal)
                else:
                    node.params[key] = literal
            elif port is not None:
                node.params[port.id] = literal

        self._bind(var_name, node, spec, state)

    def _apply_named_parameters(
        self,
        node: GraphNode,
        spec: OperationSpec,
        argument: ObjectLiteral,
        state: _ReconstructionState,
    ) -> None:
        exposed: list[str] = []
        for prop in argument.properties:
            if isinstance(prop.value, Spread):
                continue
            key = prop.key
            reference = self._resolve_reference(prop.value, state)
            if reference is not None:
                if spec.input_port(key) is not None:
                    self._connect(reference, node.id, key, state)
                    exposed.append(key)
                continue

            if isinstance(prop.value, (CallExpression, NewExpression)):
                self._apply_constructor_parameter(node, key, prop.value)
                continue

            literal = self._extract_literal(prop.value)
            if literal is not None:
                node.params[key] = literal

        if exposed:
            node.exposed_ports = exposed

    def _apply_constructor_parameter(self, node: GraphNode, key: str, value: CallExpression | NewExpression) -> None:
        constructor = value.callee.name if isinstance(value.callee, Identifier) else None
        components = [self._extract_literal(argument) for argument in value.arguments]

        if constructor in COLOR_CONSTRUCTORS and components:
            component = components[0]
            if isinstance(component, float):
                node.params[key] = hex_color(component)
            elif isinstance(component, str) and component.startswith("#"):
                node.params[key] = component.lower()
            return

        if constructor in VECTOR_CONSTRUCTORS:
            for axis, component in zip("xyzw", components):
                if component is not None:
                    node.params[f"{key}_{axis}"] = component

    # Return

    def _visit_return(self, argument: object, state: _ReconstructionState) -> None:
        if state.has_output:
            return
        output = self._create_output(state)

        if isinstance(argument, ObjectLiteral):
            for prop in argument.properties:
                if prop.key not in OUTPUT_CHANNELS:
                    continue
                source = self._resolve_reference(prop.value, state)
                if source is not None:
                    self._connect(source, output.id, prop.key, state)
            return

        source = self._resolve_reference(argument, state)
        if source is not None:
            self._connect(source, output.id, PRIMARY_OUTPUT_CHANNEL, state)

    def _create_output(self, state: _ReconstructionState) -> GraphNode:
        state.has_output = True
        spec = self._operation_service.get_operation(OUTPUT_KIND)
        node = GraphNode(id=new_node_id(), kind=OUTPUT_KIND, label=OUTPUT_LABEL, view=spec.view if spec else None)
        state.nodes.append(node)
        return node

    # Helpers

    def _create_node(self, spec: OperationSpec, label: str, state: _ReconstructionState) -> GraphNode:
        node = GraphNode(
            id=new_node_id(),
            kind=spec.kind,
            label=label,
            params=dict(spec.default_values),
            view=spec.view,
        )
        if spec.property_name_key is not None:
            node.params[spec.property_name_key] = label
        state.nodes.append(node)
        return node

    @staticmethod
    def _bind(var_name: str, node: GraphNode, spec: OperationSpec, state: _ReconstructionState) -> None:
        output_port = spec.outputs[0].id if spec.outputs else "out"
        state.bindings[var_name] = Binding(node_id=node.id, kind=spec.kind, output_port=output_port)

    def _connect(self, source: PortRef, to_node_id: str, to_port_id: str, state: _ReconstructionState) -> None:
        target_node = next((node for node in state.nodes if node.id == to_node_id), None)
        spec = self._operation_service.get_operation(target_node.kind) if target_node else None
        port = spec.input_port(to_port_id) if spec else None
        if port is None:
            return
        state.connections = [
            connection
            for connection in state.connections
            if not (connection.to_node_id == to_node_id and connection.to_port_id == to_port_id)
        ]
        state.connections.append(
            GraphEdge(
                from_node_id=source.node_id,
                from_port_id=source.port_id,
                to_node_id=to_node_id,
                to_port_id=to_port_id,
                data_type=port.data_type,
            )
        )

    def _resolve_reference(self, expression: object, state: _ReconstructionState) -> PortRef | None:
        if isinstance(expression, Identifier):
            binding = state.bindings.get(expression.name)
            if binding is None:
                return None
            return PortRef(node_id=binding.node_id, port_id=binding.output_port)

        if (
            isinstance(expression, MemberExpression)
            and isinstance(expression.object, Identifier)
            and expression.property in SPLIT_CHANNELS
        ):
            binding = state.bindings.get(expression.object.name)
            if binding is not None and binding.kind == SPLIT_KIND:
                return PortRef(node_id=binding.node_id, port_id=expression.property)
        return None

    def _resolve_argument_reference(
        self,
        argument: object,
        spec: OperationSpec,
        port_id: str | None,
        node: GraphNode,
        state: _ReconstructionState,
    ) -> PortRef | None:
        reference = self._resolve_reference(argument, state)
        if reference is not None:
            return reference

        # `ref.mul(n)` on the scaled input carries the node's scale factor; a
        # non-reference receiver such as `vec3(0, 0, 0)` leaves the input unconnected
        if (
            port_id is not None
            and port_id == spec.scaled_input
            and isinstance(argument, CallExpression)
            and isinstance(argument.callee, MemberExpression)
            and argument.callee.property == SCALE_METHOD
            and len(argument.arguments) == 1
        ):
            scale = self._extract_literal(argument.arguments[0])
            if isinstance(scale, float):
                node.params["scale"] = scale
                return self._resolve_reference(argument.callee.object, state)
        return None

    @staticmethod
    def _extract_literal(expression: object) -> OperationParam | None:
        if isinstance(expression, NumberLiteral):
            return expression.value
        if isinstance(expression, StringLiteral):
            return expression.value
        if isinstance(expression, TemplateLiteral) and "${" not in expression.raw:
            return expression.raw
        if (
            isinstance(expression, UnaryExpression)
            and expression.operator == "-"
            and isinstance(expression.argument, NumberLiteral)
        ):
            return -expression.argument.value
        return None
