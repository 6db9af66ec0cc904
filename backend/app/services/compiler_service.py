from __future__ import annotations

import json
import logging
import math
import re
from dataclasses import dataclass
from typing import Sequence

from backend.app.engine.scheduler import describe_cycle, schedule
from backend.app.models.graph import GraphEdge, GraphNode
from backend.app.models.operation import OperationParam, OperationSpec
from backend.app.models.program import GeneratedProgram
from backend.app.services.operation_service import (
    OUTPUT_CHANNELS,
    PRIMARY_OUTPUT_CHANNEL,
    SPLIT_KIND,
    TSL_MODULE,
    OperationService,
)

logger = logging.getLogger(__name__)

EMPTY_PROGRAM_TEXT = "// Empty shader - add nodes to begin\n"
DEFAULT_RETURN_LINE = "  return vec3(1, 0, 0); // default red"
WRAPPER_BINDING = "Fn"
THREE_MODULE = "three"
STRUCTURED_CONSTRUCTORS = {"color": "Color", "vec2": "Vector2", "vec3": "Vector3"}
VECTOR_COMPONENTS = {"vec2": "xy", "vec3": "xyz"}
SPLIT_CHANNELS = frozenset("xyzw")
SCALED_INPUT_ORIGIN_BINDING = "vec3"
SCALED_INPUT_ORIGIN = "vec3(0, 0, 0)"
NAMESPACE_PREFIX = "mx_"
FAMILY_SUFFIX_PATTERN = re.compile(r"_float$|_vec[234]$")
NUMERIC_PATTERN = re.compile(r"^-?(\d+\.?\d*|\.\d+)([eE][-+]?\d+)?$")


@dataclass(slots=True)
class CompiledNode:
    node: GraphNode
    spec: OperationSpec
    var_name: str


def format_number(value: float | int) -> str:
    number = float(value)
    if number.is_integer() and abs(number) < 1e21:
        return str(int(number))
    return repr(number)


def format_literal(value: OperationParam) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return format_number(value)
    text = str(value)
    if text.startswith("#"):
        return f"0x{text[1:]}"
    if NUMERIC_PATTERN.match(text.strip()):
        return text.strip()
    return json.dumps(text)


def sanitize_identifier(name: str, fallback: str = "prop") -> str:
    safe = re.sub(r"[^A-Za-z0-9_$]", "_", name)
    safe = re.sub(r"^(\d)", r"_\1", safe)
    return safe or fallback


class CompilerService:
    def __init__(self, operation_service: OperationService) -> None:
        self._operation_service = operation_service

    def generate(self, nodes: Sequence[GraphNode], connections: Sequence[GraphEdge]) -> GeneratedProgram:
        if not nodes:
            return GeneratedProgram(program_text=EMPTY_PROGRAM_TEXT)

        result = schedule(nodes, connections)
        diagnostics = self._cycle_diagnostics(nodes, connections, result.unscheduled)

        compiled = self._allocate_var_names(result.ordered)
        var_names = {item.node.id: item.var_name for item in compiled}
        kinds = {node.id: node.kind for node in nodes}
        inbound = self._build_inbound_index(connections)

        imports: dict[str, set[str]] = {TSL_MODULE: {WRAPPER_BINDING}}
        for item in compiled:
            if item.spec.source_module and item.spec.binding_name:
                imports.setdefault(item.spec.source_module, set()).add(item.spec.binding_name)
            if item.spec.named_parameters:
                for structured_kind in item.spec.structured_params.values():
                    imports.setdefault(THREE_MODULE, set()).add(STRUCTURED_CONSTRUCTORS[structured_kind])
            if self._scales_unconnected_input(item, inbound, var_names, kinds):
                imports[TSL_MODULE].add(SCALED_INPUT_ORIGIN_BINDING)

        body_lines = [self._render_statement(item, inbound, var_names, kinds) for item in compiled]

        return_line = self._render_return(result.ordered, inbound, var_names, kinds)
        if return_line == DEFAULT_RETURN_LINE:
            imports[TSL_MODULE].add("vec3")

        import_lines = [
            f"import {{ {', '.join(sorted(names))} }} from '{module}';" for module, names in imports.items()
        ]
        program_text = "\n".join(
            [
                *import_lines,
                "",
                "const shader = Fn(() => {",
                *body_lines,
                "",
                return_line,
                "});",
                "",
                "export default shader;",
                "",
            ]
        )
        return GeneratedProgram(
            program_text=program_text,
            import_groups={module: sorted(names) for module, names in imports.items()},
            import_lines=import_lines,
            diagnostics=diagnostics,
        )

    @staticmethod
    def _cycle_diagnostics(
        nodes: Sequence[GraphNode],
        connections: Sequence[GraphEdge],
        unscheduled: list[str],
    ) -> list[str]:
        if not unscheduled:
            return []
        labels = {node.id: node.label or node.id for node in nodes}
        cycle = describe_cycle(nodes, connections)
        if cycle:
            path = " -> ".join(labels.get(node_id, node_id) for node_id in cycle)
            message = f"Graph contains a cycle ({path}); {len(unscheduled)} node(s) were left out of the program."
        else:
            message = f"{len(unscheduled)} node(s) could not be ordered and were left out of the program."
        logger.debug(message)
        return [message]

    def _allocate_var_names(self, ordered: list[GraphNode]) -> list[CompiledNode]:
        compiled: list[CompiledNode] = []
        used: set[str] = set()
        for node in ordered:
            spec = self._operation_service.get_operation(node.kind)
            if spec is None:
                logger.debug("Skipping node '%s' with unknown kind '%s'", node.id, node.kind)
                continue
            if spec.is_sink:
                continue

            base_name = self._base_var_name(node, spec)
            name = base_name
            counter = 1
            while name in used:
                counter += 1
                name = f"{base_name}{counter}"
            used.add(name)
            compiled.append(CompiledNode(node=node, spec=spec, var_name=name))
        return compiled

    @staticmethod
    def _base_var_name(node: GraphNode, spec: OperationSpec) -> str:
        if spec.property_name_key is not None:
            return sanitize_identifier(str(node.params.get(spec.property_name_key, "")))
        base_name = spec.binding_name or spec.kind
        if base_name.startswith(NAMESPACE_PREFIX):
            base_name = FAMILY_SUFFIX_PATTERN.sub("", base_name[len(NAMESPACE_PREFIX) :])
        return base_name

    @staticmethod
    def _build_inbound_index(connections: Sequence[GraphEdge]) -> dict[tuple[str, str], GraphEdge]:
        inbound: dict[tuple[str, str], GraphEdge] = {}
        for connection in connections:
            inbound.setdefault((connection.to_node_id, connection.to_port_id), connection)
        return inbound

    @staticmethod
    def _reference(connection: GraphEdge | None, var_names: dict[str, str], kinds: dict[str, str]) -> str | None:
        if connection is None or connection.from_node_id not in var_names:
            return None
        reference = var_names[connection.from_node_id]
        if kinds.get(connection.from_node_id) == SPLIT_KIND and connection.from_port_id in SPLIT_CHANNELS:
            reference = f"{reference}.{connection.from_port_id}"
        return reference

    def _render_statement(
        self,
        item: CompiledNode,
        inbound: dict[tuple[str, str], GraphEdge],
        var_names: dict[str, str],
        kinds: dict[str, str],
    ) -> str:
        node, spec, var_name = item.node, item.spec, item.var_name

        if spec.is_pure_reference:
            return f"  const {var_name} = {spec.binding_name};"

        if node.kind == SPLIT_KIND:
            source = self._reference(inbound.get((node.id, spec.inputs[0].id)), var_names, kinds)
            return f"  const {var_name} = {source or '0'};"

        if spec.is_constructor:
            default_key, default_value = next(iter(spec.default_values.items()))
            value = node.params.get(default_key, default_value)
            return f"  const {var_name} = {spec.binding_name}({format_literal(value)});"

        if spec.named_parameters:
            entries = self._render_named_parameters(node, spec, inbound, var_names, kinds)
            argument = f"{{ {', '.join(entries)} }}" if entries else "{}"
            return f"  const {var_name} = {spec.binding_name}({argument});"

        args = [
            self._resolve_argument(node, spec, port.id, inbound, var_names, kinds) or "0" for port in spec.inputs
        ]
        return f"  const {var_name} = {spec.binding_name}({', '.join(args)});"

    def _resolve_argument(
        self,
        node: GraphNode,
        spec: OperationSpec,
        port_id: str,
        inbound: dict[tuple[str, str], GraphEdge],
        var_names: dict[str, str],
        kinds: dict[str, str],
    ) -> str | None:
        reference = self._reference(inbound.get((node.id, port_id)), var_names, kinds)
        if port_id == spec.scaled_input:
            scale = self._scale_factor(node, spec)
            if scale != 1:
                return f"{reference or SCALED_INPUT_ORIGIN}.mul({format_number(scale)})"
        if reference is not None:
            return reference
        if port_id in node.params:
            return format_literal(node.params[port_id])
        if port_id in spec.default_values:
            return format_literal(spec.default_values[port_id])
        return None

    def _scales_unconnected_input(
        self,
        item: CompiledNode,
        inbound: dict[tuple[str, str], GraphEdge],
        var_names: dict[str, str],
        kinds: dict[str, str],
    ) -> bool:
        scaled_input = item.spec.scaled_input
        if scaled_input is None or self._scale_factor(item.node, item.spec) == 1:
            return False
        return self._reference(inbound.get((item.node.id, scaled_input)), var_names, kinds) is None

    @staticmethod
    def _scale_factor(node: GraphNode, spec: OperationSpec) -> float:
        raw = node.params.get("scale", spec.default_values.get("scale", 1))
        try:
            scale = float(raw)
        except (TypeError, ValueError):
            return 1.0
        return scale if math.isfinite(scale) else 1.0

    def _render_named_parameters(
        self,
        node: GraphNode,
        spec: OperationSpec,
        inbound: dict[tuple[str, str], GraphEdge],
        var_names: dict[str, str],
        kinds: dict[str, str],
    ) -> list[str]:
        entries: list[str] = []
        for port in spec.inputs:
            value = self._resolve_argument(node, spec, port.id, inbound, var_names, kinds)
            if value is not None:
                entries.append(f"{port.id}: {value}")

        for key, structured_kind in spec.structured_params.items():
            constructor = STRUCTURED_CONSTRUCTORS[structured_kind]
            if structured_kind == "color":
                value = node.params.get(key, spec.default_values.get(key, "#000000"))
                entries.append(f"{key}: new {constructor}({format_literal(value)})")
                continue
            components = [
                format_literal(node.params.get(f"{key}_{axis}", spec.default_values.get(f"{key}_{axis}", 0)))
                for axis in VECTOR_COMPONENTS[structured_kind]
            ]
            entries.append(f"{key}: new {constructor}({', '.join(components)})")
        return entries

    def _render_return(
        self,
        ordered: list[GraphNode],
        inbound: dict[tuple[str, str], GraphEdge],
        var_names: dict[str, str],
        kinds: dict[str, str],
    ) -> str:
        sink = None
        for node in ordered:
            spec = self._operation_service.get_operation(node.kind)
            if spec is not None and spec.is_sink:
                sink = node
                break
        if sink is None:
            return DEFAULT_RETURN_LINE

        channels: dict[str, str] = {}
        for channel in OUTPUT_CHANNELS:
            reference = self._reference(inbound.get((sink.id, channel)), var_names, kinds)
            if reference is not None:
                channels[channel] = reference

        if not channels:
            return DEFAULT_RETURN_LINE
        if list(channels) == [PRIMARY_OUTPUT_CHANNEL]:
            return f"  return {channels[PRIMARY_OUTPUT_CHANNEL]};"
        entries = ", ".join(f"{channel}: {reference}" for channel, reference in channels.items())
        return f"  return {{ {entries} }};"
