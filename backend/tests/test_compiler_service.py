from __future__ import annotations

from backend.app.models.graph import GraphEdge, GraphNode
from backend.app.services.compiler_service import (
    DEFAULT_RETURN_LINE,
    EMPTY_PROGRAM_TEXT,
    CompilerService,
    format_literal,
    format_number,
)
from backend.app.services.operation_service import OperationService


def _compiler() -> CompilerService:
    return CompilerService(OperationService())


def _node(node_id: str, kind: str, label: str = "", **params: str | int | float) -> GraphNode:
    return GraphNode(id=node_id, kind=kind, label=label or node_id, params=params)


def _edge(from_node: str, to_node: str, to_port: str, from_port: str = "out") -> GraphEdge:
    return GraphEdge(from_node_id=from_node, from_port_id=from_port, to_node_id=to_node, to_port_id=to_port)


def _mix_graph() -> tuple[list[GraphNode], list[GraphEdge]]:
    nodes = [
        _node("sink", "output"),
        _node("mixer", "mix"),
        _node("color_b", "color", hex="#0000ff"),
        _node("noise", "noise"),
        _node("color_a", "color", hex="#ff0000"),
        _node("position", "positionGeometry"),
    ]
    connections = [
        _edge("position", "noise", "pos"),
        _edge("noise", "mixer", "t"),
        _edge("color_a", "mixer", "a"),
        _edge("color_b", "mixer", "b"),
        _edge("mixer", "sink", "color"),
    ]
    return nodes, connections


def test_empty_graph_produces_placeholder_program() -> None:
    result = _compiler().generate([], [])

    assert result.program_text == EMPTY_PROGRAM_TEXT
    assert result.import_groups == {}
    assert result.diagnostics == []


def test_mix_graph_orders_statements_by_dependency() -> None:
    nodes, connections = _mix_graph()

    result = _compiler().generate(nodes, connections)
    text = result.program_text

    position_at = text.index("const positionGeometry = positionGeometry;")
    noise_at = text.index("const noise = mx_noise_float(positionGeometry);")
    mix_at = text.index("const mix = mix(")
    return_at = text.index("return mix;")
    assert position_at < noise_at < mix_at < return_at
    assert text.count("return ") == 1
    assert result.import_groups == {"three/tsl": ["Fn", "color", "mix", "mx_noise_float", "positionGeometry"]}
    assert result.import_lines == [
        "import { Fn, color, mix, mx_noise_float, positionGeometry } from 'three/tsl';"
    ]


def test_program_is_wrapped_in_exported_function() -> None:
    nodes, connections = _mix_graph()

    text = _compiler().generate(nodes, connections).program_text

    assert "const shader = Fn(() => {" in text
    assert text.rstrip().endswith("export default shader;")


def test_generation_is_deterministic() -> None:
    nodes, connections = _mix_graph()
    compiler = _compiler()

    assert compiler.generate(nodes, connections).program_text == compiler.generate(nodes, connections).program_text


def test_colliding_variable_names_are_numbered() -> None:
    nodes = [
        _node("first", "color", hex="#ff0000"),
        _node("second", "color", hex="#00ff00"),
        _node("third", "color", hex="#0000ff"),
    ]

    text = _compiler().generate(nodes, []).program_text

    assert "const color = color(0xff0000);" in text
    assert "const color2 = color(0x00ff00);" in text
    assert "const color3 = color(0x0000ff);" in text


def test_graph_without_sink_returns_default_red() -> None:
    text = _compiler().generate([_node("value", "float", value=2)], []).program_text

    assert "const float = float(2);" in text
    assert DEFAULT_RETURN_LINE in text
    assert "import { Fn, float, vec3 } from 'three/tsl';" in text


def test_unconnected_sink_returns_default_red() -> None:
    result = _compiler().generate([_node("sink", "output")], [])

    assert DEFAULT_RETURN_LINE in result.program_text
    assert "vec3" in result.import_groups["three/tsl"]


def test_multiple_channels_return_object_literal() -> None:
    nodes = [
        _node("base", "color", hex="#ffffff"),
        _node("alpha", "float", value=0.5),
        _node("sink", "output"),
    ]
    connections = [_edge("base", "sink", "color"), _edge("alpha", "sink", "opacity")]

    text = _compiler().generate(nodes, connections).program_text

    assert "return { color: color, opacity: float };" in text


def test_unconnected_inputs_use_params_then_defaults() -> None:
    nodes = [_node("adder", "add", a=2), _node("sink", "output")]
    connections = [_edge("adder", "sink", "color")]

    text = _compiler().generate(nodes, connections).program_text

    assert "const add = add(2, 0);" in text


def test_chained_scale_is_emitted_on_scaled_input() -> None:
    nodes = [
        _node("position", "positionGeometry"),
        _node("noise", "noise", scale=3),
        _node("sink", "output"),
    ]
    connections = [_edge("position", "noise", "pos"), _edge("noise", "sink", "color")]

    text = _compiler().generate(nodes, connections).program_text

    assert "const noise = mx_noise_float(positionGeometry.mul(3));" in text


def test_scale_is_kept_when_scaled_input_is_unconnected() -> None:
    nodes = [_node("noise", "noise", scale=3), _node("plain", "voronoi", scale="nan"), _node("sink", "output")]
    connections = [_edge("noise", "sink", "color")]

    result = _compiler().generate(nodes, connections)

    assert "const noise = mx_noise_float(vec3(0, 0, 0).mul(3));" in result.program_text
    assert "const worley_noise = mx_worley_noise_float(0);" in result.program_text
    assert "vec3" in result.import_groups["three/tsl"]


def test_split_outputs_are_referenced_by_channel() -> None:
    nodes = [
        _node("position", "positionGeometry"),
        _node("splitter", "split"),
        _node("sine", "sin"),
        _node("sink", "output"),
    ]
    connections = [
        _edge("position", "splitter", "v"),
        _edge("splitter", "sine", "x", from_port="y"),
        _edge("sine", "sink", "color"),
    ]

    text = _compiler().generate(nodes, connections).program_text

    assert "const split = positionGeometry;" in text
    assert "const sin = sin(split.y);" in text
    assert "split(" not in text


def test_property_nodes_are_named_after_their_property() -> None:
    nodes = [_node("prop", "property_float", name="speed", value=2.5)]

    text = _compiler().generate(nodes, []).program_text

    assert "const speed = uniform(2.5);" in text
    assert "uniform" in text.splitlines()[0]


def test_texture_nodes_use_named_parameters_and_structured_values() -> None:
    nodes = [
        _node("position", "positionGeometry"),
        _node("marble", "tslTex_marble", color="#112233"),
        _node("sink", "output"),
    ]
    connections = [_edge("position", "marble", "position"), _edge("marble", "sink", "color")]

    result = _compiler().generate(nodes, connections)

    assert (
        "const marble = marble({ position: positionGeometry, scale: 1.2, thinness: 5, noise: 0.3, seed: 0, "
        "color: new Color(0x112233), background: new Color(0xf0f8ff) });"
    ) in result.program_text
    assert result.import_groups["tsl-textures"] == ["marble"]
    assert result.import_groups["three"] == ["Color"]


def test_unknown_kinds_are_skipped() -> None:
    nodes = [_node("mystery", "doesNotExist"), _node("value", "float", value=1)]

    text = _compiler().generate(nodes, []).program_text

    assert "doesNotExist" not in text
    assert "const float = float(1);" in text


def test_cycles_are_excluded_and_reported() -> None:
    nodes = [
        _node("first", "sin", label="A"),
        _node("second", "cos", label="B"),
        _node("value", "float", value=1),
    ]
    connections = [_edge("first", "second", "x"), _edge("second", "first", "x")]

    result = _compiler().generate(nodes, connections)

    assert "const float = float(1);" in result.program_text
    assert "sin(" not in result.program_text
    assert "cos(" not in result.program_text
    assert len(result.diagnostics) == 1
    assert "cycle" in result.diagnostics[0]
    assert "A -> B -> A" in result.diagnostics[0] or "B -> A -> B" in result.diagnostics[0]


def test_literal_formatting() -> None:
    assert format_number(3.0) == "3"
    assert format_number(0.25) == "0.25"
    assert format_literal("#00ff00") == "0x00ff00"
    assert format_literal("1.5") == "1.5"
    assert format_literal("hello") == '"hello"'
