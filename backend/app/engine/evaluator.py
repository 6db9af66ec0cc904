from __future__ import annotations

import colorsys
import math
from collections import deque
from typing import Callable, Sequence

import numpy as np

from backend.app.engine.noise import fbm2d, perlin2d, voronoi2d
from backend.app.models.graph import GraphEdge, GraphNode

Channels = np.ndarray
Handler = Callable[["_EvaluationPass", GraphNode], "Channels | None"]

TIME_KIND = "time"
SPLIT_KIND = "split"
SPLIT_CHANNEL_INDEX = {"x": 0, "y": 1, "z": 2, "w": 3}
NOISE_SAMPLE_CENTER = (0.5, 0.5)
NOISE_BASE_FREQUENCY = 4.0
MAX_FRACTAL_OCTAVES = 16
DEFAULT_COLOR_HEX = "#ff0000"

_HANDLERS: dict[str, Handler] = {}


def _handler(*kinds: str) -> Callable[[Handler], Handler]:
    def register(func: Handler) -> Handler:
        for kind in kinds:
            _HANDLERS[kind] = func
        return func

    return register


def supported_kinds() -> frozenset[str]:
    return frozenset(_HANDLERS)


def _as_float(value: object, fallback: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return fallback


def _broadcast(a: Channels, b: Channels) -> tuple[Channels, Channels]:
    length = max(a.size, b.size)
    return np.resize(a, length), np.resize(b, length)


class _EvaluationPass:
    """One memoized walk over a graph at a fixed time."""

    def __init__(self, nodes: Sequence[GraphNode], connections: Sequence[GraphEdge], time: float) -> None:
        self.time = float(time)
        self._nodes = {node.id: node for node in nodes}
        self._inbound: dict[tuple[str, str], GraphEdge] = {}
        for connection in connections:
            self._inbound.setdefault((connection.to_node_id, connection.to_port_id), connection)
        self._cache: dict[str, Channels | None] = {}
        self._active: set[str] = set()

    def evaluate(self, node_id: str) -> Channels | None:
        if node_id in self._cache:
            return self._cache[node_id]
        node = self._nodes.get(node_id)
        if node is None or node_id in self._active:
            return None

        handler = _HANDLERS.get(node.kind)
        self._active.add(node_id)
        try:
            result = handler(self, node) if handler is not None else None
        finally:
            self._active.discard(node_id)
        if result is not None:
            result = np.asarray(result, dtype=np.float64)
        self._cache[node_id] = result
        return result

    def upstream(self, node: GraphNode, port_id: str) -> tuple[bool, Channels | None]:
        connection = self._inbound.get((node.id, port_id))
        if connection is None:
            return False, None
        value = self.evaluate(connection.from_node_id)
        if value is None:
            return True, None
        source = self._nodes.get(connection.from_node_id)
        if source is not None and source.kind == SPLIT_KIND and connection.from_port_id in SPLIT_CHANNEL_INDEX:
            index = SPLIT_CHANNEL_INDEX[connection.from_port_id]
            return True, value[index : index + 1] if index < value.size else np.zeros(1)
        return True, value

    def scalar(self, node: GraphNode, port_id: str, fallback: float) -> float | None:
        connected, value = self.upstream(node, port_id)
        if connected:
            if value is None or value.size == 0:
                return None
            return float(value[0])
        return _as_float(node.params.get(port_id, fallback), fallback)

    def channels(self, node: GraphNode, port_id: str, fallback: float) -> Channels | None:
        connected, value = self.upstream(node, port_id)
        if connected:
            return value
        return np.array([_as_float(node.params.get(port_id, fallback), fallback)])


def _unary(port_id: str, fallback: float, func: Callable[[Channels], Channels]) -> Handler:
    def evaluate(context: _EvaluationPass, node: GraphNode) -> Channels | None:
        value = context.channels(node, port_id, fallback)
        return None if value is None else func(value)

    return evaluate


def _binary(
    port_a: str,
    fallback_a: float,
    port_b: str,
    fallback_b: float,
    func: Callable[[Channels, Channels], Channels],
) -> Handler:
    def evaluate(context: _EvaluationPass, node: GraphNode) -> Channels | None:
        a = context.channels(node, port_a, fallback_a)
        b = context.channels(node, port_b, fallback_b)
        if a is None or b is None:
            return None
        return func(*_broadcast(a, b))

    return evaluate


def _safe_divide(a: Channels, b: Channels) -> Channels:
    return np.divide(a, b, out=np.zeros_like(a), where=b != 0)


def _safe_mod(a: Channels, b: Channels) -> Channels:
    return np.fmod(a, b, out=np.zeros_like(a), where=b != 0)


def _round_half_up(values: Channels) -> Channels:
    return np.floor(values + 0.5)


for _kind, _func in {
    "add": np.add,
    "sub": np.subtract,
    "min": np.minimum,
    "max": np.maximum,
}.items():
    _handler(_kind)(_binary("a", 0.0, "b", 0.0, _func))

_handler("mul")(_binary("a", 1.0, "b", 1.0, np.multiply))
_handler("div")(_binary("a", 1.0, "b", 1.0, _safe_divide))
_handler("pow")(_binary("base", 1.0, "exp", 1.0, np.power))
_handler("mod")(_binary("x", 0.0, "y", 1.0, _safe_mod))

for _kind, _func in {
    "sin": np.sin,
    "cos": np.cos,
    "abs": np.abs,
    "sqrt": lambda values: np.sqrt(np.maximum(values, 0.0)),
    "exp": np.exp,
    "floor": np.floor,
    "round": _round_half_up,
    "fract": lambda values: values - np.floor(values),
}.items():
    _handler(_kind)(_unary("x", 0.0, _func))

_handler("log2")(_unary("x", 1.0, lambda values: np.log2(np.maximum(values, 1e-10))))


@_handler(TIME_KIND)
def _time(context: _EvaluationPass, node: GraphNode) -> Channels:
    return np.array([context.time])


@_handler("float", "int", "property_float")
def _literal(context: _EvaluationPass, node: GraphNode) -> Channels:
    return np.array([_as_float(node.params.get("value", 0), 0.0)])


@_handler("screenUV")
def _screen_uv(context: _EvaluationPass, node: GraphNode) -> Channels:
    return np.array([0.5, 0.5])


def _constructor(components: str) -> Handler:
    def evaluate(context: _EvaluationPass, node: GraphNode) -> Channels | None:
        values = [context.scalar(node, component, 0.0) for component in components]
        if any(value is None for value in values):
            return None
        return np.array(values)

    return evaluate


_handler("vec2")(_constructor("xy"))
_handler("vec3")(_constructor("xyz"))
_handler("vec4")(_constructor("xyzw"))


@_handler("color")
def _color(context: _EvaluationPass, node: GraphNode) -> Channels | None:
    hex_value = str(node.params.get("hex", DEFAULT_COLOR_HEX))
    try:
        return np.array([int(hex_value[index : index + 2], 16) / 255 for index in (1, 3, 5)])
    except ValueError:
        return None


@_handler("clamp")
def _clamp(context: _EvaluationPass, node: GraphNode) -> Channels | None:
    x = context.channels(node, "x", 0.0)
    low = context.scalar(node, "min", 0.0)
    high = context.scalar(node, "max", 1.0)
    if x is None or low is None or high is None:
        return None
    return np.minimum(np.maximum(x, low), high)


@_handler("mix")
def _mix(context: _EvaluationPass, node: GraphNode) -> Channels | None:
    a = context.channels(node, "a", 0.0)
    b = context.channels(node, "b", 1.0)
    t = context.scalar(node, "t", 0.5)
    if a is None or b is None or t is None:
        return None
    a, b = _broadcast(a, b)
    return a * (1 - t) + b * t


@_handler("smoothstep")
def _smoothstep(context: _EvaluationPass, node: GraphNode) -> Channels | None:
    edge0 = context.scalar(node, "edge0", 0.0)
    edge1 = context.scalar(node, "edge1", 1.0)
    x = context.channels(node, "x", 0.5)
    if x is None or edge0 is None or edge1 is None:
        return None
    t = np.clip((x - edge0) / ((edge1 - edge0) or 1.0), 0.0, 1.0)
    return t * t * (3 - 2 * t)


@_handler("remap")
def _remap(context: _EvaluationPass, node: GraphNode) -> Channels | None:
    x = context.channels(node, "x", 0.0)
    bounds = [
        context.scalar(node, "inLow", 0.0),
        context.scalar(node, "inHigh", 1.0),
        context.scalar(node, "outLow", 0.0),
        context.scalar(node, "outHigh", 1.0),
    ]
    if x is None or any(bound is None for bound in bounds):
        return None
    in_low, in_high, out_low, out_high = bounds
    span = in_high - in_low
    t = (x - in_low) / span if span != 0 else np.zeros_like(x)
    return out_low + t * (out_high - out_low)


@_handler("select")
def _select(context: _EvaluationPass, node: GraphNode) -> Channels | None:
    condition = context.scalar(node, "condition", 0.0)
    if condition is None:
        return None
    if condition >= 0.5:
        return context.channels(node, "a", 0.0)
    return context.channels(node, "b", 0.0)


@_handler("length")
def _length(context: _EvaluationPass, node: GraphNode) -> Channels | None:
    v = context.channels(node, "v", 0.0)
    return None if v is None else np.array([np.sqrt(np.sum(v * v))])


@_handler("distance")
def _distance(context: _EvaluationPass, node: GraphNode) -> Channels | None:
    a = context.channels(node, "a", 0.0)
    b = context.channels(node, "b", 0.0)
    if a is None or b is None:
        return None
    a, b = _broadcast(a, b)
    return np.array([np.sqrt(np.sum((a - b) ** 2))])


@_handler("dot")
def _dot(context: _EvaluationPass, node: GraphNode) -> Channels | None:
    a = context.channels(node, "a", 0.0)
    b = context.channels(node, "b", 0.0)
    if a is None or b is None:
        return None
    a, b = _broadcast(a, b)
    return np.array([np.sum(a * b)])


@_handler("normalize")
def _normalize(context: _EvaluationPass, node: GraphNode) -> Channels | None:
    v = context.channels(node, "v", 0.0)
    if v is None:
        return None
    length = float(np.sqrt(np.sum(v * v))) or 1.0
    return v / length


@_handler("cross")
def _cross(context: _EvaluationPass, node: GraphNode) -> Channels | None:
    a = context.channels(node, "a", 0.0)
    b = context.channels(node, "b", 0.0)
    if a is None or b is None or a.size < 3 or b.size < 3:
        return None
    return np.cross(a[:3], b[:3])


@_handler(SPLIT_KIND)
def _split(context: _EvaluationPass, node: GraphNode) -> Channels | None:
    return context.channels(node, "v", 0.0)


@_handler("hsl")
def _hsl(context: _EvaluationPass, node: GraphNode) -> Channels | None:
    h = context.scalar(node, "h", 0.0)
    s = context.scalar(node, "s", 1.0)
    lightness = context.scalar(node, "l", 0.5)
    if h is None or s is None or lightness is None:
        return None
    return np.array(colorsys.hls_to_rgb(h % 1.0, lightness, s))


@_handler("toHsl")
def _to_hsl(context: _EvaluationPass, node: GraphNode) -> Channels | None:
    rgb = context.channels(node, "rgb", 0.0)
    if rgb is None:
        return None
    r, g, b = np.resize(rgb, 3)
    h, lightness, s = colorsys.rgb_to_hls(float(r), float(g), float(b))
    return np.array([h, s, lightness])


def _sample_point(context: _EvaluationPass, node: GraphNode) -> tuple[float, float] | None:
    scale = context.scalar(node, "scale", 1.0)
    if scale is None:
        return None
    _, position = context.upstream(node, "pos")
    if position is None or position.size == 0:
        x, y = NOISE_SAMPLE_CENTER
    else:
        x = float(position[0])
        y = float(position[1]) if position.size > 1 else NOISE_SAMPLE_CENTER[1]
    factor = NOISE_BASE_FREQUENCY * scale
    point = (x * factor, y * factor)
    if not all(math.isfinite(value) for value in point):
        return None
    return point


@_handler("noise")
def _noise(context: _EvaluationPass, node: GraphNode) -> Channels | None:
    point = _sample_point(context, node)
    return None if point is None else np.array([(perlin2d(*point) + 1) * 0.5])


@_handler("fractal")
def _fractal(context: _EvaluationPass, node: GraphNode) -> Channels | None:
    point = _sample_point(context, node)
    octaves = context.scalar(node, "octaves", 4.0)
    lacunarity = context.scalar(node, "lacunarity", 2.0)
    diminish = context.scalar(node, "diminish", 0.5)
    if point is None or octaves is None or lacunarity is None or diminish is None:
        return None
    if not all(math.isfinite(value) for value in (octaves, lacunarity, diminish)):
        return None
    octave_count = min(max(int(math.floor(octaves + 0.5)), 0), MAX_FRACTAL_OCTAVES)
    value = fbm2d(point[0], point[1], octave_count, lacunarity, diminish)
    if not math.isfinite(value):
        return None
    return np.array([(value + 1) * 0.5])


@_handler("voronoi")
def _voronoi(context: _EvaluationPass, node: GraphNode) -> Channels | None:
    point = _sample_point(context, node)
    return None if point is None else np.array([voronoi2d(*point)])


class ExpressionEvaluator:
    """CPU approximation of node outputs for live preview values.

    Results are channel lists (one value for scalars, three for colours and
    so on) or ``None`` when a node cannot be computed on the CPU, e.g. when it
    depends on per-fragment geometry.
    """

    def evaluate(
        self,
        node_id: str,
        nodes: Sequence[GraphNode],
        connections: Sequence[GraphEdge],
        time: float = 0.0,
    ) -> list[float] | None:
        return self.evaluate_many([node_id], nodes, connections, time)[node_id]

    def evaluate_many(
        self,
        node_ids: Sequence[str],
        nodes: Sequence[GraphNode],
        connections: Sequence[GraphEdge],
        time: float = 0.0,
    ) -> dict[str, list[float] | None]:
        context = _EvaluationPass(nodes, connections, time)
        values: dict[str, list[float] | None] = {}
        with np.errstate(all="ignore"):
            for node_id in node_ids:
                result = context.evaluate(node_id)
                values[node_id] = None if result is None else [float(value) for value in result.tolist()]
        return values

    @staticmethod
    def time_dependent_nodes(nodes: Sequence[GraphNode], connections: Sequence[GraphEdge]) -> set[str]:
        """Ids of every node that is a time node or reads one through any path."""
        targets: dict[str, list[str]] = {}
        for connection in connections:
            targets.setdefault(connection.from_node_id, []).append(connection.to_node_id)

        dependent = {node.id for node in nodes if node.kind == TIME_KIND}
        queue = deque(dependent)
        while queue:
            current = queue.popleft()
            for target in targets.get(current, []):
                if target not in dependent:
                    dependent.add(target)
                    queue.append(target)
        known = {node.id for node in nodes}
        return dependent & known
