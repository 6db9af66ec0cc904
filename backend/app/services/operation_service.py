from __future__ import annotations

import logging
from collections import defaultdict
from typing import Iterable

from backend.app.models.operation import DataType, OperationCategory, OperationSpec, PortSpec

logger = logging.getLogger(__name__)

TSL_MODULE = "three/tsl"
TEXTURES_MODULE = "tsl-textures"
TEXTURE_KIND_PREFIX = "tslTex_"
OUTPUT_KIND = "output"
SPLIT_KIND = "split"
OUTPUT_CHANNELS: tuple[str, ...] = ("color", "emissive", "normal", "position", "opacity", "roughness")
PRIMARY_OUTPUT_CHANNEL = "color"


def _port(port_id: str, data_type: DataType = DataType.ANY, label: str | None = None) -> PortSpec:
    return PortSpec(id=port_id, label=label or port_id[:1].upper() + port_id[1:], data_type=data_type)


def _out(data_type: DataType, label: str = "Out") -> list[PortSpec]:
    return [PortSpec(id="out", label=label, data_type=data_type)]


class OperationService:
    """Read-only registry of operation kinds.

    Lookups go by kind name or by the binding name the kind is emitted as in
    program text. A custom catalog can be injected; the built-in one is used
    otherwise.
    """

    def __init__(self, operations: Iterable[OperationSpec] | None = None) -> None:
        specs = list(operations) if operations is not None else self._load_builtin_operations()
        self._operations: dict[str, OperationSpec] = {}
        self._by_binding: dict[str, OperationSpec] = {}
        for spec in specs:
            if spec.kind in self._operations:
                logger.warning("Duplicate operation kind '%s' ignored", spec.kind)
                continue
            self._operations[spec.kind] = spec
            if spec.binding_name and spec.binding_name not in self._by_binding:
                self._by_binding[spec.binding_name] = spec

    def list_operations(self, category: str | None = None) -> list[OperationSpec]:
        operations = list(self._operations.values())
        if category:
            operations = [operation for operation in operations if operation.category == category]
        return sorted(operations, key=lambda item: (item.category, item.kind))

    def get_operation(self, kind: str) -> OperationSpec | None:
        return self._operations.get(kind)

    def get_by_binding(self, binding_name: str) -> OperationSpec | None:
        return self._by_binding.get(binding_name)

    def resolve(self, name: str) -> OperationSpec | None:
        return self._by_binding.get(name) or self._operations.get(name)

    def categories(self) -> dict[str, int]:
        counters: dict[str, int] = defaultdict(int)
        for operation in self._operations.values():
            counters[operation.category] += 1
        return dict(sorted(counters.items(), key=lambda kv: kv[0]))

    @staticmethod
    def _spec(**kwargs: object) -> OperationSpec:
        kwargs.setdefault("source_module", TSL_MODULE)
        return OperationSpec.model_validate(kwargs)

    def _load_builtin_operations(self) -> list[OperationSpec]:
        operations: list[OperationSpec] = []
        operations.extend(self._input_operations())
        operations.extend(self._type_operations())
        operations.extend(self._arithmetic_operations())
        operations.extend(self._math_operations())
        operations.extend(self._interpolation_operations())
        operations.extend(self._vector_operations())
        operations.extend(self._noise_operations())
        operations.extend(self._color_operations())
        operations.extend(self._texture_operations())
        operations.append(
            self._spec(
                kind=OUTPUT_KIND,
                label="Output",
                category=OperationCategory.OUTPUT,
                source_module="",
                description="Material output channels.",
                inputs=[
                    _port("color", DataType.COLOR),
                    _port("emissive", DataType.COLOR),
                    _port("normal", DataType.VEC3),
                    _port("position", DataType.VEC3),
                    _port("opacity", DataType.FLOAT),
                    _port("roughness", DataType.FLOAT),
                ],
                view="output",
            )
        )
        return operations

    def _input_operations(self) -> list[OperationSpec]:
        geometry = [
            ("positionGeometry", "Position", "Object-space vertex position."),
            ("normalLocal", "Normal", "Object-space vertex normal."),
            ("tangentLocal", "Tangent", "Object-space vertex tangent."),
        ]
        operations = [
            self._spec(
                kind=binding,
                label=label,
                category=OperationCategory.INPUT,
                binding_name=binding,
                description=description,
                outputs=_out(DataType.VEC3, label),
            )
            for binding, label, description in geometry
        ]
        operations.append(
            self._spec(
                kind="time",
                label="Time",
                category=OperationCategory.INPUT,
                binding_name="time",
                description="Elapsed time in seconds.",
                outputs=_out(DataType.FLOAT, "Time"),
                view="clock",
            )
        )
        operations.append(
            self._spec(
                kind="screenUV",
                label="Screen UV",
                category=OperationCategory.INPUT,
                binding_name="screenUV",
                description="Normalized screen coordinates.",
                outputs=_out(DataType.VEC2, "UV"),
            )
        )
        operations.append(
            self._spec(
                kind="property_float",
                label="Property (float)",
                category=OperationCategory.INPUT,
                binding_name="uniform",
                description="Named float uniform exposed as a material property.",
                outputs=_out(DataType.FLOAT, "Value"),
                default_values={"value": 1.0},
                property_name_key="name",
            )
        )
        return operations

    def _type_operations(self) -> list[OperationSpec]:
        operations = [
            self._spec(
                kind="float",
                label="Float",
                category=OperationCategory.TYPE,
                binding_name="float",
                outputs=_out(DataType.FLOAT),
                default_values={"value": 0},
            ),
            self._spec(
                kind="int",
                label="Int",
                category=OperationCategory.TYPE,
                binding_name="int",
                outputs=_out(DataType.INT),
                default_values={"value": 0},
            ),
        ]
        for kind, data_type, components in (
            ("vec2", DataType.VEC2, "xy"),
            ("vec3", DataType.VEC3, "xyz"),
            ("vec4", DataType.VEC4, "xyzw"),
        ):
            operations.append(
                self._spec(
                    kind=kind,
                    label=kind.capitalize(),
                    category=OperationCategory.TYPE,
                    binding_name=kind,
                    inputs=[_port(component, DataType.FLOAT) for component in components],
                    outputs=_out(data_type),
                )
            )
        operations.append(
            self._spec(
                kind="color",
                label="Color",
                category=OperationCategory.TYPE,
                binding_name="color",
                outputs=_out(DataType.COLOR, "Color"),
                default_values={"hex": "#ff0000"},
                view="color",
            )
        )
        return operations

    def _arithmetic_operations(self) -> list[OperationSpec]:
        labels = {"add": "Add", "sub": "Subtract", "mul": "Multiply", "div": "Divide"}
        return [
            self._spec(
                kind=kind,
                label=label,
                category=OperationCategory.ARITHMETIC,
                binding_name=kind,
                inputs=[_port("a"), _port("b")],
                outputs=_out(DataType.ANY),
                chainable=True,
                view="math_preview",
            )
            for kind, label in labels.items()
        ]

    def _math_operations(self) -> list[OperationSpec]:
        unary = ("sin", "cos", "abs", "sqrt", "exp", "log2", "floor", "round", "fract")
        operations = [
            self._spec(
                kind=kind,
                label=kind.capitalize(),
                category=OperationCategory.MATH,
                binding_name=kind,
                inputs=[_port("x")],
                outputs=_out(DataType.ANY),
                view="math_preview",
            )
            for kind in unary
        ]
        binary = {
            "pow": ("base", "exp"),
            "mod": ("x", "y"),
            "min": ("a", "b"),
            "max": ("a", "b"),
            "clamp": ("x", "min", "max"),
        }
        for kind, ports in binary.items():
            operations.append(
                self._spec(
                    kind=kind,
                    label=kind.capitalize(),
                    category=OperationCategory.MATH,
                    binding_name=kind,
                    inputs=[_port(port_id) for port_id in ports],
                    outputs=_out(DataType.ANY),
                    view="math_preview",
                )
            )
        return operations

    def _interpolation_operations(self) -> list[OperationSpec]:
        return [
            self._spec(
                kind="mix",
                label="Mix",
                category=OperationCategory.INTERPOLATION,
                binding_name="mix",
                inputs=[_port("a"), _port("b"), _port("t", DataType.FLOAT)],
                outputs=_out(DataType.ANY),
                view="math_preview",
            ),
            self._spec(
                kind="smoothstep",
                label="Smoothstep",
                category=OperationCategory.INTERPOLATION,
                binding_name="smoothstep",
                inputs=[_port("edge0", DataType.FLOAT), _port("edge1", DataType.FLOAT), _port("x")],
                outputs=_out(DataType.ANY),
                view="math_preview",
            ),
            self._spec(
                kind="remap",
                label="Remap",
                category=OperationCategory.INTERPOLATION,
                binding_name="remap",
                inputs=[
                    _port("x"),
                    _port("inLow", DataType.FLOAT, "In Low"),
                    _port("inHigh", DataType.FLOAT, "In High"),
                    _port("outLow", DataType.FLOAT, "Out Low"),
                    _port("outHigh", DataType.FLOAT, "Out High"),
                ],
                outputs=_out(DataType.ANY),
                view="math_preview",
            ),
            self._spec(
                kind="select",
                label="Select",
                category=OperationCategory.INTERPOLATION,
                binding_name="select",
                inputs=[_port("condition", DataType.FLOAT), _port("a"), _port("b")],
                outputs=_out(DataType.ANY),
                view="math_preview",
            ),
        ]

    def _vector_operations(self) -> list[OperationSpec]:
        operations = [
            self._spec(
                kind="normalize",
                label="Normalize",
                category=OperationCategory.VECTOR,
                binding_name="normalize",
                inputs=[_port("v", DataType.VEC3, "Vector")],
                outputs=_out(DataType.VEC3),
            ),
            self._spec(
                kind="length",
                label="Length",
                category=OperationCategory.VECTOR,
                binding_name="length",
                inputs=[_port("v", DataType.VEC3, "Vector")],
                outputs=_out(DataType.FLOAT),
            ),
        ]
        for kind, data_type in (("distance", DataType.FLOAT), ("dot", DataType.FLOAT), ("cross", DataType.VEC3)):
            operations.append(
                self._spec(
                    kind=kind,
                    label=kind.capitalize(),
                    category=OperationCategory.VECTOR,
                    binding_name=kind,
                    inputs=[_port("a", DataType.VEC3), _port("b", DataType.VEC3)],
                    outputs=_out(data_type),
                )
            )
        operations.append(
            self._spec(
                kind=SPLIT_KIND,
                label="Split",
                category=OperationCategory.VECTOR,
                binding_name="split",
                source_module="",
                description="Split a vector into its components.",
                inputs=[_port("v", DataType.ANY, "Vector")],
                outputs=[_port(component, DataType.FLOAT) for component in "xyzw"],
            )
        )
        return operations

    def _noise_operations(self) -> list[OperationSpec]:
        return [
            self._spec(
                kind="noise",
                label="Noise",
                category=OperationCategory.NOISE,
                binding_name="mx_noise_float",
                description="Perlin gradient noise.",
                inputs=[_port("pos", DataType.VEC3, "Position")],
                outputs=_out(DataType.FLOAT, "Value"),
                default_values={"scale": 1},
                scaled_input="pos",
                view="texture_preview",
            ),
            self._spec(
                kind="fractal",
                label="Fractal Noise",
                category=OperationCategory.NOISE,
                binding_name="mx_fractal_noise_float",
                description="Multi-octave fractal noise.",
                inputs=[
                    _port("pos", DataType.VEC3, "Position"),
                    _port("octaves", DataType.FLOAT),
                    _port("lacunarity", DataType.FLOAT),
                    _port("diminish", DataType.FLOAT),
                ],
                outputs=_out(DataType.FLOAT, "Value"),
                default_values={"scale": 1, "octaves": 4, "lacunarity": 2, "diminish": 0.5},
                scaled_input="pos",
                view="texture_preview",
            ),
            self._spec(
                kind="voronoi",
                label="Voronoi",
                category=OperationCategory.NOISE,
                binding_name="mx_worley_noise_float",
                description="Cellular (Worley) noise distance.",
                inputs=[_port("pos", DataType.VEC3, "Position")],
                outputs=_out(DataType.FLOAT, "Value"),
                default_values={"scale": 1},
                scaled_input="pos",
                view="texture_preview",
            ),
        ]

    def _color_operations(self) -> list[OperationSpec]:
        return [
            self._spec(
                kind="hsl",
                label="HSL",
                category=OperationCategory.COLOR,
                binding_name="hsl",
                inputs=[_port("h", DataType.FLOAT), _port("s", DataType.FLOAT), _port("l", DataType.FLOAT)],
                outputs=_out(DataType.COLOR, "Color"),
            ),
            self._spec(
                kind="toHsl",
                label="To HSL",
                category=OperationCategory.COLOR,
                binding_name="toHsl",
                inputs=[_port("rgb", DataType.COLOR, "RGB")],
                outputs=_out(DataType.VEC3, "HSL"),
            ),
        ]

    def _texture_operations(self) -> list[OperationSpec]:
        return [
            self._spec(
                kind=f"{TEXTURE_KIND_PREFIX}marble",
                label="Marble",
                category=OperationCategory.TEXTURE,
                binding_name="marble",
                source_module=TEXTURES_MODULE,
                inputs=[
                    _port("position", DataType.VEC3),
                    _port("scale", DataType.FLOAT),
                    _port("thinness", DataType.FLOAT),
                    _port("noise", DataType.FLOAT),
                    _port("seed", DataType.FLOAT),
                ],
                outputs=_out(DataType.COLOR, "Color"),
                default_values={
                    "scale": 1.2,
                    "thinness": 5,
                    "noise": 0.3,
                    "color": "#4545d3",
                    "background": "#f0f8ff",
                    "seed": 0,
                },
                named_parameters=True,
                structured_params={"color": "color", "background": "color"},
                view="texture_preview",
            ),
            self._spec(
                kind=f"{TEXTURE_KIND_PREFIX}polkaDots",
                label="Polka Dots",
                category=OperationCategory.TEXTURE,
                binding_name="polkaDots",
                source_module=TEXTURES_MODULE,
                inputs=[
                    _port("position", DataType.VEC3),
                    _port("count", DataType.FLOAT),
                    _port("size", DataType.FLOAT),
                    _port("blur", DataType.FLOAT),
                    _port("flat", DataType.FLOAT),
                ],
                outputs=_out(DataType.COLOR, "Color"),
                default_values={
                    "count": 2,
                    "size": 0.5,
                    "blur": 0.25,
                    "color": "#000000",
                    "background": "#ffffff",
                    "flat": 0,
                },
                named_parameters=True,
                structured_params={"color": "color", "background": "color"},
                view="texture_preview",
            ),
            self._spec(
                kind=f"{TEXTURE_KIND_PREFIX}rotator",
                label="Rotator",
                category=OperationCategory.TEXTURE,
                binding_name="rotator",
                source_module=TEXTURES_MODULE,
                inputs=[_port("position", DataType.VEC3)],
                outputs=_out(DataType.VEC3, "Position"),
                default_values={
                    "angles_x": 0,
                    "angles_y": 0,
                    "angles_z": 0,
                    "center_x": 0,
                    "center_y": 0,
                    "center_z": 0,
                },
                named_parameters=True,
                structured_params={"angles": "vec3", "center": "vec3"},
            ),
        ]
