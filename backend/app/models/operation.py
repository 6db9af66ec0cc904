from __future__ import annotations

from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, Field

OperationParam = str | int | float
StructuredParam = Literal["color", "vec2", "vec3"]


class DataType(StrEnum):
    FLOAT = "float"
    INT = "int"
    VEC2 = "vec2"
    VEC3 = "vec3"
    VEC4 = "vec4"
    COLOR = "color"
    ANY = "any"


class OperationCategory(StrEnum):
    INPUT = "input"
    TYPE = "type"
    ARITHMETIC = "arithmetic"
    MATH = "math"
    INTERPOLATION = "interpolation"
    VECTOR = "vector"
    NOISE = "noise"
    COLOR = "color"
    TEXTURE = "texture"
    OUTPUT = "output"


class PortSpec(BaseModel):
    id: str = Field(min_length=1)
    label: str = Field(min_length=1)
    data_type: DataType = DataType.ANY


class OperationSpec(BaseModel):
    kind: str = Field(min_length=1)
    label: str = Field(min_length=1)
    category: OperationCategory
    binding_name: str = ""
    source_module: str = ""
    description: str = ""
    inputs: list[PortSpec] = Field(default_factory=list)
    outputs: list[PortSpec] = Field(default_factory=list)
    default_values: dict[str, OperationParam] = Field(default_factory=dict)
    chainable: bool = False
    named_parameters: bool = False
    property_name_key: str | None = None
    scaled_input: str | None = None
    structured_params: dict[str, StructuredParam] = Field(default_factory=dict)
    view: str = "shader"

    @property
    def is_sink(self) -> bool:
        return self.category == OperationCategory.OUTPUT

    @property
    def is_pure_reference(self) -> bool:
        return not self.inputs and self.category == OperationCategory.INPUT and not self.default_values

    @property
    def is_constructor(self) -> bool:
        return not self.inputs and bool(self.default_values)

    def input_port(self, port_id: str) -> PortSpec | None:
        for port in self.inputs:
            if port.id == port_id:
                return port
        return None

    def output_port(self, port_id: str) -> PortSpec | None:
        for port in self.outputs:
            if port.id == port_id:
                return port
        return None
