"""
Operation Type System - Definitions and registry for operations.

This module defines how operations are specified:
- Constraint: Restrictions on parameter and input values
- InputDefinition: Describes an input socket
- OutputDefinition: Describes an output socket
- ParameterDefinition: Describes a configurable parameter
- SpatialExtent: How far an operation looks around each pixel
- OperationMetadata: Complete description of an operation
- Operation: The interface concrete operations implement
- OperationRegistry: Id-keyed factories, built once then frozen
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Callable, Iterable, Protocol, runtime_checkable

from pixelflow.core.context import ExecutionContext, ValidationContext
from pixelflow.core.data_types import (
    Color,
    DataType,
    ImageData,
    PortType,
    is_number,
    type_of,
    value_matches,
)
from pixelflow.core.errors import (
    OperationNotFoundError,
    RegistryError,
    RegistryFrozenError,
)


logger = logging.getLogger(__name__)


def _label_from_name(name: str) -> str:
    """'tile_width' -> 'Tile Width'"""
    return " ".join(part.capitalize() for part in name.split("_") if part)


# --- Constraints ---

class Constraint(ABC):
    """A restriction on a value. check() returns an error message or None."""

    @abstractmethod
    def check(self, value: Any) -> str | None:
        ...

    @abstractmethod
    def describe(self) -> str:
        ...


@dataclass(frozen=True)
class Range(Constraint):
    """Numeric bound; either end may be open."""
    min_value: float | None = None
    max_value: float | None = None

    def check(self, value: Any) -> str | None:
        if not is_number(value):
            return f"Expected a number, got {type(value).__name__}"
        if self.min_value is not None and value < self.min_value:
            return f"Value {value} is out of range [{self._bounds()}]"
        if self.max_value is not None and value > self.max_value:
            return f"Value {value} is out of range [{self._bounds()}]"
        return None

    def _bounds(self) -> str:
        low = "-inf" if self.min_value is None else self.min_value
        high = "inf" if self.max_value is None else self.max_value
        return f"{low}, {high}"

    def describe(self) -> str:
        return f"range [{self._bounds()}]"


@dataclass(frozen=True)
class LengthBound(Constraint):
    """Length bound for strings and arrays."""
    min_length: int | None = None
    max_length: int | None = None

    def check(self, value: Any) -> str | None:
        if not isinstance(value, (str, list, tuple, dict)):
            return f"Expected a sized value, got {type(value).__name__}"
        length = len(value)
        if self.min_length is not None and length < self.min_length:
            return f"Length {length} is less than minimum {self.min_length}"
        if self.max_length is not None and length > self.max_length:
            return f"Length {length} exceeds maximum {self.max_length}"
        return None

    def describe(self) -> str:
        return f"length [{self.min_length or 0}, {self.max_length or 'inf'}]"


@dataclass(frozen=True)
class NotEmpty(Constraint):
    def check(self, value: Any) -> str | None:
        if value is None or (isinstance(value, (str, list, dict)) and not value):
            return "Value must not be empty"
        return None

    def describe(self) -> str:
        return "not empty"


@dataclass(frozen=True)
class Pattern(Constraint):
    """String must contain a match for a regular expression."""
    pattern: str

    def check(self, value: Any) -> str | None:
        if not isinstance(value, str):
            return f"Expected a string, got {type(value).__name__}"
        if re.search(self.pattern, value) is None:
            return f"Value '{value}' does not match pattern '{self.pattern}'"
        return None

    def describe(self) -> str:
        return f"matches /{self.pattern}/"


@dataclass(frozen=True)
class OneOf(Constraint):
    """Value must be one of an enumerated set."""
    options: tuple[Any, ...]

    def check(self, value: Any) -> str | None:
        if value not in self.options:
            choices = ", ".join(repr(o) for o in self.options)
            return f"Value {value!r} is not one of: {choices}"
        return None

    def describe(self) -> str:
        return f"one of {list(self.options)}"


@dataclass(frozen=True)
class ImageSizeBound(Constraint):
    """Image dimensions must fall inside a box."""
    min_width: int | None = None
    min_height: int | None = None
    max_width: int | None = None
    max_height: int | None = None

    def check(self, value: Any) -> str | None:
        if not isinstance(value, ImageData):
            return f"Expected an image, got {type(value).__name__}"
        w, h = value.size
        if (self.min_width and w < self.min_width) or (self.min_height and h < self.min_height):
            return f"Image {w}x{h} is smaller than minimum {self.min_width}x{self.min_height}"
        if (self.max_width and w > self.max_width) or (self.max_height and h > self.max_height):
            return f"Image {w}x{h} exceeds maximum {self.max_width}x{self.max_height}"
        return None

    def describe(self) -> str:
        return "image size bound"


@dataclass(frozen=True)
class Custom(Constraint):
    """Arbitrary predicate with a name for error messages."""
    name: str
    predicate: Callable[[Any], bool] = field(compare=False)
    description: str = ""

    def check(self, value: Any) -> str | None:
        if not self.predicate(value):
            return self.description or f"Value {value!r} failed check '{self.name}'"
        return None

    def describe(self) -> str:
        return self.description or self.name


NUMERIC = Custom("numeric", is_number, "Value must be a number")


# --- Socket and parameter definitions ---

@dataclass
class InputDefinition:
    """
    Definition of an input socket on an operation.

    Attributes:
        name: Socket identifier, unique among the operation's inputs
        port_type: Type of data accepted
        required: If True, the node cannot execute without a value
        default_value: Value to use if not connected
        constraints: Checked against the resolved value at execution time
    """
    name: str
    port_type: PortType
    required: bool = True
    default_value: Any = None
    label: str = ""
    description: str = ""
    constraints: list[Constraint] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.label:
            self.label = _label_from_name(self.name)

    @property
    def has_default(self) -> bool:
        return self.default_value is not None

    def check(self, value: Any) -> list[str]:
        return [msg for c in self.constraints if (msg := c.check(value))]


@dataclass
class OutputDefinition:
    """Definition of an output socket on an operation."""
    name: str
    port_type: PortType
    label: str = ""
    description: str = ""

    def __post_init__(self) -> None:
        if not self.label:
            self.label = _label_from_name(self.name)


class PathRole(Enum):
    """How an operation uses a filesystem-path parameter."""
    READ = auto()
    WRITE = auto()


@dataclass
class ParameterDefinition:
    """
    Definition of a configurable parameter on an operation.

    Parameters are user-editable values that affect node behavior.
    Unlike inputs, they don't come from connections.
    """
    name: str
    port_type: PortType
    default: Any = None
    label: str = ""
    description: str = ""
    constraints: list[Constraint] = field(default_factory=list)
    path_role: PathRole | None = None

    def __post_init__(self) -> None:
        if not self.label:
            self.label = _label_from_name(self.name)

    def coerce(self, value: Any) -> Any:
        """Widen ints to floats for Float parameters."""
        if (
            self.port_type.kind == DataType.FLOAT
            and isinstance(value, int)
            and not isinstance(value, bool)
        ):
            return float(value)
        return value

    def accepts_type(self, value: Any) -> bool:
        return value_matches(value, self.port_type)

    def check(self, value: Any) -> list[str]:
        """Return every problem with `value`, empty if it is acceptable."""
        if not self.accepts_type(value):
            return [f"Expected {self.port_type}, got {type_of(value)}"]
        return [msg for c in self.constraints if (msg := c.check(value))]

    @classmethod
    def integer(
        cls,
        name: str,
        default: int = 0,
        min_value: int | None = None,
        max_value: int | None = None,
        description: str = "",
    ) -> ParameterDefinition:
        """Factory for integer parameter."""
        constraints: list[Constraint] = []
        if min_value is not None or max_value is not None:
            constraints.append(Range(min_value, max_value))
        return cls(
            name=name,
            port_type=PortType.integer(),
            default=default,
            constraints=constraints,
            description=description,
        )

    @classmethod
    def float_param(
        cls,
        name: str,
        default: float = 0.0,
        min_value: float | None = None,
        max_value: float | None = None,
        description: str = "",
    ) -> ParameterDefinition:
        """Factory for float parameter."""
        constraints: list[Constraint] = []
        if min_value is not None or max_value is not None:
            constraints.append(Range(min_value, max_value))
        return cls(
            name=name,
            port_type=PortType.float(),
            default=float(default),
            constraints=constraints,
            description=description,
        )

    @classmethod
    def text(
        cls,
        name: str,
        default: str = "",
        max_length: int | None = None,
        description: str = "",
    ) -> ParameterDefinition:
        """Factory for text parameter."""
        constraints: list[Constraint] = []
        if max_length is not None:
            constraints.append(LengthBound(max_length=max_length))
        return cls(
            name=name,
            port_type=PortType.string(),
            default=default,
            constraints=constraints,
            description=description,
        )

    @classmethod
    def boolean(cls, name: str, default: bool = False, description: str = "") -> ParameterDefinition:
        """Factory for boolean parameter."""
        return cls(name=name, port_type=PortType.boolean(), default=default, description=description)

    @classmethod
    def enum(
        cls,
        name: str,
        options: list[str],
        default: str | None = None,
        description: str = "",
    ) -> ParameterDefinition:
        """Factory for enum parameter."""
        return cls(
            name=name,
            port_type=PortType.string(),
            default=default or (options[0] if options else None),
            constraints=[OneOf(tuple(options))],
            description=description,
        )

    @classmethod
    def color(
        cls,
        name: str,
        default: Color | None = None,
        description: str = "",
    ) -> ParameterDefinition:
        """Factory for color parameter."""
        return cls(
            name=name,
            port_type=PortType.color(),
            default=default or Color(0, 0, 0),
            description=description,
        )

    @classmethod
    def file_path(
        cls,
        name: str,
        role: PathRole = PathRole.READ,
        default: str = "",
        description: str = "",
    ) -> ParameterDefinition:
        """Factory for file path parameter."""
        return cls(
            name=name,
            port_type=PortType.string(),
            default=default,
            constraints=[NotEmpty()],
            path_role=role,
            description=description,
        )


# --- Spatial extent ---

class ExtentKind(Enum):
    POINTWISE = auto()
    NEIGHBORHOOD = auto()
    GLOBAL = auto()


@dataclass(frozen=True)
class SpatialExtent:
    """
    An operation's dependence on neighboring pixels.

    Pointwise and neighborhood operations can be tiled; global ones
    must see the whole image.
    """
    kind: ExtentKind
    radius: int = 0

    @classmethod
    def pointwise(cls) -> SpatialExtent:
        return cls(ExtentKind.POINTWISE)

    @classmethod
    def neighborhood(cls, radius: int) -> SpatialExtent:
        if radius < 0:
            raise ValueError(f"Radius must be non-negative, got {radius}")
        if radius == 0:
            return cls.pointwise()
        return cls(ExtentKind.NEIGHBORHOOD, radius)

    @classmethod
    def global_extent(cls) -> SpatialExtent:
        return cls(ExtentKind.GLOBAL)

    @property
    def is_chunkable(self) -> bool:
        return self.kind != ExtentKind.GLOBAL

    @property
    def overlap(self) -> int:
        """Tile overlap needed on every side."""
        return self.radius if self.kind == ExtentKind.NEIGHBORHOOD else 0

    def combine(self, other: SpatialExtent) -> SpatialExtent:
        """Extent of applying self and then other."""
        if ExtentKind.GLOBAL in (self.kind, other.kind):
            return SpatialExtent.global_extent()
        return SpatialExtent.neighborhood(self.overlap + other.overlap)


class OperationCategory(Enum):
    """Categories for organizing operations."""
    INPUT = "input"
    OUTPUT = "output"
    MATH = "math"
    COLOR = "color"
    BLUR = "blur"
    ADJUST = "adjust"
    COMPOSITE = "composite"
    UTILITY = "utility"
    CUSTOM = "custom"


@dataclass
class OperationMetadata:
    """
    Complete description of an operation.

    Nodes in a graph reference an operation by its id; everything the
    core needs to know about an operation is here.
    """
    id: str
    name: str
    category: OperationCategory
    description: str = ""

    inputs: list[InputDefinition] = field(default_factory=list)
    outputs: list[OutputDefinition] = field(default_factory=list)
    parameters: list[ParameterDefinition] = field(default_factory=list)

    spatial_extent: SpatialExtent = field(default_factory=SpatialExtent.global_extent)
    deterministic: bool = True
    version: str = "1.0.0"
    tags: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        for kind, items in (("input", self.inputs), ("output", self.outputs), ("parameter", self.parameters)):
            names = [item.name for item in items]
            duplicates = {n for n in names if names.count(n) > 1}
            if duplicates:
                raise ValueError(
                    f"Operation '{self.id}' has duplicate {kind} names: {sorted(duplicates)}"
                )

    def get_input(self, name: str) -> InputDefinition | None:
        """Get an input definition by name."""
        for inp in self.inputs:
            if inp.name == name:
                return inp
        return None

    def get_output(self, name: str) -> OutputDefinition | None:
        """Get an output definition by name."""
        for out in self.outputs:
            if out.name == name:
                return out
        return None

    def get_parameter(self, name: str) -> ParameterDefinition | None:
        """Get a parameter definition by name."""
        for param in self.parameters:
            if param.name == name:
                return param
        return None

    def get_default_parameters(self) -> dict[str, Any]:
        """Get default values for all parameters."""
        return {p.name: p.default for p in self.parameters}


# --- Operation interface ---

class Operation(ABC):
    """
    Interface implemented by concrete operations.

    The engine only ever calls these methods; it never looks inside an
    operation's algorithm.
    """

    @abstractmethod
    def metadata(self) -> OperationMetadata:
        ...

    def validate(self, context: ValidationContext) -> None:
        """Raise ValidationError if the node's configuration is unusable."""

    @abstractmethod
    async def execute(self, context: ExecutionContext) -> None:
        """Compute outputs into context.outputs. Raise on failure."""

    def spatial_extent(self, parameters: dict[str, Any]) -> SpatialExtent:
        """Extent for a specific parameter set; defaults to the declared one."""
        return self.metadata().spatial_extent

    @property
    def id(self) -> str:
        return self.metadata().id


@runtime_checkable
class OperationExecutor(Protocol):
    """Protocol for operation execution functions."""

    async def __call__(
        self,
        inputs: dict[str, Any],
        parameters: dict[str, Any],
        context: ExecutionContext,
    ) -> dict[str, Any]:
        """
        Execute the operation.

        Args:
            inputs: Resolved input values by name
            parameters: Parameter values by name
            context: Execution context with cancellation and progress

        Returns:
            Dictionary of output values by name
        """
        ...


class FunctionOperation(Operation):
    """An Operation assembled from metadata and plain functions."""

    def __init__(
        self,
        metadata: OperationMetadata,
        executor: OperationExecutor,
        validator: Callable[[ValidationContext], None] | None = None,
        extent: Callable[[dict[str, Any]], SpatialExtent] | None = None,
    ):
        self._metadata = metadata
        self._executor = executor
        self._validator = validator
        self._extent = extent

    def metadata(self) -> OperationMetadata:
        return self._metadata

    def validate(self, context: ValidationContext) -> None:
        if self._validator is not None:
            self._validator(context)

    async def execute(self, context: ExecutionContext) -> None:
        result = await self._executor(context.inputs, context.parameters, context)
        if result:
            context.outputs.update(result)

    def spatial_extent(self, parameters: dict[str, Any]) -> SpatialExtent:
        if self._extent is not None:
            return self._extent(parameters)
        return self._metadata.spatial_extent

    def __repr__(self) -> str:
        return f"FunctionOperation({self._metadata.id!r})"


def operation(
    id: str,
    name: str,
    category: OperationCategory,
    description: str = "",
    validator: Callable[[ValidationContext], None] | None = None,
    extent: Callable[[dict[str, Any]], SpatialExtent] | None = None,
    **kwargs,
) -> Callable[[OperationExecutor], FunctionOperation]:
    """
    Decorator to create an operation from an executor function.

    Usage:
        @operation("integer_constant", "Integer", OperationCategory.INPUT,
                   outputs=[OutputDefinition("value", PortType.integer())])
        async def integer_constant(inputs, parameters, context):
            return {"value": parameters["value"]}
    """
    def decorator(executor: OperationExecutor) -> FunctionOperation:
        meta = OperationMetadata(
            id=id,
            name=name,
            category=category,
            description=description,
            **kwargs,
        )
        return FunctionOperation(meta, executor, validator=validator, extent=extent)
    return decorator


# --- Registry ---

OperationFactory = Callable[[], Operation]


class OperationRegistry:
    """
    Registry of available operations, keyed by id.

    Built once (usually via `with_builtins()`), then frozen so it can be
    shared between graphs and engines without further mutation.
    """

    def __init__(self) -> None:
        self._factories: dict[str, OperationFactory] = {}
        self._metadata: dict[str, OperationMetadata] = {}
        self._frozen = False

    @classmethod
    def with_builtins(cls) -> OperationRegistry:
        """A frozen registry holding every built-in operation."""
        from pixelflow.nodes import register_all_nodes

        registry = cls()
        register_all_nodes(registry)
        return registry.freeze()

    def register(self, operation: Operation | OperationFactory) -> OperationMetadata:
        """
        Register an operation instance or a zero-argument factory.

        Instances are shared by every node that uses them, so they must
        hold no per-node state.

        Raises:
            RegistryFrozenError: If the registry has been frozen.
            RegistryError: If the id is already registered.
        """
        if self._frozen:
            raise RegistryFrozenError()

        if isinstance(operation, Operation):
            instance = operation
            factory: OperationFactory = lambda: instance
        else:
            factory = operation
            instance = factory()

        meta = instance.metadata()
        if meta.id in self._factories:
            raise RegistryError(f"Operation already registered: {meta.id}")

        self._factories[meta.id] = factory
        self._metadata[meta.id] = meta
        logger.debug(f"Registered operation {meta.id}")
        return meta

    def register_many(self, operations: Iterable[Operation | OperationFactory]) -> None:
        for op in operations:
            self.register(op)

    def freeze(self) -> OperationRegistry:
        self._frozen = True
        return self

    @property
    def is_frozen(self) -> bool:
        return self._frozen

    def create(self, operation_id: str) -> Operation:
        """
        Instantiate an operation by id.

        Raises:
            OperationNotFoundError: If the id is unknown.
        """
        factory = self._factories.get(operation_id)
        if factory is None:
            raise OperationNotFoundError(operation_id)
        return factory()

    def get_metadata(self, operation_id: str) -> OperationMetadata | None:
        return self._metadata.get(operation_id)

    def get_all(self) -> list[OperationMetadata]:
        return list(self._metadata.values())

    def ids(self) -> list[str]:
        return list(self._metadata)

    def list_by_category(self, category: OperationCategory) -> list[OperationMetadata]:
        return [m for m in self._metadata.values() if m.category == category]

    def search(self, query: str) -> list[OperationMetadata]:
        """Search operations by name, description or tag."""
        query = query.lower()
        return [
            m for m in self._metadata.values()
            if query in m.name.lower()
            or query in m.description.lower()
            or any(query in tag.lower() for tag in m.tags)
        ]

    def __len__(self) -> int:
        return len(self._metadata)

    def __contains__(self, operation_id: str) -> bool:
        return operation_id in self._metadata
