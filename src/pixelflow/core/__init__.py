"""
Core module - Data model, graph, validation and execution.

This module provides the fundamental building blocks for pixelflow:
- Data Types: Values, port types and images
- Node Types: Operation definitions and the registry
- Graph: The processing graph and its mutation API
- Validation: Staged checks producing a report
- Execution: The engine, result cache and tiled processing
"""

from pixelflow.core.data_types import (
    Color,
    DataType,
    ImageData,
    ImageMetadata,
    PortType,
    Value,
    assignable,
    type_of,
)

from pixelflow.core.errors import (
    ChunkError,
    CycleWouldFormError,
    DuplicateConnectionError,
    ExecutionCancelled,
    ExecutionError,
    GraphError,
    GraphSerializationError,
    NodeNotFoundError,
    PixelflowError,
    PortNotFoundError,
    TypeMismatchError,
    ValidationError,
)

from pixelflow.core.context import (
    CancellationToken,
    ExecutionContext,
    ValidationContext,
)

from pixelflow.core.node_types import (
    InputDefinition,
    Operation,
    OperationCategory,
    OperationMetadata,
    OperationRegistry,
    OutputDefinition,
    ParameterDefinition,
    SpatialExtent,
    operation,
)

from pixelflow.core.graph import (
    Connection,
    ConnectionId,
    Node,
    NodeId,
    Point2D,
    ProcessingGraph,
)

from pixelflow.core.topology import (
    TopologyAnalyzer,
    connected_subgraphs,
    parallel_batches,
    topological_order,
)

from pixelflow.core.validation import (
    ValidationIssue,
    ValidationPipeline,
    ValidationReport,
    validate,
)

from pixelflow.core.cache import (
    CacheKey,
    CacheStats,
    ResultCache,
)

from pixelflow.core.config import (
    EngineConfig,
    ExecutionSettings,
    FailurePolicy,
)

from pixelflow.core.execution import (
    ExecutionEngine,
    ExecutionProgress,
    ExecutionResult,
    NodeStatus,
    execute_graph,
)

from pixelflow.core.serialization import (
    graph_from_dict,
    graph_to_dict,
    load_graph,
    save_graph,
)


__all__ = [
    # data_types.py
    "Color",
    "DataType",
    "ImageData",
    "ImageMetadata",
    "PortType",
    "Value",
    "assignable",
    "type_of",
    # errors.py
    "ChunkError",
    "CycleWouldFormError",
    "DuplicateConnectionError",
    "ExecutionCancelled",
    "ExecutionError",
    "GraphError",
    "GraphSerializationError",
    "NodeNotFoundError",
    "PixelflowError",
    "PortNotFoundError",
    "TypeMismatchError",
    "ValidationError",
    # context.py
    "CancellationToken",
    "ExecutionContext",
    "ValidationContext",
    # node_types.py
    "InputDefinition",
    "Operation",
    "OperationCategory",
    "OperationMetadata",
    "OperationRegistry",
    "OutputDefinition",
    "ParameterDefinition",
    "SpatialExtent",
    "operation",
    # graph.py
    "Connection",
    "ConnectionId",
    "Node",
    "NodeId",
    "Point2D",
    "ProcessingGraph",
    # topology.py
    "TopologyAnalyzer",
    "connected_subgraphs",
    "parallel_batches",
    "topological_order",
    # validation.py
    "ValidationIssue",
    "ValidationPipeline",
    "ValidationReport",
    "validate",
    # cache.py
    "CacheKey",
    "CacheStats",
    "ResultCache",
    # config.py
    "EngineConfig",
    "ExecutionSettings",
    "FailurePolicy",
    # execution.py
    "ExecutionEngine",
    "ExecutionProgress",
    "ExecutionResult",
    "NodeStatus",
    "execute_graph",
    # serialization.py
    "graph_from_dict",
    "graph_to_dict",
    "load_graph",
    "save_graph",
]
