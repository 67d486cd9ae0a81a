"""
pixelflow - A dataflow engine for typed image-processing graphs.

Build a ProcessingGraph from registered operations, validate it, then
run it with the ExecutionEngine. Results are cached between runs and
large images are processed in tiles.
"""

__version__ = "0.1.0"
