"""Naive and shared-memory tiled matrix multiplication on CUDA devices."""

__version__ = "0.1.0"
