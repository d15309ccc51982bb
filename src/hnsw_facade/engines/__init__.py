"""Metric-specialized graph engines."""

from .brute_force import BruteForceEngine
from .factory import create_engine, engine_class_for, load_engine, resolve_backend
from .hnsw import HnswlibEngine

__all__ = [
    "BruteForceEngine",
    "HnswlibEngine",
    "create_engine",
    "engine_class_for",
    "load_engine",
    "resolve_backend",
]
