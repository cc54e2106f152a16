# envreg/core/__init__.py
"""Core computational modules for envreg."""
from . import inference, init_basis, linalg, manifold, stats

__all__ = ["inference", "init_basis", "linalg", "manifold", "stats"]
