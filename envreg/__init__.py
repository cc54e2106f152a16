"""envreg: envelope models for multivariate regression.

This package provides the heteroscedastic envelope for comparing
multivariate group means, the inner envelope for multivariate linear
regression, and dimension selection and bootstrap utilities around them.
"""
from __future__ import annotations

from importlib import import_module
from typing import Any

__version__ = "0.1.0"

__all__ = [
    "HENV",
    "IENV",
    "BootConfig",
    "EnvelopeOptions",
    "HenvResult",
    "IenvResult",
    "aic_henv",
    "bic_henv",
    "bootstrap_se",
    "henv",
    "ienv",
    "lrt_henv",
    "mfoldcv_henv",
    "mfoldcv_ienv",
]

_LAZY_IMPORTS: dict[str, tuple[str, str]] = {
    "BootConfig": ("envreg.estimators.base", "BootConfig"),
    "EnvelopeOptions": ("envreg.estimators.base", "EnvelopeOptions"),
    "HENV": ("envreg.estimators.henv", "HENV"),
    "HenvResult": ("envreg.estimators.henv", "HenvResult"),
    "henv": ("envreg.estimators.henv", "henv"),
    "IENV": ("envreg.estimators.ienv", "IENV"),
    "IenvResult": ("envreg.estimators.ienv", "IenvResult"),
    "ienv": ("envreg.estimators.ienv", "ienv"),
    "bootstrap_se": ("envreg.core.bootstrap", "bootstrap_se"),
    "aic_henv": ("envreg.utils.selection", "aic_henv"),
    "bic_henv": ("envreg.utils.selection", "bic_henv"),
    "lrt_henv": ("envreg.utils.selection", "lrt_henv"),
    "mfoldcv_henv": ("envreg.utils.selection", "mfoldcv_henv"),
    "mfoldcv_ienv": ("envreg.utils.selection", "mfoldcv_ienv"),
}


def __getattr__(name: str) -> Any:
    """Lazily import public estimators and utilities on first access."""
    if name in _LAZY_IMPORTS:
        module_name, attr_name = _LAZY_IMPORTS[name]
        module = import_module(module_name)
        attr = getattr(module, attr_name)
        globals()[name] = attr
        return attr
    raise AttributeError(f"module 'envreg' has no attribute '{name}'")


def __dir__() -> list[str]:
    """Ensure dir() exposes lazily imported names."""
    return sorted(set(globals()) | set(__all__))
