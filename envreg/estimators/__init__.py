"""Estimator exports.

Public estimator classes, result containers and option types.
"""
from __future__ import annotations

from .base import BaseEnvelope, BootConfig, EnvelopeOptions, EnvelopeResult
from .henv import HENV, HenvResult, henv
from .ienv import IENV, IenvResult, ienv

__all__ = [
    "HENV",
    "IENV",
    "BaseEnvelope",
    "BootConfig",
    "EnvelopeOptions",
    "EnvelopeResult",
    "HenvResult",
    "IenvResult",
    "henv",
    "ienv",
]
