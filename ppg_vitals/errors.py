"""Exceptions raised by the processing pipeline."""

from __future__ import annotations


class VitalsError(Exception):
    """Base class for all pipeline errors."""


class NonFiniteInputError(VitalsError, ValueError):
    """A filter received NaN or infinity."""


class SessionStateError(VitalsError, RuntimeError):
    """The session control surface was used out of order."""
