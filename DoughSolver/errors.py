"""Structural errors raised before a formulation problem is solved.

Solver outcomes (under-determined, inconsistent, infeasible) are not
exceptions; they are carried by ``FormulationResult.status``.
"""
from __future__ import annotations


class FormulationError(Exception):
    """Base class for every error raised by the formulation package."""


class UnknownIngredient(FormulationError):
    """Raised when a problem references an ingredient missing from the registry."""

    def __init__(self, ingredient_id: str):
        self.ingredient_id = ingredient_id
        super().__init__(f"Unknown ingredient: {ingredient_id!r}")


class MalformedTarget(FormulationError):
    """Raised when an ingredient target cannot be honoured as written."""

    def __init__(self, ingredient_id: str, reason: str):
        self.ingredient_id = ingredient_id
        self.reason = reason
        super().__init__(f"Malformed target for {ingredient_id!r}: {reason}")


class MalformedProblem(FormulationError):
    """Raised when the problem as a whole is structurally invalid."""


class RegistryError(FormulationError):
    """Raised when catalog data describes an impossible ingredient."""


class ConfigError(FormulationError):
    """Raised when a configuration or exchange file is missing or invalid."""
