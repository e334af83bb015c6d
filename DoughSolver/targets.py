"""Per-ingredient targets and the global constraint set of a formulation problem."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Tuple, Union


@dataclass(frozen=True)
class Free:
    """Mass is an unknown solved by the system."""

    def describe(self) -> str:
        return "free"


@dataclass(frozen=True)
class FixedMass:
    """Mass is known, in grams."""
    mass: float

    def describe(self) -> str:
        return f"{self.mass:g} g"


@dataclass(frozen=True)
class FixedRatio:
    """Mass is an unknown tied to total flour: mass = ratio * total_flour."""
    ratio: float

    def describe(self) -> str:
        return f"{self.ratio:.2%} of flour"


@dataclass(frozen=True)
class FixedMassAndRatio:
    """Mass is known and must also equal ratio * total_flour."""
    mass: float
    ratio: float

    def describe(self) -> str:
        return f"{self.mass:g} g = {self.ratio:.2%} of flour"


Target = Union[Free, FixedMass, FixedRatio, FixedMassAndRatio]


def target_from_fields(mass: Optional[float] = None, ratio: Optional[float] = None) -> Target:
    """Pick the target variant for an optional mass and an optional ratio."""
    if mass is not None and ratio is not None:
        return FixedMassAndRatio(mass=mass, ratio=ratio)
    if mass is not None:
        return FixedMass(mass=mass)
    if ratio is not None:
        return FixedRatio(ratio=ratio)
    return Free()


def fixed_mass_of(target: Target) -> Optional[float]:
    """Known mass of a target, or None when the mass is an unknown."""
    if isinstance(target, (FixedMass, FixedMassAndRatio)):
        return target.mass
    return None


def ratio_of(target: Target) -> Optional[float]:
    if isinstance(target, (FixedRatio, FixedMassAndRatio)):
        return target.ratio
    return None


@dataclass(frozen=True)
class GlobalConstraints:
    """
    Sparse set of dough-wide targets; each field is independently optional.

    Attributes
    ----------
    total_mass : float, optional
        Dough mass in grams
    total_flour : float, optional
        Flour mass in grams, starter flour included
    hydration : float, optional
        Water mass over flour mass
    protein_ratio : float, optional
        Protein mass over flour (or dough, see SolverConfig.ratio_basis)
    salt_ratio : float, optional
        Salt mass over flour (or dough, see SolverConfig.ratio_basis)
    """
    total_mass: Optional[float] = None
    total_flour: Optional[float] = None
    hydration: Optional[float] = None
    protein_ratio: Optional[float] = None
    salt_ratio: Optional[float] = None

    def items(self) -> List[Tuple[str, float]]:
        """Present constraints as (field name, value), in row order."""
        pairs = [
            ("total_mass", self.total_mass),
            ("total_flour", self.total_flour),
            ("hydration", self.hydration),
            ("protein_ratio", self.protein_ratio),
            ("salt_ratio", self.salt_ratio),
        ]
        return [(name, value) for name, value in pairs if value is not None]


@dataclass(frozen=True)
class ProblemEntry:
    ingredient_id: str
    target: Target = field(default_factory=Free)


@dataclass(frozen=True)
class FormulationProblem:
    """Global constraints plus an ordered list of (ingredient, target) entries."""
    entries: Tuple[ProblemEntry, ...]
    constraints: GlobalConstraints = field(default_factory=GlobalConstraints)
    name: Optional[str] = None

    def __post_init__(self) -> None:
        # Accept any sequence of entries; keep the problem hashable.
        object.__setattr__(self, "entries", tuple(self.entries))

    @property
    def ingredient_ids(self) -> List[str]:
        return [e.ingredient_id for e in self.entries]

    def target_for(self, ingredient_id: str) -> Target:
        for entry in self.entries:
            if entry.ingredient_id == ingredient_id:
                return entry.target
        raise KeyError(ingredient_id)

    def __iter__(self) -> Iterator[ProblemEntry]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)
