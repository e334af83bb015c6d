"""
Problem and result exchange files (YAML or JSON).

A problem file looks like::

    name: Country loaf
    ingredients:
      - ingredient: white-flour-unbleached
        mass: 400 g
      - ingredient: stiff-starter
        mass: {value: 80, unit: g}
      - ingredient: water
      - ingredient: table-salt
    constraints:
      hydration: 80%
      saltRatio: 0.02
    catalog: []   # optional inline ingredients, same shape as the JSON catalog

Masses always carry a unit; a bare number is rejected.
"""
from __future__ import annotations

import json
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Annotated, Any, Dict, List, Mapping, Optional, Tuple

import yaml
from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from .errors import ConfigError
from .ingredients import Ingredient, IngredientRegistry, ingredient_from_dict
from .result import FormulationResult
from .targets import FormulationProblem, GlobalConstraints, ProblemEntry, target_from_fields

MASS_UNITS: Dict[str, float] = {
    "g": 1.0,
    "kg": 1000.0,
    "mg": 0.001,
    "oz": 28.349523125,
    "lb": 453.59237,
}
VOLUME_UNITS: Dict[str, float] = {
    "ml": 1.0,
    "l": 1000.0,
}

_QUANTITY_RE = re.compile(r"^\s*(-?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?)\s*([A-Za-z]+)\s*$")


def _parse_ratio(value: Any) -> Any:
    """Accept 0.75 or "75%"; leave everything else to pydantic."""
    if isinstance(value, bool):
        raise ValueError(f"Expected a ratio, got {value!r}")
    if isinstance(value, str):
        text = value.strip()
        try:
            if text.endswith("%"):
                return float(text[:-1].strip()) / 100.0
            return float(text)
        except ValueError as exc:
            raise ValueError(f"Expected a ratio such as 0.75 or '75%', got {value!r}") from exc
    return value


Ratio = Annotated[float, BeforeValidator(_parse_ratio)]


class MassInput(BaseModel):
    """A quantity with an explicit mass or volume unit."""
    value: float
    unit: str

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="before")
    @classmethod
    def _parse_shorthand(cls, data: Any) -> Any:
        if isinstance(data, bool):
            raise ValueError(f"Expected a mass, got {data!r}")
        if isinstance(data, (int, float)):
            raise ValueError(f"Mass {data!r} has no unit; write e.g. '{data} g'")
        if isinstance(data, str):
            match = _QUANTITY_RE.match(data)
            if not match:
                raise ValueError(f"Expected a mass such as '400 g', got {data!r}")
            return {"value": float(match.group(1)), "unit": match.group(2)}
        return data

    @field_validator("unit")
    @classmethod
    def _known_unit(cls, unit: str) -> str:
        normalised = unit.strip().lower()
        if normalised not in MASS_UNITS and normalised not in VOLUME_UNITS:
            known = ", ".join(list(MASS_UNITS) + list(VOLUME_UNITS))
            raise ValueError(f"Unknown unit {unit!r} (expected one of {known})")
        return normalised

    def to_grams(self, density_g_per_ml: float = 1.0) -> float:
        if self.unit in MASS_UNITS:
            return self.value * MASS_UNITS[self.unit]
        return self.value * VOLUME_UNITS[self.unit] * density_g_per_ml


class IngredientEntryInput(BaseModel):
    ingredient: str = Field(min_length=1)
    mass: Optional[MassInput] = None
    ratio: Optional[Ratio] = None

    model_config = ConfigDict(extra="forbid")


class ConstraintsInput(BaseModel):
    total_mass: Optional[MassInput] = Field(default=None, alias="totalMass")
    total_flour: Optional[MassInput] = Field(default=None, alias="totalFlour")
    hydration: Optional[Ratio] = None
    protein_ratio: Optional[Ratio] = Field(default=None, alias="proteinRatio")
    salt_ratio: Optional[Ratio] = Field(default=None, alias="saltRatio")

    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class ProblemInput(BaseModel):
    name: Optional[str] = None
    ingredients: List[IngredientEntryInput] = Field(min_length=1)
    constraints: ConstraintsInput = Field(default_factory=ConstraintsInput)
    catalog: List[Dict[str, Any]] = Field(default_factory=list)

    model_config = ConfigDict(extra="forbid")

    def to_problem(self, density_g_per_ml: float = 1.0) -> FormulationProblem:
        def grams(mass: Optional[MassInput]) -> Optional[float]:
            return mass.to_grams(density_g_per_ml) if mass is not None else None

        entries = [
            ProblemEntry(e.ingredient, target_from_fields(mass=grams(e.mass), ratio=e.ratio))
            for e in self.ingredients
        ]
        c = self.constraints
        constraints = GlobalConstraints(
            total_mass=grams(c.total_mass),
            total_flour=grams(c.total_flour),
            hydration=c.hydration,
            protein_ratio=c.protein_ratio,
            salt_ratio=c.salt_ratio,
        )
        return FormulationProblem(entries=entries, constraints=constraints, name=self.name)


@dataclass(frozen=True)
class ProblemDocument:
    """A parsed problem file: the problem plus any inline catalog entries."""
    problem: FormulationProblem
    catalog: Tuple[Ingredient, ...] = ()

    def registry(self, base: IngredientRegistry) -> IngredientRegistry:
        return base.extended(self.catalog) if self.catalog else base


def parse_problem(
    raw: Mapping[str, Any],
    density_g_per_ml: float = 1.0,
    source: str = "<problem>",
) -> ProblemDocument:
    """Validate a raw mapping and convert it to a ProblemDocument (grams)."""
    try:
        parsed = ProblemInput.model_validate(raw)
    except ValidationError as exc:
        raise ConfigError(f"Invalid problem in {source}: {exc}") from exc
    catalog = tuple(ingredient_from_dict(record) for record in parsed.catalog)
    return ProblemDocument(problem=parsed.to_problem(density_g_per_ml), catalog=catalog)


def load_problem(path: Path, density_g_per_ml: float = 1.0) -> ProblemDocument:
    """Read a YAML (.yaml/.yml) or JSON problem file."""
    if not path.exists():
        raise ConfigError(f"Problem file not found: {path}")
    text = path.read_text(encoding="utf-8")
    try:
        if path.suffix.lower() == ".json":
            raw = json.loads(text)
        else:
            raw = yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise ConfigError(f"Could not parse {path}: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigError(f"Problem root in {path} must be a mapping")
    return parse_problem(raw, density_g_per_ml, source=str(path))


def result_to_dict(result: FormulationResult) -> Dict[str, Any]:
    return result.to_dict()


def dump_result(result: FormulationResult, fmt: str = "yaml") -> str:
    """Serialise a result as YAML or JSON text."""
    data = result_to_dict(result)
    fmt = fmt.lower()
    if fmt == "json":
        return json.dumps(data, indent=2)
    if fmt == "yaml":
        return yaml.safe_dump(data, default_flow_style=False, allow_unicode=True, sort_keys=False)
    raise ConfigError(f"Unknown output format {fmt!r} (expected yaml or json)")


def write_result(result: FormulationResult, path: Path) -> None:
    """Write a result next to its problem; the suffix picks the format."""
    fmt = "json" if path.suffix.lower() == ".json" else "yaml"
    path.write_text(dump_result(result, fmt), encoding="utf-8")
