"""Ingredient catalog and per-gram composition helpers.

Ingredients are immutable reference data. The registry is loaded once from
``data/ingredients.json`` (or any catalog with the same shape) and looked up
by id from problems and results.
"""
from __future__ import annotations

import json
import math
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

from .errors import RegistryError, UnknownIngredient

DEFAULT_CATALOG_PATH = Path(__file__).resolve().parent / "data" / "ingredients.json"

# Fractions at or below this are treated as absent by the has_* predicates
NOT_ZERO_THRESHOLD = 0.001


class IngredientCategory(str, Enum):
    FLOUR = "Flour"
    LEAVENER = "Leavener"
    LIQUID = "Liquid"
    FAT = "Fat"
    NUTS = "Nuts"
    SEEDS = "Seeds"
    SALT = "Salt"
    MIXED = "Mixed"


class IngredientKind(str, Enum):
    WHITE_FLOUR_UNBLEACHED = "WhiteFlourUnbleached"
    WHITE_FLOUR_BLEACHED = "WhiteFlourBleached"
    WHOLE_WHEAT_FLOUR = "WholeWheatFlour"
    WHITE_RYE_FLOUR = "WhiteRyeFlour"
    MEDIUM_RYE_FLOUR = "MediumRyeFlour"
    DARK_RYE_FLOUR = "DarkRyeFlour"
    PUMPERNICKEL_FLOUR = "PumpernickelFlour"
    GLUTEN_POWDER = "GlutenPowder"

    SOURDOUGH_STARTER = "SourdoughStarter"
    ACTIVE_DRY_YEAST = "ActiveDryYeast"
    INSTANT_DRY_YEAST = "InstantDryYeast"
    FRESH_YEAST = "FreshYeast"
    BEER = "Beer"

    WATER = "Water"
    MILK = "Milk"
    JUICE = "Juice"
    BROTH = "Broth"

    SHORTENING = "Shortening"
    BUTTER = "Butter"
    MARGARINE = "Margarine"
    REDUCED_FAT_SUBSTITUTE = "ReducedFatSubstitute"
    OIL = "Oil"

    TABLE_SALT = "TableSalt"
    MISO_PASTE = "MisoPaste"
    DASHI_POWDER = "DashiPowder"

    EGGS = "Eggs"

    OTHER = "Other"


K = IngredientKind

# Category -> kinds it admits
CATEGORY_KINDS: Dict[IngredientCategory, Tuple[IngredientKind, ...]] = {
    IngredientCategory.FLOUR: (
        K.WHITE_FLOUR_UNBLEACHED, K.WHITE_FLOUR_BLEACHED, K.WHOLE_WHEAT_FLOUR,
        K.WHITE_RYE_FLOUR, K.MEDIUM_RYE_FLOUR, K.DARK_RYE_FLOUR,
        K.PUMPERNICKEL_FLOUR, K.GLUTEN_POWDER, K.OTHER,
    ),
    IngredientCategory.LEAVENER: (
        K.SOURDOUGH_STARTER, K.ACTIVE_DRY_YEAST, K.INSTANT_DRY_YEAST,
        K.FRESH_YEAST, K.BEER,
    ),
    IngredientCategory.LIQUID: (K.WATER, K.MILK, K.JUICE, K.BROTH, K.OTHER),
    IngredientCategory.FAT: (
        K.SHORTENING, K.BUTTER, K.MARGARINE, K.REDUCED_FAT_SUBSTITUTE, K.OIL, K.OTHER,
    ),
    IngredientCategory.NUTS: (K.OTHER,),
    IngredientCategory.SEEDS: (K.OTHER,),
    IngredientCategory.SALT: (K.TABLE_SALT, K.MISO_PASTE, K.DASHI_POWDER, K.OTHER),
    IngredientCategory.MIXED: (K.EGGS, K.OTHER),
}


# -----------------------------------------------------------------------------
# Hydration <-> water ratio
# -----------------------------------------------------------------------------
#
# With water content a and remaining content b:
#   water ratio  w = a / (a + b)
#   hydration    h = a / b
# so 1/w = 1 + 1/h, which gives h = w / (1 - w) and w = h / (1 + h).

def hydration_to_water_ratio(hydration: float) -> float:
    """Water ratio (water over total mass) of something with the given hydration."""
    if hydration < 0 or math.isinf(hydration) or math.isnan(hydration):
        raise ValueError(f"Hydration must be a finite non-negative number, got {hydration}")
    return hydration / (1.0 + hydration)


def water_ratio_to_hydration(water_ratio: float) -> float:
    """Hydration (water over non-water mass) from a water ratio in [0, 1].

    A water ratio of exactly 1 gives infinite hydration.
    """
    if not 0.0 <= water_ratio <= 1.0:
        raise ValueError(f"Water ratio must be within [0, 1], got {water_ratio}")
    if water_ratio == 1.0:
        return math.inf
    return water_ratio / (1.0 - water_ratio)


def starter_flour_fraction(internal_hydration: float) -> float:
    """Share of a starter's mass that is flour: 1 / (1 + H)."""
    hydration_to_water_ratio(internal_hydration)  # validates H
    return 1.0 / (1.0 + internal_hydration)


def starter_water_fraction(internal_hydration: float) -> float:
    """Share of a starter's mass that is water: H / (1 + H)."""
    return hydration_to_water_ratio(internal_hydration)


# -----------------------------------------------------------------------------
# Ingredient
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class Ingredient:
    """
    Catalog entry for a single ingredient.

    Attributes
    ----------
    id : str
        Stable identifier referenced by problems and results
    category, kind :
        Classification tags; ``kind`` must be admitted by ``category``
    protein, water, salt, ash, sugar, fat : float
        Mass fractions in [0, 1]. They need not sum to 1, the remainder is
        inert solids. Sugar and fat are reference data only.
    internal_hydration : float, optional
        Water over flour inside a sourdough starter
    """
    id: str
    name: str
    category: IngredientCategory
    kind: IngredientKind
    protein: float = 0.0
    water: float = 0.0
    salt: float = 0.0
    ash: float = 0.0
    sugar: float = 0.0
    fat: float = 0.0
    internal_hydration: Optional[float] = None
    brand: Optional[str] = None
    notes: Optional[str] = None

    def __post_init__(self) -> None:
        for label in ("protein", "water", "salt", "ash", "sugar", "fat"):
            value = getattr(self, label)
            if not isinstance(value, (int, float)) or not 0.0 <= value <= 1.0:
                raise RegistryError(
                    f"Ingredient {self.id!r}: {label} fraction must be within [0, 1], got {value!r}"
                )
        if self.kind not in CATEGORY_KINDS.get(self.category, ()):
            raise RegistryError(
                f"Ingredient {self.id!r}: kind {self.kind.value} is not a {self.category.value} kind"
            )
        if self.internal_hydration is not None:
            if self.kind is not IngredientKind.SOURDOUGH_STARTER:
                raise RegistryError(
                    f"Ingredient {self.id!r}: only sourdough starters carry an internal hydration"
                )
            if self.internal_hydration < 0 or not math.isfinite(self.internal_hydration):
                raise RegistryError(
                    f"Ingredient {self.id!r}: internal hydration must be finite and >= 0"
                )

    @property
    def is_starter(self) -> bool:
        return self.kind is IngredientKind.SOURDOUGH_STARTER

    @property
    def is_leavener(self) -> bool:
        return self.category is IngredientCategory.LEAVENER

    @property
    def has_flour(self) -> bool:
        return self.category is IngredientCategory.FLOUR or self.is_starter

    @property
    def has_water(self) -> bool:
        return self.is_starter or self.water > NOT_ZERO_THRESHOLD

    @property
    def has_salt(self) -> bool:
        return self.salt > NOT_ZERO_THRESHOLD

    @property
    def starter_hydration(self) -> float:
        """Internal hydration of a starter, derived from its water fraction if not declared."""
        if not self.is_starter:
            raise ValueError(f"{self.id!r} is not a sourdough starter")
        if self.internal_hydration is not None:
            return self.internal_hydration
        hydration = water_ratio_to_hydration(self.water)
        if math.isinf(hydration):
            raise RegistryError(f"Starter {self.id!r} is pure water; it has no flour")
        return hydration

    def describe(self) -> str:
        lines = [f"{self.name} [{self.id}]", f"  {self.category.value} / {self.kind.value}"]
        if self.brand:
            lines.append(f"  Brand: {self.brand}")
        lines.append(
            f"  Protein {self.protein:.1%}, water {self.water:.1%}, salt {self.salt:.1%}, "
            f"ash {self.ash:.2%}, sugar {self.sugar:.1%}, fat {self.fat:.1%}"
        )
        if self.is_starter:
            lines.append(f"  Internal hydration: {self.starter_hydration:.0%}")
        if self.notes:
            lines.append(f"  Notes: {self.notes}")
        return "\n".join(lines)


@dataclass(frozen=True)
class Composition:
    """Per-gram contributions of an ingredient to the dough totals."""
    flour: float
    water: float
    protein: float
    salt: float
    ash: float = 0.0


def effective_composition(ingredient: Ingredient, count_flour_moisture: bool = False) -> Composition:
    """
    Per-gram flour/water/protein/salt contributions of ``ingredient``.

    Flour-category ingredients count entirely as flour (baker's convention)
    unless ``count_flour_moisture`` is set, in which case their declared
    moisture is split out as water. A starter is decomposed by its internal
    hydration; its protein and ash apply to its flour share only.
    """
    if ingredient.is_starter:
        hydration = ingredient.starter_hydration
        flour = starter_flour_fraction(hydration)
        return Composition(
            flour=flour,
            water=starter_water_fraction(hydration),
            protein=ingredient.protein * flour,
            salt=ingredient.salt,
            ash=ingredient.ash * flour,
        )
    if ingredient.category is IngredientCategory.FLOUR:
        if count_flour_moisture:
            return Composition(
                flour=1.0 - ingredient.water,
                water=ingredient.water,
                protein=ingredient.protein,
                salt=ingredient.salt,
                ash=ingredient.ash,
            )
        return Composition(
            flour=1.0,
            water=0.0,
            protein=ingredient.protein,
            salt=ingredient.salt,
            ash=ingredient.ash,
        )
    return Composition(
        flour=0.0,
        water=ingredient.water,
        protein=ingredient.protein,
        salt=ingredient.salt,
        ash=ingredient.ash,
    )


# -----------------------------------------------------------------------------
# Registry
# -----------------------------------------------------------------------------

def _require_fraction(raw: Dict[str, Any], key: str, ingredient_id: str) -> float:
    value = raw.get(key, 0.0)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise RegistryError(f"Ingredient {ingredient_id!r}: {key} must be a number, got {value!r}")
    return float(value)


def ingredient_from_dict(raw: Dict[str, Any]) -> Ingredient:
    """Build an Ingredient from a catalog record."""
    ingredient_id = raw.get("id")
    if not isinstance(ingredient_id, str) or not ingredient_id:
        raise RegistryError(f"Catalog entry without a valid id: {raw!r}")
    try:
        category = IngredientCategory(raw["category"])
        kind = IngredientKind(raw.get("kind", IngredientKind.OTHER.value))
    except KeyError as exc:
        raise RegistryError(f"Ingredient {ingredient_id!r}: missing {exc.args[0]!r}") from exc
    except ValueError as exc:
        raise RegistryError(f"Ingredient {ingredient_id!r}: {exc}") from exc

    hydration = raw.get("internal_hydration")
    if hydration is not None:
        hydration = _require_fraction(raw, "internal_hydration", ingredient_id)
    return Ingredient(
        id=ingredient_id,
        name=str(raw.get("name", ingredient_id)),
        category=category,
        kind=kind,
        protein=_require_fraction(raw, "protein", ingredient_id),
        water=_require_fraction(raw, "water", ingredient_id),
        salt=_require_fraction(raw, "salt", ingredient_id),
        ash=_require_fraction(raw, "ash", ingredient_id),
        sugar=_require_fraction(raw, "sugar", ingredient_id),
        fat=_require_fraction(raw, "fat", ingredient_id),
        internal_hydration=hydration,
        brand=raw.get("brand"),
        notes=raw.get("notes"),
    )


def ingredient_to_dict(ingredient: Ingredient) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "id": ingredient.id,
        "name": ingredient.name,
        "category": ingredient.category.value,
        "kind": ingredient.kind.value,
        "protein": ingredient.protein,
        "water": ingredient.water,
        "salt": ingredient.salt,
        "ash": ingredient.ash,
        "sugar": ingredient.sugar,
        "fat": ingredient.fat,
    }
    if ingredient.internal_hydration is not None:
        data["internal_hydration"] = ingredient.internal_hydration
    if ingredient.brand:
        data["brand"] = ingredient.brand
    if ingredient.notes:
        data["notes"] = ingredient.notes
    return data


class IngredientRegistry:
    """
    Read-only lookup of ingredients by id.

    Registries never change after construction; ``extended`` returns a new
    registry with additional entries.
    """

    def __init__(self, ingredients: Iterable[Ingredient] = ()):
        self._ingredients: Dict[str, Ingredient] = {}
        for ingredient in ingredients:
            if ingredient.id in self._ingredients:
                raise RegistryError(f"Duplicate ingredient id in catalog: {ingredient.id!r}")
            self._ingredients[ingredient.id] = ingredient

    @classmethod
    def from_file(cls, path: Path) -> "IngredientRegistry":
        """Load a JSON catalog: ``{"ingredients": [...]}`` or a bare list."""
        if not path.exists():
            raise FileNotFoundError(f"Ingredient catalog not found at {path}")
        try:
            with path.open("r", encoding="utf-8") as fh:
                data = json.load(fh)
        except json.JSONDecodeError as e:
            raise RegistryError(f"Invalid JSON in {path}: {e}") from e
        return cls.from_records(data.get("ingredients", []) if isinstance(data, dict) else data)

    @classmethod
    def from_records(cls, records: Iterable[Dict[str, Any]]) -> "IngredientRegistry":
        return cls(ingredient_from_dict(raw) for raw in records)

    def get(self, ingredient_id: str) -> Ingredient:
        try:
            return self._ingredients[ingredient_id]
        except KeyError:
            raise UnknownIngredient(ingredient_id) from None

    def find(self, ingredient_id: str) -> Optional[Ingredient]:
        return self._ingredients.get(ingredient_id)

    def by_category(self, category: IngredientCategory) -> List[Ingredient]:
        return [i for i in self._ingredients.values() if i.category is category]

    def extended(self, ingredients: Iterable[Ingredient]) -> "IngredientRegistry":
        """Return a new registry containing these entries plus ``ingredients``."""
        return IngredientRegistry(list(self._ingredients.values()) + list(ingredients))

    def __contains__(self, ingredient_id: object) -> bool:
        return ingredient_id in self._ingredients

    def __iter__(self) -> Iterator[Ingredient]:
        return iter(self._ingredients.values())

    def __len__(self) -> int:
        return len(self._ingredients)


@lru_cache(maxsize=1)
def get_default_registry() -> IngredientRegistry:
    """Registry loaded from the packaged catalog (cached)."""
    return IngredientRegistry.from_file(DEFAULT_CATALOG_PATH)
