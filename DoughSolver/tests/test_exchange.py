"""Tests for problem files, unit normalisation and result serialisation."""
from __future__ import annotations

import json
from pathlib import Path

import pytest
import yaml

from DoughSolver import solve
from DoughSolver.errors import ConfigError, RegistryError
from DoughSolver.exchange import (
    MassInput,
    dump_result,
    load_problem,
    parse_problem,
    write_result,
)
from DoughSolver.ingredients import get_default_registry
from DoughSolver.targets import FixedMass, FixedMassAndRatio, FixedRatio, Free

SAMPLE_PROBLEM = Path(__file__).resolve().parents[1] / "data" / "sample_problem.yaml"


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def raw_problem() -> dict:
    return {
        "name": "Test loaf",
        "ingredients": [
            {"ingredient": "white-flour-unbleached", "mass": "400 g"},
            {"ingredient": "stiff-starter", "mass": {"value": 80, "unit": "g"}},
            {"ingredient": "water"},
            {"ingredient": "table-salt", "ratio": "2%"},
        ],
        "constraints": {"hydration": "80%"},
    }


# ---------------------------------------------------------------------------
# Tests: Units
# ---------------------------------------------------------------------------

class TestUnits:

    @pytest.mark.parametrize("text, grams", [
        ("400 g", 400.0),
        ("0.5 kg", 500.0),
        ("1500mg", 1.5),
        ("1 lb", 453.59237),
        ("2 oz", 56.69904625),
        ("250 ml", 250.0),
        ("1 L", 1000.0),
    ])
    def test_shorthand(self, text, grams):
        assert MassInput.model_validate(text).to_grams() == pytest.approx(grams)

    def test_volume_uses_density(self):
        assert MassInput.model_validate("250 ml").to_grams(density_g_per_ml=1.03) == pytest.approx(257.5)

    def test_mapping_form(self):
        assert MassInput.model_validate({"value": 2, "unit": "KG"}).to_grams() == 2000.0


# ---------------------------------------------------------------------------
# Tests: Problem parsing
# ---------------------------------------------------------------------------

class TestParseProblem:

    def test_targets(self, raw_problem):
        problem = parse_problem(raw_problem).problem
        assert problem.name == "Test loaf"
        assert problem.target_for("white-flour-unbleached") == FixedMass(400.0)
        assert problem.target_for("water") == Free()
        assert problem.target_for("table-salt") == FixedRatio(0.02)
        assert problem.constraints.hydration == pytest.approx(0.8)

    def test_mass_and_ratio(self, raw_problem):
        raw_problem["ingredients"][3] = {"ingredient": "table-salt", "mass": "9 g", "ratio": 0.02}
        problem = parse_problem(raw_problem).problem
        assert problem.target_for("table-salt") == FixedMassAndRatio(9.0, 0.02)

    def test_camel_and_snake_case_constraints(self, raw_problem):
        raw_problem["constraints"] = {"totalFlour": "1 kg", "salt_ratio": 0.02}
        constraints = parse_problem(raw_problem).problem.constraints
        assert constraints.total_flour == 1000.0
        assert constraints.salt_ratio == 0.02

    def test_bare_number_mass_rejected(self, raw_problem):
        raw_problem["ingredients"][0]["mass"] = 400
        with pytest.raises(ConfigError, match="unit"):
            parse_problem(raw_problem)

    def test_unknown_unit_rejected(self, raw_problem):
        raw_problem["ingredients"][0]["mass"] = "3 cups"
        with pytest.raises(ConfigError):
            parse_problem(raw_problem)

    def test_bad_ratio_rejected(self, raw_problem):
        raw_problem["constraints"]["hydration"] = "very wet"
        with pytest.raises(ConfigError):
            parse_problem(raw_problem)

    def test_unknown_field_rejected(self, raw_problem):
        raw_problem["ingredients"][0]["weight"] = "400 g"
        with pytest.raises(ConfigError):
            parse_problem(raw_problem)

    def test_empty_ingredient_list_rejected(self):
        with pytest.raises(ConfigError):
            parse_problem({"ingredients": []})

    def test_inline_catalog(self, raw_problem):
        raw_problem["catalog"] = [{
            "id": "house-starter", "name": "House starter", "category": "Leavener",
            "kind": "SourdoughStarter", "protein": 0.12, "internal_hydration": 0.8,
        }]
        raw_problem["ingredients"][1]["ingredient"] = "house-starter"
        document = parse_problem(raw_problem)
        registry = document.registry(get_default_registry())
        assert registry.get("house-starter").starter_hydration == pytest.approx(0.8)

    def test_inline_catalog_hydration_must_be_numeric(self, raw_problem):
        raw_problem["catalog"] = [{
            "id": "my-starter", "category": "Leavener", "kind": "SourdoughStarter",
            "internal_hydration": "wet",
        }]
        with pytest.raises(RegistryError, match="internal_hydration"):
            parse_problem(raw_problem)

    def test_bad_inline_catalog(self, raw_problem):
        raw_problem["catalog"] = [{"id": "oops", "category": "Flour", "kind": "Water"}]
        with pytest.raises(RegistryError):
            parse_problem(raw_problem)


# ---------------------------------------------------------------------------
# Tests: Files
# ---------------------------------------------------------------------------

class TestFiles:

    def test_sample_problem_solves(self):
        document = load_problem(SAMPLE_PROBLEM)
        result = solve(document.problem, document.registry(get_default_registry()))
        assert result.is_solved
        assert result.mass_of("water") == pytest.approx(336.0)
        assert result.mass_of("table-salt") == pytest.approx(9.0667, abs=1e-4)

    def test_json_problem(self, tmp_path, raw_problem):
        path = tmp_path / "problem.json"
        path.write_text(json.dumps(raw_problem), encoding="utf-8")
        assert load_problem(path).problem.name == "Test loaf"

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            load_problem(tmp_path / "missing.yaml")

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("ingredients: [\n", encoding="utf-8")
        with pytest.raises(ConfigError):
            load_problem(path)

    def test_non_mapping_root(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- 1\n- 2\n", encoding="utf-8")
        with pytest.raises(ConfigError, match="mapping"):
            load_problem(path)


# ---------------------------------------------------------------------------
# Tests: Result serialisation
# ---------------------------------------------------------------------------

class TestDumpResult:

    @pytest.fixture
    def result(self):
        document = load_problem(SAMPLE_PROBLEM)
        return solve(document.problem, get_default_registry())

    def test_json(self, result):
        data = json.loads(dump_result(result, "json"))
        assert data["status"] == "Unique"
        assert data["masses"]["water"] == pytest.approx(336.0)

    def test_yaml(self, result):
        data = yaml.safe_load(dump_result(result))
        assert data["name"] == "Country loaf"
        assert data["totals"]["flour"] == pytest.approx(453.3333, abs=1e-4)

    def test_unknown_format(self, result):
        with pytest.raises(ConfigError):
            dump_result(result, "xml")

    def test_write_result_picks_format_from_suffix(self, tmp_path, result):
        path = tmp_path / "out.json"
        write_result(result, path)
        assert json.loads(path.read_text(encoding="utf-8"))["status"] == "Unique"
