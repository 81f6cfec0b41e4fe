"""Tests for `firecarbon.models.design` module."""

import numpy as np
import pandas as pd
import pytest

from firecarbon.errors import ConfigurationError
from firecarbon.models.design import (
    INTERCEPT,
    build_constraint_matrix,
    build_design_matrix,
    design_for_new_data,
    effective_inclusion,
    parse_formula,
)


@pytest.fixture
def numeric_data():
    rng = np.random.default_rng(0)
    return pd.DataFrame(
        {
            "a": rng.normal(size=6),
            "b": rng.normal(size=6),
            "c": rng.normal(size=6),
        }
    )


@pytest.fixture
def factorial_data():
    return pd.DataFrame(
        {
            "depth": ["0-5cm", "5-15cm"] * 4,
            "severity": ["LL", "LL", "LH", "LH", "HL", "HL", "HH", "HH"],
        }
    )


SEVERITY_LEVELS = {"severity": ["LL", "LH", "HL", "HH"]}


class TestParseFormula:
    def test_star_expands_to_main_effects_and_interaction(self):
        terms, intercept = parse_formula("~ a*b")
        assert terms == [("a",), ("b",), ("a", "b")]
        assert intercept

    def test_power_gives_all_two_way_interactions(self):
        terms, _ = parse_formula("~ (depth + microsite + severity)^2")
        assert terms == [
            ("depth",),
            ("microsite",),
            ("severity",),
            ("depth", "microsite"),
            ("depth", "severity"),
            ("microsite", "severity"),
        ]

    def test_three_way_star(self):
        terms, _ = parse_formula("~ a*b*c")
        assert len(terms) == 7
        assert terms[-1] == ("a", "b", "c")

    def test_colon_only_adds_interaction(self):
        terms, _ = parse_formula("~ a + a:b")
        assert terms == [("a",), ("a", "b")]

    @pytest.mark.parametrize("formula", ["~ a - 1", "~ 0 + a", "a + 0"])
    def test_intercept_removed(self, formula):
        terms, intercept = parse_formula(formula)
        assert terms == [("a",)]
        assert not intercept

    def test_minus_removes_term(self):
        terms, _ = parse_formula("~ a*b - a:b")
        assert terms == [("a",), ("b",)]

    @pytest.mark.parametrize("formula", ["~ (a + b", "~ a +", "~ a ^ b", "~ a $ b", "~ 2 + a"])
    def test_invalid_formula(self, formula):
        with pytest.raises(ConfigurationError):
            parse_formula(formula)


class TestConstraintMatrix:
    def test_interaction_requires_components(self, numeric_data):
        design = build_design_matrix(numeric_data, "~ a*b")
        frame = design.constraint_frame()
        assert frame.loc["a:b", ["a", "b", "a:b"]].tolist() == [1, 1, 1]
        assert frame.loc["a:b", INTERCEPT] == 0
        assert frame.loc["a"].sum() == 1

    def test_reflexive(self, factorial_data):
        design = build_design_matrix(
            factorial_data, "~ depth*severity", levels=SEVERITY_LEVELS
        )
        assert np.all(np.diag(design.constraints) == 1)

    def test_closure_down_to_main_effects(self, numeric_data):
        design = build_design_matrix(numeric_data, "~ a*b*c")
        frame = design.constraint_frame()
        row = frame.loc["a:b:c"]
        for required in ["a", "b", "c", "a:b", "a:c", "b:c", "a:b:c"]:
            assert row[required] == 1
        assert row[INTERCEPT] == 0

    def test_missing_component_raises(self, numeric_data):
        with pytest.raises(ConfigurationError, match="a:b:c"):
            build_design_matrix(numeric_data, "~ a + b + c + a:b:c")

    def test_missing_component_in_names(self):
        with pytest.raises(ConfigurationError, match="'b'"):
            build_constraint_matrix(["a", "a:b"])

    def test_duplicate_names_raise(self):
        with pytest.raises(ConfigurationError, match="duplicate"):
            build_constraint_matrix(["a", "a"])

    def test_uses_level_coded_names(self, factorial_data):
        design = build_design_matrix(
            factorial_data, "~ depth*severity", levels=SEVERITY_LEVELS
        )
        frame = design.constraint_frame()
        row = frame.loc["depth5-15cm:severityHH"]
        assert row[row == 1].index.tolist() == [
            "depth5-15cm",
            "severityHH",
            "depth5-15cm:severityHH",
        ]


class TestDesignMatrix:
    def test_depth_by_severity_has_eight_terms(self, factorial_data):
        design = build_design_matrix(
            factorial_data, "~ depth*severity", levels=SEVERITY_LEVELS
        )
        assert design.term_names == [
            INTERCEPT,
            "depth5-15cm",
            "severityLH",
            "severityHL",
            "severityHH",
            "depth5-15cm:severityLH",
            "depth5-15cm:severityHL",
            "depth5-15cm:severityHH",
        ]
        assert design.X.shape == (8, 8)

    def test_treatment_coding(self, factorial_data):
        design = build_design_matrix(
            factorial_data, "~ depth*severity", levels=SEVERITY_LEVELS
        )
        X = design.X
        assert X[INTERCEPT].tolist() == [1.0] * 8
        assert X["depth5-15cm"].tolist() == [0.0, 1.0] * 4
        assert X["severityHH"].tolist() == [0, 0, 0, 0, 0, 0, 1, 1]
        np.testing.assert_array_equal(
            X["depth5-15cm:severityHH"], X["depth5-15cm"] * X["severityHH"]
        )

    def test_default_levels_are_sorted(self, factorial_data):
        design = build_design_matrix(factorial_data, "~ severity")
        assert design.levels["severity"] == ["HH", "HL", "LH", "LL"]

    def test_categorical_dtype_sets_level_order(self, factorial_data):
        data = factorial_data.assign(
            severity=pd.Categorical(
                factorial_data["severity"], categories=["LL", "LH", "HL", "HH"]
            )
        )
        design = build_design_matrix(data, "~ severity")
        assert design.term_names[1] == "severityLH"

    def test_numeric_covariate_kept(self, factorial_data):
        data = factorial_data.assign(baseline=np.arange(8, dtype=float))
        design = build_design_matrix(data, "~ depth + baseline", levels=SEVERITY_LEVELS)
        assert design.X["baseline"].tolist() == list(np.arange(8, dtype=float))

    def test_undeclared_level_raises(self, factorial_data):
        with pytest.raises(ConfigurationError, match="not in the declared levels"):
            build_design_matrix(
                factorial_data, "~ severity", levels={"severity": ["LL", "LH"]}
            )

    def test_missing_variable_raises(self, factorial_data):
        with pytest.raises(ConfigurationError, match="microsite"):
            build_design_matrix(factorial_data, "~ depth + microsite")

    def test_colliding_names_raise(self):
        data = pd.DataFrame({"a": ["b1", "b2"], "ab": ["x", "2"]})
        with pytest.raises(ConfigurationError, match="more than once"):
            build_design_matrix(
                data, "~ a + ab", levels={"a": ["b1", "b2"], "ab": ["x", "2"]}
            )

    def test_new_data_uses_same_terms(self, factorial_data):
        design = build_design_matrix(
            factorial_data, "~ depth*severity", levels=SEVERITY_LEVELS
        )
        new = pd.DataFrame({"depth": ["5-15cm"], "severity": ["HL"]})
        X_new = design_for_new_data(design, new)
        assert list(X_new.columns) == design.term_names
        assert X_new.iloc[0].tolist() == [1, 1, 0, 1, 0, 0, 1, 0]

    def test_new_data_unknown_level_raises(self, factorial_data):
        design = build_design_matrix(factorial_data, "~ severity", levels=SEVERITY_LEVELS)
        with pytest.raises(ConfigurationError, match="unknown"):
            design_for_new_data(design, pd.DataFrame({"severity": ["XX"]}))


class TestEffectiveInclusion:
    def test_own_draw_forces_inclusion(self):
        constraints = build_constraint_matrix(["a", "b", "a:b"])
        rng = np.random.default_rng(3)
        for _ in range(20):
            delta = rng.integers(0, 2, size=3)
            ind = np.asarray(effective_inclusion(delta, constraints))
            assert np.all(ind[delta == 1] == 1)

    def test_row_dot_product_rule(self):
        constraints = build_constraint_matrix(["a", "b", "a:b"])
        ind = np.asarray(effective_inclusion(np.array([1, 0, 0]), constraints))
        assert ind.tolist() == [1.0, 0.0, 1.0]
        ind = np.asarray(effective_inclusion(np.array([0, 0, 0]), constraints))
        assert ind.tolist() == [0.0, 0.0, 0.0]

    def test_batched(self):
        constraints = build_constraint_matrix(["a", "b", "a:b"])
        delta = np.array([[0, 1, 0], [0, 0, 1]])
        ind = np.asarray(effective_inclusion(delta, constraints))
        assert ind.tolist() == [[0.0, 1.0, 1.0], [0.0, 0.0, 1.0]]
