"""Tests for the method-agnostic FDR evaluation harness."""

import numpy as np
import pandas as pd
import pytest

from fash import (
    LocalFdrMethod,
    StaticLocalFdr,
    discover,
    evaluate_discoveries,
    fdr_calibration,
)


@pytest.fixture
def truth():
    return {"a": True, "b": True, "c": False, "d": False}


class TestEvaluateDiscoveries:
    def test_counts(self, truth):
        ds = discover({"a": 0.0, "c": 0.05, "b": 0.6, "d": 0.9}, alpha=0.1)
        stats = evaluate_discoveries(ds, truth)
        assert stats["n_discoveries"] == 2
        assert stats["false_discoveries"] == 1
        assert stats["fdp"] == pytest.approx(0.5)
        assert stats["n_dynamic"] == 2
        assert stats["power"] == pytest.approx(0.5)
        assert stats["estimated_fdr"] == pytest.approx(0.025)

    def test_no_discoveries(self, truth):
        ds = discover({"a": 0.5, "b": 0.5, "c": 0.9, "d": 0.9}, alpha=0.01)
        stats = evaluate_discoveries(ds, truth)
        assert stats["fdp"] == 0.0
        assert stats["power"] == 0.0

    def test_no_dynamic_units(self):
        ds = discover({"x": 0.01}, alpha=0.05)
        stats = evaluate_discoveries(ds, {"x": False})
        assert np.isnan(stats["power"])

    def test_missing_truth(self, truth):
        ds = discover({"a": 0.0, "zz": 0.1})
        with pytest.raises(KeyError):
            evaluate_discoveries(ds, truth)


class TestCalibration:
    def test_static_method_protocol(self):
        assert isinstance(StaticLocalFdr({"a": 0.1}), LocalFdrMethod)

    def test_table(self, truth):
        methods = {
            "perfect": StaticLocalFdr({"a": 0.0, "b": 0.0, "c": 1.0, "d": 1.0}),
            "reversed": StaticLocalFdr(
                {"a": 1.0, "b": 1.0, "c": 0.0, "d": 0.0}
            ),
        }
        df = fdr_calibration(methods, truth, alphas=(0.05, 0.3))
        assert isinstance(df, pd.DataFrame)
        assert len(df) == 4
        perfect = df[df["method"] == "perfect"]
        assert list(perfect["fdp"]) == [0.0, 0.0]
        assert list(perfect["power"]) == [1.0, 1.0]
        reversed_ = df[(df["method"] == "reversed") & (df["alpha"] == 0.3)]
        assert float(reversed_["fdp"].iloc[0]) == 1.0
