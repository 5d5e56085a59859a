"""
Tests for penalized-likelihood error model ranking.
"""

import numpy as np
import pytest
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import scoring.selection as selection
from scoring.error_models import ErrorModel, fit_error_models
from scoring.exceptions import FitFailure, InsufficientData, InvalidInput
from scoring.selection import (
    best_error_models,
    penalty_weight,
    score,
    select_error_models
)
from scoring.series import ObservationSeries, PredictionSeries

OBS = [1.0, 2.0, 3.0, 4.0, 5.0]
PRED = [1.1, 1.9, 3.2, 3.8, 5.3]


def recompute_criteria(obs, pred, penalty, n_rep=1):
    """Independent evaluation of the five criterion values."""
    obs = np.asarray(obs, dtype=float)
    pred = np.asarray(pred, dtype=float)
    fits = fit_error_models(obs, pred)
    a_cons = np.sqrt(np.mean((obs - pred)**2))
    b_prop = np.sqrt(np.mean((obs / pred - 1)**2))
    a_expo = np.sqrt(np.mean((np.log(obs) - np.log(pred))**2))
    c1 = fits[ErrorModel.COMBINED1]
    c2 = fits[ErrorModel.COMBINED2]

    variances = {
        "constant": np.full_like(pred, a_cons**2),
        "proportional": (b_prop * pred)**2,
        "combined1": (c1.a + c1.b * pred)**2,
        "combined2": c2.a**2 + (c2.b * pred)**2,
    }
    df = {"constant": 1, "proportional": 1, "combined1": 2, "combined2": 2, "exponential": 1}

    values = {}
    for name, s2 in variances.items():
        ll = -0.5 * np.sum((obs - pred)**2 / s2 + np.log(2 * np.pi * s2)) / n_rep
        values[name] = -2 * ll + penalty * df[name]
    lr = np.log(obs) - np.log(pred)
    ll = -0.5 * np.sum(lr**2 / a_expo**2 + np.log(2 * np.pi * a_expo**2) + 2 * np.log(obs)) / n_rep
    values["exponential"] = -2 * ll + penalty * df["exponential"]
    return values


class TestScore:
    """Tests for single-output scoring."""

    def test_concrete_scenario(self):
        """Five-point BIC ranking matches direct recomputation."""
        result = score(OBS, PRED, criterion="BIC", top_k=5)

        assert len(result) == 5
        assert result.failures == {}
        df = {c.error_model.value: c.df for c in result}
        assert df["constant"] == 1
        assert df["proportional"] == 1
        assert df["combined1"] == 2
        assert df["combined2"] == 2
        assert df["exponential"] == 1

        expected = recompute_criteria(OBS, PRED, penalty=np.log(5))
        for cand in result:
            assert cand.criterion_value == pytest.approx(expected[cand.error_model.value])
        ranked = [expected[name] for name in result.error_models]
        for worse, better in zip(ranked[1:], ranked[:-1]):
            assert better <= worse + 1e-9

    def test_sorted_and_truncated(self):
        for top_k in range(1, 8):
            result = score(OBS, PRED, criterion="AIC", top_k=top_k)
            assert len(result) == min(top_k, 5)
            values = [c.criterion_value for c in result]
            assert values == sorted(values)

    def test_best_is_first(self):
        result = score(OBS, PRED, top_k=3)
        assert result.best is result[0]

    def test_deterministic(self):
        first = score(OBS, PRED, criterion="BIC", top_k=5)
        second = score(OBS, PRED, criterion="BIC", top_k=5)
        assert first.to_dict() == second.to_dict()

    def test_single_replicate_is_unnormalized(self):
        result = score(OBS, PRED, criterion="AIC", top_k=5)
        const = next(c for c in result if c.error_model is ErrorModel.CONSTANT)

        obs, pred = np.array(OBS), np.array(PRED)
        s2 = np.mean((obs - pred)**2)
        expected = -0.5 * np.sum((obs - pred)**2 / s2 + np.log(2 * np.pi * s2))
        assert result.n_replicates == 1
        assert const.log_likelihood == pytest.approx(expected)

    def test_accepts_series_records(self):
        observed = ObservationSeries("y1", OBS)
        predicted = PredictionSeries("Cc", PRED)
        assert score(observed, predicted, top_k=5).to_dict() == score(OBS, PRED, top_k=5).to_dict()


class TestPositivityFilter:
    """Non-positive pairs never contribute to fits or likelihoods."""

    def test_negative_observation_equals_removal(self):
        obs = [1.0, 2.0, -3.0, 4.0, 5.0, 6.0]
        pred = [1.1, 1.9, 3.0, 3.8, 5.3, 5.7]
        kept_obs = [1.0, 2.0, 4.0, 5.0, 6.0]
        kept_pred = [1.1, 1.9, 3.8, 5.3, 5.7]

        with_negative = score(obs, pred, criterion="BIC", top_k=5)
        removed = score(kept_obs, kept_pred, criterion="BIC", top_k=5)

        assert with_negative.n_pairs == 5
        assert with_negative.error_models == removed.error_models
        for a, b in zip(with_negative, removed):
            assert a.criterion_value == pytest.approx(b.criterion_value, rel=1e-12)
            assert a.log_likelihood == pytest.approx(b.log_likelihood, rel=1e-12)

    def test_zero_prediction_excluded(self):
        obs = [1.0, 2.0, 3.0, 4.0, 5.0, 6.0]
        pred = [1.1, 1.9, 0.0, 3.8, 5.3, 5.7]
        result = score(obs, pred, top_k=5)
        assert result.n_pairs == 5

    def test_all_filtered(self):
        with pytest.raises(InsufficientData):
            score([-1.0, -2.0, -3.0], [1.0, 2.0, 3.0])

    def test_too_few_pairs(self):
        with pytest.raises(InsufficientData):
            score([1.0, -2.0, 3.0], [1.0, 1.0, 1.0])


class TestReplicates:
    """Tests for replicated (simulated) predictions."""

    def test_identical_replicates_match_single(self):
        single = score(OBS, PRED, criterion="BIC", top_k=5)
        tripled = score(OBS, PRED * 3, criterion="BIC", top_k=5)

        assert tripled.n_replicates == 3
        assert tripled.n_pairs == 15
        assert tripled.n_effective == pytest.approx(5.0)
        assert tripled.penalty == pytest.approx(single.penalty)

        closed_form = {"constant", "proportional", "exponential"}
        by_model = {c.error_model.value: c for c in single}
        for cand in tripled:
            if cand.error_model.value in closed_form:
                ref = by_model[cand.error_model.value]
                assert cand.log_likelihood == pytest.approx(ref.log_likelihood, rel=1e-10)

    def test_replicate_ordering(self):
        """Observation i pairs with predictions i, i+N, i+2N."""
        obs = [1.0, 2.0, 3.0, 4.0]
        pred = [1.1, 2.1, 2.9, 4.2,
                0.9, 1.8, 3.3, 3.9]
        result = score(obs, pred, criterion="AIC", top_k=5)
        const = next(c for c in result if c.error_model is ErrorModel.CONSTANT)

        tiled = np.tile(obs, 2)
        s2 = np.mean((tiled - np.array(pred))**2)
        expected = -0.5 * np.sum((tiled - pred)**2 / s2 + np.log(2 * np.pi * s2)) / 2
        assert const.log_likelihood == pytest.approx(expected)

    def test_misaligned_lengths(self):
        with pytest.raises(InvalidInput):
            score([1.0, 2.0, 3.0], [1.0, 2.0, 3.0, 4.0])

    def test_empty_inputs(self):
        with pytest.raises(InvalidInput):
            score([], [1.0])
        with pytest.raises(InvalidInput):
            score([1.0], [])


class TestPenalty:
    """Tests for criterion penalty selection."""

    def test_aic_is_two(self):
        assert penalty_weight("AIC", 10) == 2.0
        assert penalty_weight("AIC", 1000) == 2.0

    def test_bic_is_log_n(self):
        assert penalty_weight("BIC", 20) == pytest.approx(np.log(20))

    def test_case_insensitive(self):
        assert penalty_weight("bic", 20) == penalty_weight("BIC", 20)

    def test_numeric(self):
        assert penalty_weight(3.5, 20) == 3.5
        assert penalty_weight(0, 20) == 0.0

    def test_invalid(self):
        for bad in ("HQC", True, None, float("nan"), [2]):
            with pytest.raises(InvalidInput):
                penalty_weight(bad, 10)

    def test_aic_criterion_values(self):
        result = score(OBS, PRED, criterion="AIC", top_k=5)
        assert result.penalty == 2.0
        for cand in result:
            assert cand.criterion_value == pytest.approx(-2 * cand.log_likelihood + 2 * cand.df)

    def test_bic_uses_effective_n(self):
        obs = [1.0, 2.0, 3.0, 4.0, 5.0, 6.0]
        pred = [1.1, 1.9, 3.2, 3.8, 5.3, 6.4] + [0.9, 2.2, 2.8, 4.1, 4.8, 6.1]
        result = score(obs, pred, criterion="BIC", top_k=5)
        assert result.penalty == pytest.approx(np.log(12 / 2))

    def test_custom_penalty(self):
        result = score(OBS, PRED, criterion=10.0, top_k=5)
        assert result.criterion == "penalty=10"
        for cand in result:
            assert cand.criterion_value == pytest.approx(-2 * cand.log_likelihood + 10.0 * cand.df)

    def test_invalid_top_k(self):
        with pytest.raises(InvalidInput):
            score(OBS, PRED, top_k=0)
        with pytest.raises(InvalidInput):
            score(OBS, PRED, top_k=2.5)


class TestFitFailurePolicy:
    """A candidate that cannot be fitted is excluded, not fatal."""

    def test_failed_candidate_excluded(self, monkeypatch):
        def failing_fits(obs, pred):
            fits = fit_error_models(obs, pred)
            fits[ErrorModel.COMBINED1].converged = False
            fits[ErrorModel.COMBINED1].message = "maximum iterations reached"
            return fits

        monkeypatch.setattr(selection, "fit_error_models", failing_fits)

        with pytest.warns(RuntimeWarning):
            result = score(OBS, PRED, top_k=5)

        assert len(result) == 4
        assert "combined1" not in result.error_models
        assert "combined1" in result.failures

    def test_degenerate_variance_excluded(self, monkeypatch):
        def zero_constant(obs, pred):
            fits = fit_error_models(obs, pred)
            fits[ErrorModel.CONSTANT].a = 0.0
            return fits

        monkeypatch.setattr(selection, "fit_error_models", zero_constant)

        with pytest.warns(RuntimeWarning):
            result = score(OBS, PRED, top_k=5)

        assert "constant" in result.failures
        assert len(result) == 4

    def test_all_failed(self, monkeypatch):
        def nothing_converges(obs, pred):
            fits = fit_error_models(obs, pred)
            for fit in fits.values():
                fit.converged = False
            return fits

        monkeypatch.setattr(selection, "fit_error_models", nothing_converges)

        with pytest.warns(RuntimeWarning):
            with pytest.raises(FitFailure):
                score(OBS, PRED, top_k=5)


class FakeSource:
    """In-memory prediction source."""

    def __init__(self):
        rng = np.random.default_rng(3)
        pred = np.linspace(1.0, 30.0, 40)
        self.obs = pred * (1 + 0.15 * rng.standard_normal(pred.size))
        self.pred = pred
        self.sim = np.concatenate([pred * (1 + 0.02 * rng.standard_normal(pred.size)) for _ in range(3)])

    def continuous_outputs(self):
        return ["y1", "y2"]

    def fetch_observations(self, name):
        return ObservationSeries(name, self.obs if name == "y1" else self.obs[::-1])

    def fetch_predictions(self, name):
        return PredictionSeries("Cc", self.pred if name == "y1" else self.pred[::-1])

    def fetch_simulated_predictions(self, name):
        sim = self.sim if name == "y1" else self.sim.reshape(3, -1)[:, ::-1].ravel()
        return PredictionSeries("Cc", sim, n_replicates=3)


class TestSelectErrorModels:
    """Tests for the per-output selection driver."""

    def test_all_outputs(self):
        results = select_error_models(FakeSource(), criterion="BIC", top_k=2)
        assert list(results) == ["y1", "y2"]
        for result in results.values():
            assert result.n_replicates == 3
            assert len(result) == 2

    def test_estimated_predictions(self):
        results = select_error_models(FakeSource(), outputs=["y1"], simulated=False)
        assert list(results) == ["y1"]
        assert results["y1"].n_replicates == 1

    def test_outputs_scored_independently(self):
        """Reversing an output's data leaves the closed-form scores unchanged."""
        results = select_error_models(FakeSource(), top_k=5)
        y1 = {c.error_model: c.criterion_value for c in results["y1"]}
        y2 = {c.error_model: c.criterion_value for c in results["y2"]}
        for model in (ErrorModel.CONSTANT, ErrorModel.PROPORTIONAL, ErrorModel.EXPONENTIAL):
            assert y2[model] == pytest.approx(y1[model], rel=1e-10)

    def test_unknown_output(self):
        with pytest.raises(InvalidInput):
            select_error_models(FakeSource(), outputs=["y9"])

    def test_best_error_models(self):
        results = select_error_models(FakeSource())
        best = best_error_models(results)
        assert set(best) == {"y1", "y2"}
        assert all(value in [m.value for m in ErrorModel] for value in best.values())

    def test_verbose(self, capsys):
        select_error_models(FakeSource(), outputs=["y1"], verbose=True)
        out = capsys.readouterr().out
        assert "Scoring output 'y1'" in out
        assert "best:" in out


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
