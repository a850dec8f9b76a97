"""Statistical step classification of noisy values."""

import numpy as np
import pytest

from noisyvmc import NoisyGradient, NoisyValue, StepOutcome, classify_step, is_significant_improvement


def test_difference_within_combined_error_is_insignificant():
    old, new = NoisyValue(1.000, 0.01), NoisyValue(0.998, 0.01)
    assert classify_step(old, new) is StepOutcome.INSIGNIFICANT
    assert not is_significant_improvement(old, new)


def test_significant_changes():
    old = NoisyValue(1.0, 0.01)
    assert classify_step(old, NoisyValue(0.9, 0.01)) is StepOutcome.IMPROVED
    assert classify_step(old, NoisyValue(1.1, 0.01)) is StepOutcome.WORSENED


def test_exact_values_compare_strictly():
    assert classify_step(NoisyValue(1.0), NoisyValue(0.999999)) is StepOutcome.IMPROVED
    assert classify_step(NoisyValue(1.0), NoisyValue(1.0)) is StepOutcome.INSIGNIFICANT


def test_sigma_level_scales_threshold():
    old, new = NoisyValue(1.0, 0.01), NoisyValue(0.97, 0.01)
    assert classify_step(old, new, sigma_level=2.0) is StepOutcome.IMPROVED
    assert classify_step(old, new, sigma_level=3.0) is StepOutcome.INSIGNIFICANT


def test_negative_error_is_rejected():
    with pytest.raises(ValueError):
        NoisyValue(1.0, -0.1)
    with pytest.raises(ValueError):
        NoisyGradient([1.0, 2.0], [0.1, -0.1])


def test_gradient_helpers():
    grad = NoisyGradient([0.01, -0.02], [0.01, 0.02])
    assert grad.is_statistically_zero()
    assert not NoisyGradient([0.5, 0.0], [0.01, 0.01]).is_statistically_zero()
    assert not NoisyGradient([np.nan], [0.0]).is_finite()
    assert not NoisyValue(np.inf, 0.0).is_finite()
    assert len(grad) == 2


def test_nan_errors_are_reported_as_non_finite():
    """Undefined error bars survive construction and show up through is_finite."""
    value = NoisyValue(1.0, np.nan)
    assert np.isnan(value.err)
    assert not value.is_finite()
    assert not NoisyGradient([1.0, 2.0], [0.1, np.nan]).is_finite()
