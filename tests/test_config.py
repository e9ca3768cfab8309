"""Unit tests for config.py module."""

import numpy as np
import pytest

from cascade_sync.config import (
    DEFAULT_PRIMES,
    DEVIATION_THRESHOLD,
    RESONANCE_THRESHOLD,
    CascadeConfig,
)
from cascade_sync.errors import ConfigError


class TestCascadeConfigDefaults:
    """Test the default configuration."""

    def test_default_values(self):
        """Test defaults match the documented cascade."""
        config = CascadeConfig()
        assert config.decay_constant == 0.0302011
        assert config.layer_count == 33
        assert config.prime_set == (2, 3, 5, 7, 11, 13, 17, 19, 23, 29, 31)
        assert config.convergence_threshold == 0.4041
        assert config.log_every_n == 5

    def test_thresholds_are_separate(self):
        """Test that the log threshold and the verdict gate stay distinct."""
        assert RESONANCE_THRESHOLD == 0.4041
        assert DEVIATION_THRESHOLD == 0.10
        config = CascadeConfig()
        assert config.convergence_threshold != config.deviation_threshold

    def test_first_eleven_primes(self):
        """Test the default prime set is the first 11 primes."""
        assert len(DEFAULT_PRIMES) == 11
        for p in DEFAULT_PRIMES:
            assert all(p % q for q in range(2, p))

    def test_primes_array(self):
        """Test prime set is exposed as an integer array."""
        config = CascadeConfig(prime_set=[3, 5, 7])
        assert config.prime_set == (3, 5, 7)
        np.testing.assert_array_equal(config.primes, np.array([3, 5, 7]))

    def test_frozen(self):
        """Test the config cannot be mutated."""
        config = CascadeConfig()
        with pytest.raises(AttributeError):
            config.layer_count = 10


class TestCascadeConfigValidation:
    """Test CascadeConfig.validate."""

    def test_default_is_valid(self):
        """Test the default configuration validates."""
        CascadeConfig().validate()

    @pytest.mark.parametrize("layers", [0, -1])
    def test_non_positive_layer_count(self, layers):
        """Test that layer_count <= 0 is rejected."""
        with pytest.raises(ConfigError, match="layer_count must be positive"):
            CascadeConfig(layer_count=layers).validate()

    @pytest.mark.parametrize("decay", [0.0, -0.5, float("nan")])
    def test_non_positive_decay(self, decay):
        """Test that decay_constant <= 0 (or NaN) is rejected."""
        with pytest.raises(ConfigError, match="decay_constant must be positive"):
            CascadeConfig(decay_constant=decay).validate()

    def test_empty_prime_set(self):
        """Test that an empty prime set is rejected."""
        with pytest.raises(ConfigError, match="at least one element"):
            CascadeConfig(prime_set=()).validate()

    def test_unsorted_prime_set(self):
        """Test that a non-ascending prime set is rejected."""
        with pytest.raises(ConfigError, match="ascending"):
            CascadeConfig(prime_set=(5, 3)).validate()

    def test_duplicate_primes(self):
        """Test that duplicated primes are rejected."""
        with pytest.raises(ConfigError, match="pairwise distinct"):
            CascadeConfig(prime_set=(2, 3, 3)).validate()

    def test_zero_passes(self):
        """Test that passes must be at least one."""
        with pytest.raises(ConfigError, match="passes"):
            CascadeConfig(passes=0).validate()

    @pytest.mark.parametrize("field", ["frame_interval_ms", "compute_teardown_ms", "delay_scale_ms"])
    @pytest.mark.parametrize("value", [0.0, -16.0])
    def test_non_positive_timing(self, field, value):
        """Test timing parameters that would leave a stimulus unbounded are rejected."""
        with pytest.raises(ConfigError, match=f"{field} must be positive"):
            CascadeConfig(**{field: value}).validate()

    @pytest.mark.parametrize("field", ["visual_hold_factor_ms", "frame_loop_factor_ms", "compute_iterations"])
    def test_negative_stimulus_sizes(self, field):
        """Test negative stimulus durations and sizes are rejected."""
        with pytest.raises(ConfigError, match=f"{field} must be non-negative"):
            CascadeConfig(**{field: -1}).validate()

    def test_config_error_is_value_error(self):
        """Test ConfigError can be caught as ValueError."""
        with pytest.raises(ValueError):
            CascadeConfig(layer_count=0).validate()


class TestWithDecay:
    """Test CascadeConfig.with_decay."""

    def test_only_decay_changes(self):
        """Test that with_decay copies every other field."""
        config = CascadeConfig(layer_count=12, passes=3, prime_set=(2, 5))
        tuned = config.with_decay(0.05)
        assert tuned.decay_constant == 0.05
        assert tuned.layer_count == 12
        assert tuned.passes == 3
        assert tuned.prime_set == (2, 5)
        assert config.decay_constant == 0.0302011
