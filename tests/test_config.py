"""Tests for detection configuration and application settings."""

from decimal import Decimal

import pytest

from payroll_recon.config import Settings
from payroll_recon.detection.config import DEFAULT_MANDATORY_COMPONENTS, DetectionConfig


class TestDetectionConfig:
    """Test detection thresholds."""

    def test_defaults(self):
        config = DetectionConfig()

        assert config.max_deduction_pct == 0.60
        assert config.spike_threshold_pct == 0.50
        assert config.drop_threshold_pct == 0.30
        assert config.baseline_periods == 6
        assert config.min_baseline_periods == 3
        assert config.outlier_std_devs == 2.5
        assert config.batch_size == 5000
        assert config.mandatory_components == DEFAULT_MANDATORY_COMPONENTS
        assert config.component_thresholds == {}
        assert config.carry_over_resolutions is True

    def test_overrides_accept_camel_case(self):
        config = DetectionConfig().with_overrides({"maxDeductionPct": 0.5, "batchSize": 1000})

        assert config.max_deduction_pct == 0.5
        assert config.batch_size == 1000
        # Untouched fields keep their defaults
        assert config.spike_threshold_pct == 0.50

    def test_overrides_accept_snake_case(self):
        config = DetectionConfig().with_overrides({"outlier_std_devs": 3.0})

        assert config.outlier_std_devs == 3.0

    def test_none_overrides_are_ignored(self):
        base = DetectionConfig()

        assert base.with_overrides(None) is base
        assert base.with_overrides({"maxDeductionPct": None}).max_deduction_pct == 0.60

    def test_unknown_override_rejected(self):
        with pytest.raises(ValueError, match="Unknown detection setting"):
            DetectionConfig().with_overrides({"maxDeduction": 0.5})

    def test_names_are_normalized(self):
        config = DetectionConfig(
            mandatory_components=["base_pay"],
            deduction_prefixes=["tax"],
            component_thresholds={"bonus": 1000},
        )

        assert config.mandatory_components == ("BASE_PAY",)
        assert config.deduction_prefixes == ("TAX",)
        assert config.component_thresholds == {"BONUS": Decimal("1000")}

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"max_deduction_pct": -0.1},
            {"outlier_std_devs": 0},
            {"batch_size": 0},
            {"min_baseline_periods": 0},
            {"baseline_periods": 2, "min_baseline_periods": 3},
        ],
    )
    def test_invalid_values_rejected(self, kwargs):
        with pytest.raises(ValueError):
            DetectionConfig(**kwargs)

    def test_config_is_immutable(self):
        config = DetectionConfig()

        with pytest.raises(AttributeError):
            config.max_deduction_pct = 0.9


class TestSettings:
    """Test settings loaded from the environment."""

    def test_defaults(self, monkeypatch):
        for name in (
            "ASYNC_THRESHOLD",
            "RECONCILIATION_QUEUE",
            "TRACE_LIMIT",
            "JOB_MAX_RETRIES",
            "LOG_LEVEL",
        ):
            monkeypatch.delenv(name, raising=False)

        settings = Settings.from_env()

        assert settings.async_threshold == 50000
        assert settings.reconciliation_queue == "reconciliation"
        assert settings.trace_limit == 10
        assert settings.job_max_retries == 3
        assert settings.log_level == "INFO"

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("ASYNC_THRESHOLD", "100")
        monkeypatch.setenv("INSERT_BATCH_SIZE", "250")
        monkeypatch.setenv("DEBUG", "true")
        monkeypatch.setenv("LOG_LEVEL", "debug")

        settings = Settings.from_env()

        assert settings.async_threshold == 100
        assert settings.insert_batch_size == 250
        assert settings.debug is True
        assert settings.log_level == "DEBUG"
