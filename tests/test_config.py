"""Tests for settings and the policies built from them."""

import pytest

from codebase_insights.core.config import Settings, validate_settings
from codebase_insights.llm.types import CropPolicy, RetryPolicy


class TestSettings:
    def test_defaults(self):
        s = Settings(openai_api_key="k")
        assert s.llm_provider == "openai"
        assert s.llm_max_attempts == 3
        assert s.llm_min_retry_delay_ms == 20_000
        assert s.llm_max_retry_jitter_ms == 30_000
        assert s.llm_request_timeout_ms == 420_000
        assert s.llm_max_concurrency == 100

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("LLM_MAX_ATTEMPTS", "5")
        monkeypatch.setenv("LLM_CROP_EXCEEDED_SAFETY_PERCENT", "20")
        s = Settings()
        assert s.llm_max_attempts == 5
        assert s.llm_crop_exceeded_safety_percent == 20.0

    def test_validate_ok(self):
        validate_settings(Settings(openai_api_key="k"))

    def test_validate_missing_api_key(self):
        with pytest.raises(SystemExit, match="OPENAI_API_KEY"):
            validate_settings(Settings(openai_api_key=""))

    def test_validate_reports_all_errors(self):
        s = Settings(openai_api_key="k", llm_max_attempts=0, llm_crop_overloaded_safety_percent=100)
        with pytest.raises(SystemExit) as exc_info:
            validate_settings(s)
        message = str(exc_info.value)
        assert "LLM_MAX_ATTEMPTS" in message
        assert "LLM_CROP_OVERLOADED_SAFETY_PERCENT" in message

    def test_validate_no_completion_models(self):
        with pytest.raises(SystemExit, match="OPENAI_SMALL_MODEL"):
            validate_settings(Settings(openai_api_key="k", openai_small_model="", openai_large_model=""))


class TestPolicies:
    def test_retry_policy_from_settings(self):
        s = Settings(openai_api_key="k", llm_max_attempts=4, llm_min_retry_delay_ms=10, llm_request_timeout_ms=99)
        policy = RetryPolicy.from_settings(s)
        assert policy.max_attempts == 4
        assert policy.min_retry_delay_ms == 10
        assert policy.request_timeout_ms == 99

    def test_crop_policy_from_settings(self):
        s = Settings(openai_api_key="k", llm_crop_max_per_request=3, llm_crop_min_chars=50)
        policy = CropPolicy.from_settings(s)
        assert policy.max_crops_per_request == 3
        assert policy.minimum_chars_floor == 50
        assert policy.exceeded_safety_percent == 15.0

    def test_policies_immutable(self):
        with pytest.raises(AttributeError):
            RetryPolicy().max_attempts = 10
