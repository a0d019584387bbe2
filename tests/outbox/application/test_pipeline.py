"""Tests for settings and pipeline composition."""

from unittest.mock import patch

import pytest
from pydantic import ValidationError as SettingsError

from outbox.config import OutboxSettings
from outbox.delivery.fake_email import FakeEmailProvider
from outbox.delivery.fake_sms import FakeSmsProvider
from outbox.delivery.ses import SesEmailProvider
from outbox.delivery.sns import SnsSmsProvider
from outbox.pipeline import (
    bind_pipeline,
    bound_pipeline,
    build_pipeline,
    default_providers,
    escalation_policy,
    get_pipeline,
    reset_pipeline,
)


class TestOutboxSettings:
    def test_defaults(self):
        settings = OutboxSettings()
        assert settings.max_retries == 3
        assert settings.retention_days == 7
        assert settings.escalation_max_attempts == 3
        assert settings.provider_backend == "fake"

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("OUTBOX_MAX_RETRIES", "5")
        monkeypatch.setenv("OUTBOX_PROVIDER_BACKEND", "aws")

        settings = OutboxSettings()

        assert settings.max_retries == 5
        assert settings.provider_backend == "aws"

    def test_invalid_values_rejected(self):
        with pytest.raises(SettingsError):
            OutboxSettings(max_retries=-1)
        with pytest.raises(SettingsError):
            OutboxSettings(provider_backend="smtp")


class TestEscalationPolicy:
    def test_built_from_settings(self):
        policy = escalation_policy(OutboxSettings(escalation_base_delay=1.0, escalation_jitter=False))
        assert policy.max_attempts == 3
        assert policy.base_delay == 1.0
        assert policy.max_delay == 10.0
        assert policy.jitter is False


class TestProviders:
    def test_fake_backend(self):
        email, sms = default_providers(OutboxSettings())
        assert isinstance(email, FakeEmailProvider)
        assert isinstance(sms, FakeSmsProvider)

    def test_aws_backend_builds_clients_once(self):
        settings = OutboxSettings(provider_backend="aws", aws_region="eu-west-1")

        with patch("outbox.delivery.ses.boto3") as ses_boto3, patch("outbox.delivery.sns.boto3") as sns_boto3:
            email, sms = default_providers(settings)

        assert isinstance(email, SesEmailProvider)
        assert isinstance(sms, SnsSmsProvider)
        ses_boto3.client.assert_called_once_with("ses", region_name="eu-west-1")
        sns_boto3.client.assert_called_once_with("sns", region_name="eu-west-1")


class TestPipelineBinding:
    def test_build_uses_injected_providers(self, email_provider, sms_provider):
        pipeline = build_pipeline(settings=OutboxSettings(), email_provider=email_provider, sms_provider=sms_provider)

        assert pipeline.executor.for_channel("email").provider is email_provider
        assert pipeline.executor.for_channel("sms").provider is sms_provider
        assert pipeline.dispatcher.dead_letters is pipeline.dead_letters
        assert pipeline.escalation.store is pipeline.store

    def test_nothing_bound_by_default(self):
        assert bound_pipeline() is None

    def test_bind_and_reset(self, unbound_pipeline):
        bind_pipeline(unbound_pipeline)
        assert get_pipeline() is unbound_pipeline

        reset_pipeline()
        assert bound_pipeline() is None

    def test_get_pipeline_builds_lazily(self):
        pipeline = get_pipeline()
        assert bound_pipeline() is pipeline
        assert get_pipeline() is pipeline
