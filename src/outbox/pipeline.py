"""Pipeline composition — wires store, executor, dispatcher and escalation.

Provider clients are constructed here once and passed down explicitly;
nothing below this module reaches for process-wide provider state.

The change-feed handler looks up the *bound* pipeline on every insert.
``get_pipeline`` builds one from settings on first use (fake providers
unless ``OUTBOX_PROVIDER_BACKEND=aws``); tests bind their own.
"""

import time
from dataclasses import dataclass

import structlog

from outbox.config import OutboxSettings, get_settings
from outbox.delivery.email_port import EmailProvider
from outbox.delivery.executor import DeliveryExecutor
from outbox.delivery.sms_port import SmsProvider
from outbox.dispatch.dispatcher import ChangeFeedDispatcher
from outbox.escalation.dead_letters import DeadLetterQueue, InMemoryDeadLetterQueue
from outbox.escalation.processor import EscalationProcessor
from outbox.metrics import MetricsSink, SafeMetrics
from outbox.queue.store import OutboxStore
from outbox.retry import BackoffPolicy

logger = structlog.get_logger(__name__)

_pipeline: "Pipeline | None" = None


@dataclass
class Pipeline:
    store: OutboxStore
    executor: DeliveryExecutor
    metrics: SafeMetrics
    dead_letters: DeadLetterQueue
    dispatcher: ChangeFeedDispatcher
    escalation: EscalationProcessor
    settings: OutboxSettings

    def process_dead_letters(self, limit: int | None = 10):
        return self.escalation.process_dead_letters(self.dead_letters, limit)


def escalation_policy(settings: OutboxSettings) -> BackoffPolicy:
    return BackoffPolicy(
        max_attempts=settings.escalation_max_attempts,
        base_delay=settings.escalation_base_delay,
        max_delay=settings.escalation_max_delay,
        factor=settings.escalation_factor,
        jitter=settings.escalation_jitter,
    )


def default_providers(settings: OutboxSettings) -> tuple[EmailProvider, SmsProvider]:
    """Return the email and SMS providers selected by ``provider_backend``."""
    if settings.provider_backend == "aws":
        from outbox.delivery.ses import SesEmailProvider, build_ses_client
        from outbox.delivery.sns import SnsSmsProvider, build_sns_client

        return (
            SesEmailProvider(build_ses_client(settings.aws_region), source=settings.email_from),
            SnsSmsProvider(build_sns_client(settings.aws_region)),
        )

    from outbox.delivery.fake_email import FakeEmailProvider
    from outbox.delivery.fake_sms import FakeSmsProvider

    return FakeEmailProvider(), FakeSmsProvider()


def build_pipeline(
    settings: OutboxSettings | None = None,
    email_provider: EmailProvider | None = None,
    sms_provider: SmsProvider | None = None,
    metrics_sink: MetricsSink | None = None,
    dead_letters: DeadLetterQueue | None = None,
    store: OutboxStore | None = None,
    sleep=time.sleep,
) -> Pipeline:
    settings = settings or get_settings()

    if email_provider is None or sms_provider is None:
        default_email, default_sms = default_providers(settings)
        email_provider = email_provider or default_email
        sms_provider = sms_provider or default_sms

    store = store or OutboxStore()
    metrics = SafeMetrics(metrics_sink)
    dead_letters = dead_letters if dead_letters is not None else InMemoryDeadLetterQueue()
    executor = DeliveryExecutor(email_provider=email_provider, sms_provider=sms_provider, sms_type=settings.sms_type)

    return Pipeline(
        store=store,
        executor=executor,
        metrics=metrics,
        dead_letters=dead_letters,
        dispatcher=ChangeFeedDispatcher(store, executor, metrics, dead_letters),
        escalation=EscalationProcessor(store, executor, metrics, policy=escalation_policy(settings), sleep=sleep),
        settings=settings,
    )


def bind_pipeline(pipeline: Pipeline) -> Pipeline:
    """Make ``pipeline`` the one the change feed and maintenance operations use."""
    global _pipeline
    _pipeline = pipeline
    logger.debug("Outbox pipeline bound", backend=pipeline.settings.provider_backend)
    return pipeline


def bound_pipeline() -> Pipeline | None:
    return _pipeline


def get_pipeline() -> Pipeline:
    """Return the bound pipeline, building one from settings if none is bound."""
    if _pipeline is None:
        bind_pipeline(build_pipeline())
    return _pipeline


def reset_pipeline():
    """Unbind the pipeline (useful for testing)."""
    global _pipeline
    _pipeline = None
