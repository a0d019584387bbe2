import pytest
from protean.integrations.pytest import DomainFixture

from outbox.config import OutboxSettings
from outbox.delivery.fake_email import FakeEmailProvider
from outbox.delivery.fake_sms import FakeSmsProvider
from outbox.escalation.dead_letters import InMemoryDeadLetterQueue
from outbox.metrics import RecordingMetricsSink
from outbox.pipeline import bind_pipeline, build_pipeline, reset_pipeline


@pytest.fixture(scope="session")
def outbox_bed():
    from outbox.domain import outbox

    bed = DomainFixture(outbox)
    bed.setup()
    yield bed
    bed.teardown()


@pytest.fixture(autouse=True)
def _ctx(outbox_bed):
    with outbox_bed.domain_context():
        yield

        from protean import current_domain

        reset_pipeline()

        # Clear all databases
        for _, provider in current_domain.providers.items():
            provider._data_reset()

        # Drain event stores
        current_domain.event_store.store._data_reset()


@pytest.fixture()
def settings():
    return OutboxSettings(escalation_jitter=False)


@pytest.fixture()
def email_provider():
    return FakeEmailProvider()


@pytest.fixture()
def sms_provider():
    return FakeSmsProvider()


@pytest.fixture()
def metrics_sink():
    return RecordingMetricsSink()


@pytest.fixture()
def dead_letters():
    return InMemoryDeadLetterQueue()


@pytest.fixture()
def sleeps():
    """Delays requested by the retry engine; nothing actually sleeps."""
    return []


@pytest.fixture()
def pipeline(settings, email_provider, sms_provider, metrics_sink, dead_letters, sleeps):
    """A pipeline with fake providers, bound to the change feed."""
    return bind_pipeline(
        build_pipeline(
            settings=settings,
            email_provider=email_provider,
            sms_provider=sms_provider,
            metrics_sink=metrics_sink,
            dead_letters=dead_letters,
            sleep=sleeps.append,
        )
    )


@pytest.fixture()
def unbound_pipeline(settings, email_provider, sms_provider, metrics_sink, dead_letters, sleeps):
    """Same wiring as ``pipeline`` but the change feed does not dispatch."""
    return build_pipeline(
        settings=settings,
        email_provider=email_provider,
        sms_provider=sms_provider,
        metrics_sink=metrics_sink,
        dead_letters=dead_letters,
        sleep=sleeps.append,
    )
