"""Tests for RetryTask, IntervalRegistry and attribute synchronization."""
import logging
import pytest

from protosession import (
    IDENTITY_ATTRIBUTE,
    AttemptResult,
    AttributeSynchronizer,
    HostElement,
    InternalSyncTrait,
    IntervalRegistry,
    RetryConfig,
    RetryState,
    RetryTask,
    SyncTarget,
)


@pytest.fixture
def synchronizer(scheduler):
    return AttributeSynchronizer(SyncTarget('legend'), retry=RetryConfig(), scheduler=scheduler)


# ========== RetryTask ==========

def test_retry_task_succeeds_on_later_attempt(scheduler):
    outcomes = iter([AttemptResult.PENDING, AttemptResult.PENDING, AttemptResult.SUCCEEDED])
    task = RetryTask('demo', 42, lambda value: next(outcomes), scheduler, RetryConfig(delay_ms=50))

    assert task.start() is RetryState.WAITING
    scheduler.advance(50)
    assert task.is_waiting
    scheduler.advance(50)
    assert task.state is RetryState.SUCCEEDED
    assert task.attempts == 2
    assert scheduler.pending_timers() == 0


def test_retry_task_exhausts_budget(scheduler):
    finished = []
    task = RetryTask('demo', 'v', lambda value: AttemptResult.PENDING, scheduler,
                     RetryConfig(max_attempts=10, delay_ms=50))
    task.on_finished(finished.append)
    task.start()

    scheduler.advance(499)
    assert task.is_waiting
    assert task.attempts == 9
    scheduler.advance(1)
    assert task.state is RetryState.EXHAUSTED
    assert task.attempts == 10
    assert finished == [task]

    scheduler.advance(1000)
    assert task.attempts == 10


def test_retry_task_swallows_attempt_errors(scheduler):
    calls = []

    def flaky(value):
        calls.append(value)
        if len(calls) == 1:
            raise RuntimeError('not rendered')
        return AttemptResult.SUCCEEDED

    task = RetryTask('demo', 'v', flaky, scheduler, RetryConfig())
    assert task.start() is RetryState.WAITING
    scheduler.advance(50)
    assert task.state is RetryState.SUCCEEDED


def test_retry_task_cancel_is_final(scheduler):
    task = RetryTask('demo', 'v', lambda value: AttemptResult.PENDING, scheduler, RetryConfig())
    task.start()
    task.cancel()
    assert task.state is RetryState.CANCELLED
    task.cancel()
    scheduler.advance(1000)
    assert task.attempts == 0


# ========== AttributeSynchronizer ==========

def test_sync_writes_immediately_when_target_exists(synchronizer, make_host):
    host = make_host()
    legend = host.render('legend')

    task = synchronizer.sync(host, 'legend', 'Contact details')
    assert task.state is RetryState.SUCCEEDED
    assert legend.text_content == 'Contact details'
    assert IntervalRegistry.active_count() == 0
    assert IDENTITY_ATTRIBUTE not in host.attributes


def test_sync_retries_until_target_renders(synchronizer, make_host, scheduler):
    host = make_host()
    task = synchronizer.sync(host, 'legend', 'Contact details')
    assert task.is_waiting
    assert IntervalRegistry.is_active(host, 'legend')

    scheduler.advance(150)
    legend = host.render('legend')
    scheduler.advance(50)

    assert legend.text_content == 'Contact details'
    assert task.state is RetryState.SUCCEEDED
    assert IntervalRegistry.active_count() == 0


def test_sync_sets_configured_property(make_host, scheduler):
    synchronizer = AttributeSynchronizer(SyncTarget('.usa-hint', property='inner_html'), scheduler=scheduler)
    host = make_host()
    hint = host.render('.usa-hint')
    synchronizer.sync(host, 'hint', '<b>Required</b>')
    assert hint.inner_html == '<b>Required</b>'
    assert hint.text_content is None


def test_sync_gives_up_quietly_after_budget(synchronizer, make_host, scheduler, caplog):
    host = make_host()
    with caplog.at_level(logging.DEBUG, logger='protosession.attribute_sync'):
        task = synchronizer.sync(host, 'legend', 'Never shown')
        scheduler.advance(500)

    assert task.state is RetryState.EXHAUSTED
    assert IntervalRegistry.active_count() == 0
    assert "could not sync 'legend'" in caplog.text
    assert all(record.levelno == logging.DEBUG for record in caplog.records)


def test_sync_abandons_detached_host(synchronizer, make_host, scheduler):
    host = make_host()
    task = synchronizer.sync(host, 'legend', 'Gone')
    host.connected = False
    scheduler.advance(50)

    assert task.state is RetryState.ABANDONED
    assert IntervalRegistry.active_count() == 0
    queries = host.queries
    scheduler.advance(1000)
    assert host.queries == queries


def test_sync_on_detached_host_never_registers(synchronizer, make_host):
    host = make_host(connected=False)
    task = synchronizer.sync(host, 'legend', 'x')
    assert task.state is RetryState.ABANDONED
    assert IntervalRegistry.active_count() == 0


def test_second_sync_replaces_first(synchronizer, make_host, scheduler):
    host = make_host()
    first = synchronizer.sync(host, 'legend', 'old')
    scheduler.advance(50)
    second = synchronizer.sync(host, 'legend', 'new')

    assert first.state is RetryState.CANCELLED
    assert IntervalRegistry.get(host, 'legend') is second

    legend = host.render('legend')
    scheduler.advance(500)
    assert legend.text_content == 'new'
    assert IntervalRegistry.active_count() == 0


def test_identity_tag_is_assigned_once(synchronizer, make_host):
    host = make_host()
    synchronizer.sync(host, 'legend', 'a')
    identity = host.attributes[IDENTITY_ATTRIBUTE]
    synchronizer.sync(host, 'legend', 'b')
    synchronizer.sync(host, 'label', 'c')
    assert host.attributes[IDENTITY_ATTRIBUTE] == identity
    assert sorted(IntervalRegistry.active_keys()) == [(identity, 'label'), (identity, 'legend')]


def test_cleanup_for_host_leaves_other_hosts(synchronizer, make_host, scheduler):
    removed, kept = make_host(), make_host()
    removed_tasks = [synchronizer.sync(removed, name, 'x') for name in ('legend', 'label')]
    kept_task = synchronizer.sync(kept, 'legend', 'y')

    assert AttributeSynchronizer.cleanup_for_host(removed) == 2
    assert all(task.state is RetryState.CANCELLED for task in removed_tasks)
    assert kept_task.is_waiting
    assert IntervalRegistry.active_count() == 1

    legend = kept.render('legend')
    scheduler.advance(50)
    assert legend.text_content == 'y'


def test_cleanup_for_untracked_host_is_noop(make_host):
    assert AttributeSynchronizer.cleanup_for_host(make_host()) == 0


def test_cleanup_all(synchronizer, make_host, scheduler):
    tasks = [synchronizer.sync(make_host(), 'legend', str(i)) for i in range(3)]
    assert AttributeSynchronizer.cleanup_all() == 3
    assert IntervalRegistry.active_count() == 0
    assert all(task.state is RetryState.CANCELLED for task in tasks)
    assert scheduler.pending_timers() == 0


# ========== InternalSyncTrait ==========

def test_trait_writes_attribute_and_nested_element(make_host, scheduler):
    trait = InternalSyncTrait('legend', label='Legend', target=SyncTarget('legend'),
                              default='Fieldset legend', scheduler=scheduler)
    host = make_host()
    assert trait.get_value(host) == 'Fieldset legend'

    trait.on_change(host, 'Contact details')
    assert host.attributes['legend'] == 'Contact details'
    assert trait.get_value(host) == 'Contact details'

    legend = host.render('legend')
    scheduler.advance(50)
    assert legend.text_content == 'Contact details'


def test_trait_value_prefers_live_property(make_host, scheduler):
    trait = InternalSyncTrait('legend', label='Legend', target=SyncTarget('legend'),
                              default='Fieldset legend', scheduler=scheduler)
    host = make_host()
    host.attributes['legend'] = 'From markup'
    assert trait.get_value(host) == 'From markup'

    host.properties['legend'] = 'Live value'
    assert trait.get_value(host) == 'Live value'

    trait.on_change(host, 'Edited')
    assert host.properties['legend'] == 'Edited'
    assert host.attributes['legend'] == 'Edited'


class AttributeOnlyHost(HostElement):
    """Host without live properties, relying on the base class defaults."""

    def __init__(self):
        self.attributes = {}

    def get_attribute(self, name):
        return self.attributes.get(name)

    def set_attribute(self, name, value):
        self.attributes[name] = value

    @property
    def is_connected(self):
        return True


def test_trait_on_host_without_properties(scheduler):
    trait = InternalSyncTrait('label', label='Label', target=SyncTarget('.usa-label'),
                              default='Label text', scheduler=scheduler)
    host = AttributeOnlyHost()
    assert trait.get_value(host) == 'Label text'

    task = trait.on_change(host, 'Email')
    assert trait.get_value(host) == 'Email'
    assert task.is_waiting
    task.cancel()


def test_trait_stringifies_values(make_host, scheduler):
    trait = InternalSyncTrait('count', label='Count', target=SyncTarget('span'), scheduler=scheduler)
    host = make_host()
    span = host.render('span')
    trait.on_change(host, 3)
    assert span.text_content == '3'
    trait.on_change(host, None)
    assert span.text_content == ''


def test_trait_definition():
    trait = InternalSyncTrait('label', label='Label', target=SyncTarget('.usa-label'),
                              input_type='textarea', placeholder='Enter label text')
    assert trait.definition == {
        'name': 'label',
        'label': 'Label',
        'type': 'textarea',
        'default': '',
        'placeholder': 'Enter label text',
    }
    with pytest.raises(ValueError):
        InternalSyncTrait('x', label='X', target=SyncTarget('x'), input_type='checkbox')
