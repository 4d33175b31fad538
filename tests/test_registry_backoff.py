"""Tests del registro de dispositivos y la política de backoff."""

import pytest

from telemetry_api.core.domain import DeviceState, PollAttempt, PollOutcome
from telemetry_api.devices import DeviceRegistry, UnknownDevice
from telemetry_api.scheduler import BackoffPolicy

from conftest import make_settings

BASE = 30.0


def _attempt(device_id: str, outcome: PollOutcome) -> PollAttempt:
    return PollAttempt(device_id=device_id, outcome=outcome)


class TestBackoffPolicy:

    def test_no_failures_returns_base(self):
        assert BackoffPolicy().delay_for(BASE, 0) == BASE

    def test_exponential_growth(self):
        policy = BackoffPolicy(factor=2.0, max_delay=600.0)
        assert [policy.delay_for(BASE, n) for n in (1, 2, 3)] == [60.0, 120.0, 240.0]

    def test_non_decreasing_and_capped(self):
        policy = BackoffPolicy(factor=2.0, max_delay=600.0)
        delays = [policy.delay_for(BASE, n) for n in range(0, 20)]

        assert delays == sorted(delays)
        assert max(delays) == 600.0

    def test_never_below_base(self):
        # Cap menor que el intervalo base: se respeta la base
        policy = BackoffPolicy(factor=2.0, max_delay=10.0)
        assert policy.delay_for(BASE, 5) == BASE

    def test_huge_failure_count_does_not_overflow(self):
        assert BackoffPolicy().delay_for(BASE, 100000) == 600.0

    def test_from_settings(self):
        policy = BackoffPolicy.from_settings(make_settings(backoff_factor=3.0, backoff_max_seconds=90.0))

        assert policy.factor == 3.0
        assert policy.max_delay == 90.0


class TestRegistryTransitions:

    def test_begin_poll_is_exclusive(self, device):
        registry = DeviceRegistry([device])

        assert registry.try_begin_poll(device.device_id, now=0.0) == device
        assert registry.get(device.device_id).state == DeviceState.POLLING
        # Segundo intento mientras está en vuelo
        assert registry.try_begin_poll(device.device_id, now=0.0) is None

    def test_not_due_yet(self, device):
        registry = DeviceRegistry([device])
        registry.try_begin_poll(device.device_id, now=0.0)
        registry.record_success(device.device_id, _attempt(device.device_id, PollOutcome.SUCCESS), now=0.0, interval=BASE)

        assert registry.try_begin_poll(device.device_id, now=BASE - 1) is None
        assert registry.try_begin_poll(device.device_id, now=BASE) == device

    def test_success_resets_failures(self, device):
        registry = DeviceRegistry([device], failure_threshold=5)
        policy = BackoffPolicy()
        delay_for = lambda n: policy.delay_for(BASE, n)

        for _ in range(2):
            registry.try_begin_poll(device.device_id, now=10_000.0)
            registry.record_failure(device.device_id, _attempt(device.device_id, PollOutcome.TIMEOUT),
                                    now=0.0, delay_for=delay_for)
        assert registry.get(device.device_id).current_backoff_seconds == 120.0

        registry.try_begin_poll(device.device_id, now=10_000.0)
        snap = registry.record_success(device.device_id, _attempt(device.device_id, PollOutcome.SUCCESS),
                                       now=10_000.0, interval=BASE)

        assert snap.consecutive_failures == 0
        assert snap.current_backoff_seconds == BASE
        assert snap.state == DeviceState.IDLE
        assert snap.last_success_at is not None

    def test_backoff_sequence_grows_until_deactivation(self, device):
        registry = DeviceRegistry([device], failure_threshold=4)
        policy = BackoffPolicy(factor=2.0, max_delay=100.0)
        delays = []

        now = 0.0
        for _ in range(3):
            assert registry.try_begin_poll(device.device_id, now=now) == device
            snap = registry.record_failure(
                device.device_id,
                _attempt(device.device_id, PollOutcome.UNREACHABLE),
                now=now,
                delay_for=lambda n: policy.delay_for(BASE, n),
            )
            delays.append(snap.current_backoff_seconds)
            # Antes de vencer la espera no es elegible
            assert registry.try_begin_poll(device.device_id, now=now + snap.current_backoff_seconds - 0.1) is None
            now += snap.current_backoff_seconds

        assert delays == [60.0, 100.0, 100.0]

    def test_deactivation_at_threshold(self, device, caplog):
        registry = DeviceRegistry([device], failure_threshold=3)

        with caplog.at_level("WARNING"):
            for i in range(3):
                assert registry.try_begin_poll(device.device_id, now=1e9 * i) == device
                snap = registry.record_failure(
                    device.device_id,
                    _attempt(device.device_id, PollOutcome.TIMEOUT),
                    now=1e9 * i,
                    delay_for=lambda n: BASE,
                )

        assert snap.state == DeviceState.DEACTIVATED
        assert not snap.is_active
        assert snap.deactivated_at is not None
        assert snap.consecutive_failures == 3
        assert "DEVICE_DEACTIVATED" in caplog.text
        # Desactivado: nunca vuelve a ser elegible
        assert registry.try_begin_poll(device.device_id, now=1e12) is None

    def test_skip_does_not_touch_failure_counter(self, device):
        registry = DeviceRegistry([device], failure_threshold=3)
        registry.try_begin_poll(device.device_id, now=0.0)
        registry.record_failure(device.device_id, _attempt(device.device_id, PollOutcome.TIMEOUT),
                                now=0.0, delay_for=lambda n: 60.0)

        registry.try_begin_poll(device.device_id, now=60.0)
        snap = registry.record_skip(device.device_id, _attempt(device.device_id, PollOutcome.MALFORMED),
                                    now=60.0, interval=BASE)

        assert snap.consecutive_failures == 1
        assert snap.state == DeviceState.IDLE
        # Respeta el backoff vigente
        assert registry.try_begin_poll(device.device_id, now=60.0 + BASE) is None
        assert registry.try_begin_poll(device.device_id, now=120.0) == device

    def test_reactivate(self, device):
        registry = DeviceRegistry([device], failure_threshold=1)
        registry.try_begin_poll(device.device_id, now=0.0)
        registry.record_failure(device.device_id, _attempt(device.device_id, PollOutcome.TIMEOUT),
                                now=0.0, delay_for=lambda n: BASE)
        assert registry.get(device.device_id).state == DeviceState.DEACTIVATED

        snap = registry.reactivate(device.device_id)

        assert snap.state == DeviceState.IDLE
        assert snap.consecutive_failures == 0
        assert snap.deactivated_at is None
        assert registry.try_begin_poll(device.device_id, now=0.0) == device


class TestRegistryMembership:

    def test_duplicate_ids_rejected(self, device):
        with pytest.raises(ValueError):
            DeviceRegistry([device, device])

    def test_unknown_device(self):
        registry = DeviceRegistry()
        with pytest.raises(UnknownDevice):
            registry.get("ghost")
        assert "ghost" not in registry
        assert len(registry) == 0

    def test_invalid_threshold(self):
        with pytest.raises(ValueError):
            DeviceRegistry(failure_threshold=0)

    def test_snapshots_list_all(self, device, other_device):
        registry = DeviceRegistry([device, other_device])
        assert sorted(s.device_id for s in registry.snapshots()) == sorted(registry.device_ids())
