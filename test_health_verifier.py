import pytest

from health_verifier import HealthState, HealthVerifier
from scaling_errors import NotFoundError, VerificationTimeoutError
from scaling_models import PodStatus


@pytest.fixture
def verifier(control_plane, clock):
    return HealthVerifier(control_plane, poll_interval=5, sleep=clock.sleep, clock=clock)


def key(target):
    return (target.workload_type, target.name, target.namespace)


def test_converges_to_healthy(control_plane, verifier, clock):
    target = control_plane.add_workload("web", replicas=3, ready_replicas=0)
    control_plane.ready_sequences[key(target)] = [1, 2, 3]

    result = verifier.verify(target, 3, timeout=120)

    assert result.state is HealthState.HEALTHY
    assert result.healthy
    assert result.polls == 3
    assert result.ready_replicas == 3
    assert clock.sleeps == [5, 5]
    result.raise_for_state()


def test_times_out_with_last_seen_count(control_plane, verifier, clock):
    target = control_plane.add_workload("web", replicas=3, ready_replicas=0)
    control_plane.ready_sequences[key(target)] = [1, 2]
    control_plane.pods["default"] = [
        PodStatus("web-1", "Running"),
        PodStatus("web-2", "Running"),
        PodStatus("web-3", "Pending"),
    ]

    result = verifier.verify(target, 3, timeout=30)

    assert result.state is HealthState.TIMEOUT
    assert result.ready_replicas == 2
    assert result.unhealthy_pods == ["web-3"]
    assert clock.now >= 30
    with pytest.raises(VerificationTimeoutError) as excinfo:
        result.raise_for_state()
    assert excinfo.value.ready_replicas == 2
    assert excinfo.value.unhealthy_pods == ["web-3"]


def test_workload_disappearing_is_not_found(control_plane, verifier):
    target = control_plane.add_workload("web", replicas=2, ready_replicas=0)
    del control_plane.workloads[key(target)]

    result = verifier.verify(target, 2, timeout=30)

    assert result.state is HealthState.NOT_FOUND
    with pytest.raises(NotFoundError):
        result.raise_for_state()


def test_grace_period_is_waited_once_before_polling(control_plane, verifier, clock):
    target = control_plane.add_workload("web", replicas=2)

    result = verifier.verify(target, 2, timeout=30, grace_period=15)

    assert result.healthy
    assert clock.sleeps == [15]


def test_zero_timeout_polls_until_deadline_is_exceeded(control_plane, verifier, clock):
    target = control_plane.add_workload("web", replicas=2, ready_replicas=1)

    result = verifier.verify(target, 2, timeout=0)

    assert result.state is HealthState.TIMEOUT
    assert result.polls == 2
    assert clock.sleeps == [5]


def test_poll_landing_on_deadline_keeps_waiting(control_plane, verifier, clock):
    target = control_plane.add_workload("web", replicas=2, ready_replicas=1)
    # ready counts seen at t=0, 5 and 10; the poll at exactly t=10 is not yet past the deadline
    control_plane.ready_sequences[key(target)] = [1, 1, 1, 2]

    result = verifier.verify(target, 2, timeout=10)

    assert result.healthy
    assert result.polls == 4
    assert clock.now == 15
