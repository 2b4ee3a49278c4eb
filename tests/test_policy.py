import pytest

from vacancies.policy import ConflictStrategy, DispatchPolicy, default_dispatch_policy, policy_from_env


def test_default_policy_is_valid():
    policy = default_dispatch_policy()

    assert policy.reminder_percentage == 75
    assert policy.conflict_strategy == ConflictStrategy.SIMPLE


@pytest.mark.parametrize(
    "changes",
    [
        {"reminder_percentage": 9},
        {"reminder_percentage": 91},
        {"conflict_strategy": "smart"},
        {"instant_threshold": 40},
        {"batch_size": 0},
        {"batch_delay_seconds": -1},
        {"tick_interval_seconds": 0},
        {"token_bytes": 8},
    ],
)
def test_validate_rejects_out_of_range_values(changes):
    with pytest.raises(ValueError):
        DispatchPolicy(**changes).validate()


@pytest.mark.parametrize("percentage", [10, 90])
def test_reminder_percentage_bounds_are_inclusive(percentage):
    DispatchPolicy(reminder_percentage=percentage).validate()


def test_policy_from_env(monkeypatch):
    monkeypatch.setenv("REMINDER_PERCENTAGE", "60")
    monkeypatch.setenv("CONFLICT_STRATEGY", "smart")

    policy = policy_from_env()

    assert policy.reminder_percentage == 60
    assert policy.conflict_strategy == ConflictStrategy.SMART


def test_policy_from_env_rejects_unknown_strategy(monkeypatch):
    monkeypatch.setenv("CONFLICT_STRATEGY", "lottery")

    with pytest.raises(ValueError):
        policy_from_env()
