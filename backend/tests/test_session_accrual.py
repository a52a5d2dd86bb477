from datetime import datetime, timedelta

import pytest

from domain.device import DeviceType
from domain.errors import StateConflictError, ValidationError
from domain.rates import RateTable
from domain.session import ControllerPeriod, GameSession, SessionStatus, accrue, round_up_cost

T0 = datetime(2024, 3, 1, 18, 0, 0)
PS_RATES = RateTable.from_defaults(
    DeviceType.PLAYSTATION, {"playstation": {1: 20, 2: 20, 3: 25, 4: 30}}
)
PC_RATES = RateTable.from_defaults(DeviceType.COMPUTER, {"computer": 15})


def _session(controllers=2, device_type=DeviceType.PLAYSTATION, **kwargs):
    return GameSession(
        session_id="s1",
        device_number="ps1",
        device_name="PS 1",
        device_type=device_type,
        start_time=T0,
        controllers=controllers,
        **kwargs,
    )


def test_new_session_has_one_open_interval():
    session = _session()
    assert len(session.controllers_history) == 1
    assert session.controllers_history[0].is_open
    assert session.controllers_history[0].controllers == 2


def test_one_hour_at_two_controllers_costs_twenty():
    session = _session()
    session.end(PS_RATES, T0 + timedelta(hours=1))
    assert session.status == SessionStatus.COMPLETED
    assert session.total_cost == 20
    assert session.final_cost == 20
    assert all(not period.is_open for period in session.controllers_history)


def test_controller_change_prices_each_interval():
    session = _session()
    session.update_controllers(4, T0 + timedelta(hours=1))
    session.end(PS_RATES, T0 + timedelta(hours=2))
    assert session.total_cost == 50
    assert [p.controllers for p in session.controllers_history] == [2, 4]


def test_discount_reduces_final_cost():
    session = _session()
    session.end(PS_RATES, T0 + timedelta(hours=1))
    session.set_discount(5, T0 + timedelta(hours=1))
    assert session.final_cost == 15


def test_half_hour_costs_ten():
    session = _session()
    session.end(PS_RATES, T0 + timedelta(minutes=30))
    assert session.total_cost == 10


def test_short_interval_rounds_up_to_one():
    assert accrue(T0, T0 + timedelta(seconds=10), 20) == 1
    assert accrue(T0, T0, 20) == 0
    assert accrue(T0, T0 + timedelta(microseconds=1), 20) == 1
    assert accrue(T0, T0 + timedelta(milliseconds=1), 1) == 1
    assert round_up_cost(1e-9) == 1


def test_each_interval_rounds_up_independently():
    session = _session(controllers=1)
    # 7 minutes at 20/h = 2.33 -> 3, twice.
    session.update_controllers(2, T0 + timedelta(minutes=7))
    session.end(PS_RATES, T0 + timedelta(minutes=14))
    assert session.total_cost == 6


def test_round_up_strips_float_noise():
    assert round_up_cost(10.000000000000002) == 10
    assert round_up_cost(0) == 0


def test_update_controllers_appends_exactly_one_interval():
    session = _session()
    now = T0 + timedelta(minutes=20)
    session.update_controllers(3, now)
    assert len(session.controllers_history) == 2
    first, second = session.controllers_history
    assert first.ended_at == now
    assert second.started_at == now and second.is_open
    assert session.controllers == 3


@pytest.mark.parametrize("count", [0, 5, 2.5, True, "3"])
def test_update_controllers_rejects_bad_counts(count):
    session = _session()
    with pytest.raises(ValidationError):
        session.update_controllers(count, T0 + timedelta(minutes=5))
    assert len(session.controllers_history) == 1
    assert session.controllers == 2


def test_ended_session_rejects_mutations():
    session = _session()
    session.end(PS_RATES, T0 + timedelta(hours=1))
    with pytest.raises(StateConflictError):
        session.update_controllers(3, T0 + timedelta(hours=2))
    with pytest.raises(StateConflictError):
        session.end(PS_RATES, T0 + timedelta(hours=2))


def test_end_without_history_synthesizes_interval():
    session = _session(status=SessionStatus.COMPLETED)
    session.status = SessionStatus.ACTIVE
    assert session.controllers_history == []
    session.end(PS_RATES, T0 + timedelta(hours=1))
    assert len(session.controllers_history) == 1
    assert session.controllers_history[0].started_at == T0
    assert session.total_cost == 20


def test_zero_length_history_falls_back_to_whole_session():
    session = _session(
        controllers=4,
        controllers_history=[ControllerPeriod(controllers=4, started_at=T0, ended_at=T0)],
    )
    cost = session.calculate_cost(PS_RATES, T0 + timedelta(hours=1))
    assert cost == 30


def test_current_cost_has_no_side_effects():
    session = _session()
    assert session.calculate_current_cost(PS_RATES, T0 + timedelta(hours=1)) == 20
    assert session.total_cost == 0
    assert session.controllers_history[0].is_open


def test_current_cost_of_ended_session_is_stored_total():
    session = _session()
    session.end(PS_RATES, T0 + timedelta(hours=1))
    assert session.calculate_current_cost(PS_RATES, T0 + timedelta(hours=5)) == 20


def test_computer_session_uses_single_rate():
    session = _session(controllers=1, device_type=DeviceType.COMPUTER)
    session.end(PC_RATES, T0 + timedelta(hours=2))
    assert session.total_cost == 30


def test_cost_breakdown_rows():
    session = _session()
    session.update_controllers(4, T0 + timedelta(minutes=90))
    result = session.cost_breakdown(PS_RATES, T0 + timedelta(minutes=120))
    assert result["totalCost"] == 45
    first, second = result["breakdown"]
    assert (first["hours"], first["minutes"], first["cost"]) == (1, 30, 30)
    assert (second["controllers"], second["hourlyRate"], second["cost"]) == (4, 30, 15)


def test_adjust_start_time_moves_first_interval():
    session = _session()
    now = T0 + timedelta(minutes=30)
    session.adjust_start_time(T0 - timedelta(minutes=30), now)
    assert session.controllers_history[0].started_at == T0 - timedelta(minutes=30)
    assert session.calculate_cost(PS_RATES, now) == 20
    with pytest.raises(ValidationError):
        session.adjust_start_time(now + timedelta(minutes=1), now)


def test_negative_discount_rejected():
    session = _session()
    with pytest.raises(ValidationError):
        session.set_discount(-1, T0)
