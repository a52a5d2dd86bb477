import pytest

from domain.device import Device, DeviceType, normalize_device_number, validate_playstation_rates
from domain.errors import ValidationError
from domain.rates import RateTable

DEFAULTS = {"computer": 15, "playstation": {1: 20, 2: 20, 3: 25, 4: 30}}


def test_playstation_rate_by_controller_count():
    table = RateTable.from_defaults(DeviceType.PLAYSTATION, DEFAULTS)
    assert table.rate(DeviceType.PLAYSTATION, 1) == 20
    assert table.rate(DeviceType.PLAYSTATION, 3) == 25
    assert table.rate(DeviceType.PLAYSTATION, 4) == 30


def test_computer_rate_ignores_controllers():
    table = RateTable.from_defaults(DeviceType.COMPUTER, DEFAULTS)
    assert table.rate(DeviceType.COMPUTER, 1) == 15
    assert table.rate(DeviceType.COMPUTER, 4) == 15


def test_rate_rejects_out_of_range_controllers():
    table = RateTable.from_defaults(DeviceType.PLAYSTATION, DEFAULTS)
    with pytest.raises(ValidationError):
        table.rate(DeviceType.PLAYSTATION, 5)


def test_rate_rejects_wrong_device_type():
    table = RateTable.from_defaults(DeviceType.COMPUTER, DEFAULTS)
    with pytest.raises(ValidationError):
        table.rate(DeviceType.PLAYSTATION, 2)


def test_from_device_uses_device_pricing():
    device = Device(
        device_id="d1",
        name="PS 7",
        number="ps7",
        playstation_rates={"1": 10, "2": 12, "3": 14, "4": 16},
    )
    table = RateTable.from_device(device)
    assert table.rate(DeviceType.PLAYSTATION, 2) == 12


def test_playstation_rates_must_cover_all_counts():
    with pytest.raises(ValidationError):
        validate_playstation_rates({1: 20, 2: 20, 3: 25})
    with pytest.raises(ValidationError):
        validate_playstation_rates({1: 20, 2: -1, 3: 25, 4: 30})


def test_device_validation_requires_single_pricing_mode():
    device = Device(
        device_id="d2",
        name="PC 3",
        number="pc3",
        device_type=DeviceType.COMPUTER,
        hourly_rate=15,
        playstation_rates={1: 20, 2: 20, 3: 25, 4: 30},
    )
    with pytest.raises(ValidationError):
        device.validate()


@pytest.mark.parametrize(
    "device_type, number, existing, expected",
    [
        (DeviceType.PLAYSTATION, "3", [], "ps3"),
        (DeviceType.COMPUTER, None, ["pc1", "pc4", "ps9"], "pc5"),
        (DeviceType.PLAYSTATION, None, [], "ps1"),
        (DeviceType.PLAYSTATION, "ps12", [], "ps12"),
    ],
)
def test_normalize_device_number(device_type, number, existing, expected):
    assert normalize_device_number(device_type, number, existing) == expected


@pytest.mark.parametrize(
    "device_type, defaults",
    [
        (DeviceType.COMPUTER, {"playstation": DEFAULTS["playstation"]}),
        (DeviceType.PLAYSTATION, {"computer": 15}),
        (DeviceType.PLAYSTATION, {}),
    ],
)
def test_missing_configured_defaults_are_rejected(device_type, defaults):
    with pytest.raises(ValidationError):
        RateTable.from_defaults(device_type, defaults)
