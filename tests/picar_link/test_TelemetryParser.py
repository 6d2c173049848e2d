import pytest

from picar_helper.exceptions import StatusParseError
from picar_link.TelemetryParser import parse_status


class TestParseStatus:
    def test_minimal_payload(self):
        update = parse_status(b'{"Vb": 7.6}')

        assert update.battery_voltage == 7.6
        assert update.distance is None
        assert update.position is None
        assert not update.has_mock_status
        assert not update.camera_reported

    def test_full_payload(self):
        update = parse_status(
            '{"Vb": 8, "distance": 25.5, "pos": -120, '
            '"mock_status": {"gpio": true, "i2c": false, "adc": true, "camera": true}}'
        )

        assert update.battery_voltage == 8.0
        assert update.distance == 25.5
        assert update.position == -120.0
        assert update.has_mock_status
        assert update.gpio is True
        assert update.i2c is False
        assert update.adc is True
        assert update.camera is True

    def test_null_readings_become_zero(self):
        update = parse_status(b'{"Vb": null, "distance": null}')

        assert update.battery_voltage == 0.0
        assert update.distance == 0.0

    def test_distance_sentinel_is_kept(self):
        assert parse_status(b'{"Vb": 7.6, "distance": -2}').distance == -2.0

    def test_partial_mock_status(self):
        update = parse_status(b'{"Vb": 7.6, "mock_status": {"camera": false}}')

        assert update.has_mock_status
        assert update.camera is False
        assert update.camera_reported
        assert update.gpio is None

    def test_null_flag_is_false(self):
        update = parse_status(b'{"Vb": 7.6, "mock_status": {"gpio": null}}')
        assert update.gpio is False

    def test_unknown_keys_are_ignored(self):
        update = parse_status(b'{"Vb": 7.6, "temperature": 41, "mock_status": {"lidar": true}}')
        assert update.battery_voltage == 7.6

    @pytest.mark.parametrize("payload", [
        b"",
        b"not json",
        b"\xff\xfe",
        b"[1, 2]",
        b'"Vb"',
        b"{}",
        b'{"distance": 3}',
        b'{"Vb": "7.6"}',
        b'{"Vb": true}',
        b'{"Vb": 7.6, "pos": [1]}',
        b'{"Vb": 7.6, "mock_status": true}',
        b'{"Vb": 7.6, "mock_status": {"camera": 1}}',
    ])
    def test_malformed_payloads(self, payload):
        with pytest.raises(StatusParseError):
            parse_status(payload)
