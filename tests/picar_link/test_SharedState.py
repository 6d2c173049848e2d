import threading
import unittest
from unittest.mock import Mock

from picar_link.dataclasses import BatteryLevel, StatusUpdate, SubsystemFlags
from picar_link.SharedState import SharedState


def running(voltage: float = 7.6, **kwargs) -> StatusUpdate:
    return StatusUpdate(battery_voltage=voltage, **kwargs)


def camera(voltage: float = 7.6, present: bool = True) -> StatusUpdate:
    return StatusUpdate(battery_voltage=voltage, camera=present, has_mock_status=True)


class TestSharedStateDefaults(unittest.TestCase):
    def test_initial_snapshot(self):
        state = SharedState(video_url="http://robot/mjpg")
        snapshot = state.snapshot()

        self.assertEqual(snapshot.battery_voltage, 0.0)
        self.assertFalse(snapshot.is_running)
        self.assertFalse(snapshot.is_video_available)
        self.assertFalse(snapshot.is_video_stalled)
        self.assertEqual(snapshot.subsystems, SubsystemFlags())
        self.assertEqual(snapshot.video_url, "http://robot/mjpg")
        self.assertEqual(snapshot.video_resolution, (320, 240))
        self.assertEqual(snapshot.battery_level, BatteryLevel.STOPPED)


class TestSharedStateTelemetry(unittest.TestCase):
    def setUp(self):
        self.state = SharedState()

    def test_running_follows_voltage(self):
        for voltage in [7.6, 0.0, 8.2, 0.01, 0.0, 0.0, 7.4, -1.0, 12.0]:
            self.state.apply_status(running(voltage))
            snapshot = self.state.snapshot()
            self.assertEqual(snapshot.is_running, voltage > 0)
            self.assertFalse(snapshot.is_video_available and not snapshot.is_running)

    def test_optional_fields_keep_previous_value(self):
        self.state.apply_status(running(distance=42.0, position=10.0))
        self.state.apply_status(running(7.5))

        snapshot = self.state.snapshot()
        self.assertEqual(snapshot.distance, 42.0)
        self.assertEqual(snapshot.position, 10.0)
        self.assertEqual(snapshot.battery_voltage, 7.5)

    def test_distance_sentinel_passes_through(self):
        self.state.apply_status(running(distance=-2.0))
        self.assertEqual(self.state.snapshot().distance, -2.0)

    def test_subsystem_flags_are_sparse(self):
        self.state.apply_status(StatusUpdate(7.6, gpio=True, i2c=True, has_mock_status=True))
        self.state.apply_status(StatusUpdate(7.6, i2c=False, has_mock_status=True))

        flags = self.state.snapshot().subsystems
        self.assertTrue(flags.gpio)
        self.assertFalse(flags.i2c)
        self.assertFalse(flags.adc)

    def test_camera_while_running_makes_video_available(self):
        self.state.apply_status(camera())
        self.assertTrue(self.state.is_video_available)

    def test_camera_while_stopped_does_not(self):
        self.state.apply_status(camera(voltage=0.0))
        self.assertFalse(self.state.is_video_available)

    def test_stop_drops_video_availability(self):
        self.state.apply_status(camera())
        self.state.apply_status(running(0.0))

        self.assertFalse(self.state.is_running)
        self.assertFalse(self.state.is_video_available)

    def test_force_stopped(self):
        self.state.apply_status(camera())
        self.assertTrue(self.state.force_stopped())

        snapshot = self.state.snapshot()
        self.assertEqual(snapshot.battery_voltage, 0.0)
        self.assertFalse(snapshot.is_running)
        self.assertFalse(snapshot.is_video_available)

    def test_camera_report_does_not_clear_stall(self):
        self.state.apply_status(camera())
        self.state.update_video(available=False, stalled=True)
        self.state.apply_status(camera())

        self.assertFalse(self.state.is_video_available)
        self.assertTrue(self.state.is_video_stalled)

    def test_battery_level(self):
        self.state.apply_status(running(7.5))
        self.assertEqual(self.state.snapshot().battery_level, BatteryLevel.LOW)

        self.state.apply_status(running(8.1))
        self.assertEqual(self.state.snapshot().battery_level, BatteryLevel.GOOD)


class TestSharedStateVideo(unittest.TestCase):
    def setUp(self):
        self.state = SharedState()

    def test_available_refused_while_not_running(self):
        self.assertFalse(self.state.update_video(available=True))
        self.assertFalse(self.state.is_video_available)

    def test_update_video_sets_both_flags(self):
        self.state.apply_status(running())
        self.state.update_video(available=True)
        self.state.update_video(available=False, stalled=True)

        self.assertFalse(self.state.is_video_available)
        self.assertTrue(self.state.is_video_stalled)

    def test_mark_video_frame_does_not_notify(self):
        listener = Mock()
        self.state.add_listener(listener)

        self.state.mark_video_frame(12.5)

        self.assertEqual(self.state.snapshot().last_video_frame_at, 12.5)
        listener.assert_not_called()

    def test_update_video_resolution(self):
        self.assertTrue(self.state.update_video_resolution(640, 480))
        snapshot = self.state.snapshot()
        self.assertEqual(snapshot.video_resolution, (640, 480))
        self.assertTrue(snapshot.has_detected_resolution)

        self.assertFalse(self.state.update_video_resolution(640, 480))
        self.assertFalse(self.state.update_video_resolution(0, 480))

    def test_update_video_url(self):
        self.assertTrue(self.state.update_video_url("http://other/mjpg"))
        self.assertEqual(self.state.snapshot().video_url, "http://other/mjpg")

        self.assertFalse(self.state.update_video_url("http://other/mjpg"))
        self.assertFalse(self.state.update_video_url(""))

    def test_set_target_position(self):
        self.state.set_target_position(250)
        self.assertEqual(self.state.snapshot().target_position, 250.0)


class TestSharedStateListeners(unittest.TestCase):
    def setUp(self):
        self.state = SharedState()

    def test_one_notification_per_update(self):
        listener = Mock()
        self.state.add_listener(listener)

        self.state.apply_status(StatusUpdate(7.6, distance=3.0, camera=True, has_mock_status=True))

        listener.assert_called_once()
        previous, current = listener.call_args.args
        self.assertFalse(previous.is_running)
        self.assertTrue(current.is_running)
        self.assertTrue(current.is_video_available)
        self.assertEqual(current.distance, 3.0)

    def test_no_notification_without_change(self):
        self.state.apply_status(running())
        listener = Mock()
        self.state.add_listener(listener)

        self.assertFalse(self.state.apply_status(running()))
        listener.assert_not_called()

    def test_remove_listener(self):
        listener = Mock()
        self.state.add_listener(listener)
        self.state.remove_listener(listener)
        self.state.remove_listener(listener)

        self.state.apply_status(running())
        listener.assert_not_called()

    def test_failing_listener_is_logged(self):
        good = Mock()
        self.state.add_listener(Mock(side_effect=RuntimeError("boom")))
        self.state.add_listener(good)

        with self.assertLogs(level="ERROR"):
            self.state.apply_status(running())

        good.assert_called_once()

    def test_listener_may_read_state(self):
        seen = []
        self.state.add_listener(lambda previous, current: seen.append(self.state.is_running))

        self.state.apply_status(running())
        self.assertEqual(seen, [True])

    def test_concurrent_updates_keep_invariants(self):
        violations = []

        def check(previous, current):
            if current.is_running != (current.battery_voltage > 0):
                violations.append(current)
            if current.is_video_available and not current.is_running:
                violations.append(current)

        self.state.add_listener(check)

        def writer(voltage):
            for _ in range(200):
                self.state.apply_status(camera(voltage))
                self.state.force_stopped()

        threads = [threading.Thread(target=writer, args=(v,)) for v in (7.6, 8.0, 6.9)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(violations, [])
