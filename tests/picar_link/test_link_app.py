import tempfile
import unittest
from pathlib import Path
from unittest.mock import MagicMock, patch

from picar_link.apps import link as app
from picar_link.dataclasses import RobotSnapshot


class TestArguments(unittest.TestCase):
    def test_defaults(self):
        args = app.parse_args([])

        self.assertEqual(args.log, "ERROR")
        self.assertEqual(args.settings, "settings.toml")
        self.assertFalse(args.log_to_file)
        self.assertFalse(args.no_video)
        self.assertFalse(args.gamepad)
        self.assertIsNone(args.video_url)

    def test_flags(self):
        args = app.parse_args(["--log", "debug", "--no-video", "--gamepad", "--settings", "x.toml"])

        self.assertEqual(args.log, "debug")
        self.assertEqual(args.settings, "x.toml")
        self.assertTrue(args.no_video)
        self.assertTrue(args.gamepad)

    def test_invalid_log_level(self):
        with self.assertRaises(ValueError):
            app.configure_logging("LOUD", False)

    def test_log_changes(self):
        with self.assertLogs(level="INFO") as logs:
            app.log_changes(RobotSnapshot(), RobotSnapshot(battery_voltage=7.2, is_running=True))

        self.assertIn("7.20V (low)", logs.output[0])


class TestMain(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.settings_path = str(Path(self.tmpdir.name) / "settings.toml")

        patchers = [
            patch.object(app, "configure_logging"),
            patch.object(app, "RobotLink"),
            patch.object(app, "MjpegReceiver"),
            patch.object(app, "GamepadInput"),
            patch.object(app.signal, "signal"),
            patch.object(app.threading, "Event"),
        ]
        mocks = [p.start() for p in patchers]
        for p in patchers:
            self.addCleanup(p.stop)

        _, self.robot_link_cls, self.receiver_cls, self.gamepad_cls, self.signal, event_cls = mocks
        self.link = self.robot_link_cls.from_settings.return_value
        event_cls.return_value = MagicMock()

    def tearDown(self):
        self.tmpdir.cleanup()

    def test_runs_link_with_video(self):
        app.main(["--settings", self.settings_path])

        self.link.start.assert_called_once()
        self.link.shutdown.assert_called_once()
        self.link.add_listener.assert_called_once_with(app.log_changes)

        receiver = self.receiver_cls.return_value
        receiver.start.assert_called_once()
        receiver.stop.assert_called_once()
        self.link.set_video_reconnect.assert_called_once_with(receiver.reconnect)
        self.link.set_video_url_handler.assert_called_once_with(receiver.set_url)

        self.gamepad_cls.assert_not_called()
        self.assertEqual(self.signal.call_count, 2)
        self.link.set_video_url.assert_not_called()

    def test_video_url_option(self):
        app.main(["--settings", self.settings_path, "--video-url", "http://10.0.0.9:9000/mjpg"])

        self.link.set_video_url.assert_called_once_with("http://10.0.0.9:9000/mjpg")

    def test_no_video_and_gamepad(self):
        app.main(["--settings", self.settings_path, "--no-video", "--gamepad"])

        self.receiver_cls.assert_not_called()

        args, kwargs = self.gamepad_cls.call_args
        self.assertIs(args[0], self.link)
        self.assertNotIn("enabled", args[1])
        self.assertEqual(args[1]["drive_y"], 1)
        self.assertEqual(kwargs["poll_hz"], 60)

        gamepad = self.gamepad_cls.return_value
        gamepad.start.assert_called_once()
        gamepad.stop.assert_called_once()
