"""
Tests for the logging and operation timing service.
"""
import json
import logging
import os
import tempfile
import unittest

from wezterm_manager.models.settings import ManagerSettings
from wezterm_manager.services.logging_service import (
    CommandTimer, JSONFormatter, LoggingService
)


class TestJSONFormatter(unittest.TestCase):
    """Test JSON formatter for structured logging."""

    def setUp(self):
        self.formatter = JSONFormatter()

    def test_format_basic_log_record(self):
        """Test formatting a basic log record."""
        record = logging.getLogger('test').makeRecord(
            name='test.module', level=logging.INFO, fn='test_file.py', lno=42,
            msg='Certificate %s issued', args=('laptop',), exc_info=None
        )

        log_data = json.loads(self.formatter.format(record))

        self.assertEqual(log_data['level'], 'INFO')
        self.assertEqual(log_data['logger'], 'test.module')
        self.assertEqual(log_data['message'], 'Certificate laptop issued')
        self.assertTrue(log_data['location'].endswith(':42'))
        self.assertIsInstance(log_data['pid'], int)
        self.assertNotIn('exception', log_data)

    def test_command_timing_is_embedded(self):
        record = logging.getLogger('test').makeRecord(
            name='test', level=logging.DEBUG, fn='f.py', lno=1, msg='status took 1.0 ms',
            args=(), exc_info=None, extra={'command_timing': {'command': 'status'}}
        )
        self.assertEqual(json.loads(self.formatter.format(record))['command_timing']['command'], 'status')

    def test_format_log_record_with_exception(self):
        """Test formatting a log record with exception information."""
        try:
            raise ValueError("Test exception")
        except ValueError:
            import sys
            record = logging.getLogger('test').makeRecord(
                name='test.module', level=logging.ERROR, fn='test_file.py', lno=42,
                msg='Error occurred', args=(), exc_info=sys.exc_info()
            )

        log_data = json.loads(self.formatter.format(record))

        self.assertEqual(log_data['exception']['type'], 'ValueError')
        self.assertEqual(log_data['exception']['message'], 'Test exception')
        self.assertIsInstance(log_data['exception']['traceback'], list)


class TestCommandTimer(unittest.TestCase):
    """Test command timing and its summary."""

    def setUp(self):
        self.timer = CommandTimer(capacity=5)

    def test_successful_command(self):
        with self.timer.measure("status"):
            pass

        stats = self.timer.summary()["status"]
        self.assertEqual(stats["calls"], 1)
        self.assertEqual(stats["failures"], 0)
        self.assertIsNone(stats["last_error"])
        self.assertGreaterEqual(stats["avg_ms"], 0)
        self.assertGreaterEqual(stats["max_ms"], stats["avg_ms"])

    def test_failure_is_recorded_and_reraised(self):
        with self.assertRaises(RuntimeError):
            with self.timer.measure("start"):
                raise RuntimeError("boom")

        self.assertFalse(self.timer.timings[-1].success)
        stats = self.timer.summary()["start"]
        self.assertEqual(stats["failures"], 1)
        self.assertEqual(stats["last_error"], "boom")

    def test_only_recent_timings_are_kept(self):
        for _ in range(3):
            with self.timer.measure("init_ca"):
                pass
        for _ in range(4):
            with self.timer.measure("list_certs"):
                pass

        self.assertEqual(len(self.timer.timings), 5)
        self.assertEqual(self.timer.summary()["init_ca"]["calls"], 1)
        self.assertEqual(self.timer.summary()["list_certs"]["calls"], 4)

    def test_empty_summary(self):
        self.assertEqual(self.timer.summary(), {})


class TestLoggingService(unittest.TestCase):
    """Test logging service setup."""

    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.log_file = os.path.join(self.temp_dir.name, "logs", "manager.log")
        self.settings = ManagerSettings(log_level="DEBUG", log_file_path=self.log_file)

    def tearDown(self):
        root_logger = logging.getLogger()
        for handler in root_logger.handlers[:]:
            handler.close()
            root_logger.removeHandler(handler)
        self.temp_dir.cleanup()

    def test_file_logging(self):
        """Records are written as JSON lines; errors also go to the error log."""
        service = LoggingService(self.settings, console=False)
        logging.getLogger("wezterm_manager.test").error("disk full")
        for handler in logging.getLogger().handlers:
            handler.flush()

        with open(self.log_file) as f:
            messages = [json.loads(line)['message'] for line in f]
        self.assertIn("disk full", messages)
        self.assertIn("Logging service initialized", messages)

        with open(os.path.join(self.temp_dir.name, "logs", "manager.errors.log")) as f:
            self.assertIn("disk full", f.read())
        self.assertEqual(logging.getLogger().level, logging.DEBUG)
        self.assertIsInstance(service.command_timer, CommandTimer)

    def test_handlers_replaced_on_setup(self):
        LoggingService(self.settings, console=True)
        LoggingService(self.settings, console=True)
        self.assertEqual(len(logging.getLogger().handlers), 3)

    def test_command_timing_is_logged(self):
        """Timings are summarized and written to the JSON log at debug level."""
        service = LoggingService(self.settings, console=False)
        with service.measure_command("init_ca"):
            pass
        for handler in logging.getLogger().handlers:
            handler.flush()

        self.assertEqual(service.command_stats()["init_ca"]["calls"], 1)
        with open(self.log_file) as f:
            timings = [json.loads(line).get("command_timing") for line in f]
        self.assertIn("init_ca", [t["command"] for t in timings if t])


if __name__ == '__main__':
    unittest.main()
