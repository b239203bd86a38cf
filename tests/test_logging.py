import logging
import sys
import tempfile
import unittest
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

from docs_indexer.config.models import FileLoggingSettings, LoggingSettings
from docs_indexer.logging import init_logging


class InitLoggingTests(unittest.TestCase):
    def setUp(self) -> None:
        self.root = logging.getLogger()
        self._saved_handlers = list(self.root.handlers)
        self._saved_level = self.root.level
        self._tmp = tempfile.TemporaryDirectory()

    def tearDown(self) -> None:
        for handler in list(self.root.handlers):
            self.root.removeHandler(handler)
            handler.close()
        for handler in self._saved_handlers:
            self.root.addHandler(handler)
        self.root.setLevel(self._saved_level)
        self._tmp.cleanup()

    def test_logs_to_stderr_only_by_default(self) -> None:
        init_logging(LoggingSettings(level="debug"))

        self.assertEqual(self.root.level, logging.DEBUG)
        self.assertEqual(len(self.root.handlers), 1)
        self.assertIs(self.root.handlers[0].stream, sys.stderr)
        self.assertEqual(logging.getLogger("aiohttp.access").level, logging.WARNING)

    def test_file_path_adds_rotating_handler(self) -> None:
        log_path = Path(self._tmp.name) / "logs" / "indexer.log"

        init_logging(LoggingSettings(file=FileLoggingSettings(path=str(log_path))))

        file_handlers = [h for h in self.root.handlers if isinstance(h, TimedRotatingFileHandler)]
        self.assertEqual(len(file_handlers), 1)
        self.assertTrue(log_path.parent.is_dir())

    def test_invalid_level_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            init_logging(LoggingSettings(level="chatty"))


if __name__ == "__main__":
    unittest.main()
