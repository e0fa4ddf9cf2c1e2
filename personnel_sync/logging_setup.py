"""
Logging setup for Personnel Sync.

Configures the root logger once per process: a log file rotated at
midnight, optional console output, and a filter that masks secrets
before anything is written.
"""

import os
import re
import glob
import logging
import logging.handlers
from typing import Dict, Any, List
from datetime import datetime, timedelta

LOG_FILE_NAME = 'personnel-sync.log'

FILE_FORMAT = '%(asctime)s [%(levelname)s] %(threadName)s %(name)s:%(lineno)d - %(message)s'
CONSOLE_FORMAT = '%(asctime)s [%(levelname)s] %(message)s'
ROTATING_MODES = ('daily', 'midnight')


def _level(name: Any) -> int:
    return getattr(logging, str(name).upper(), logging.INFO)


class SensitiveDataFilter(logging.Filter):
    """Masks credentials in the fully formatted message of each record."""

    SENSITIVE_KEYWORDS = [
        'password', 'bind_password', 'smtp_password', 'token', 'secret', 'key',
        'apiKey', 'api_key', 'client_secret', 'access_token', 'refresh_token',
        'private_key', 'credential', 'pwd', 'authorization',
    ]

    # key=value, including query strings
    ASSIGNMENT_PATTERNS = [
        re.compile(rf'({keyword}\s*=\s*)[^\s,&}}\]]+', re.IGNORECASE)
        for keyword in SENSITIVE_KEYWORDS
    ]
    # quoted mapping entries, "key": "value"
    JSON_PATTERNS = [
        re.compile(rf'(["\']{keyword}["\']\s*:\s*["\'])[^"\']*(["\'])', re.IGNORECASE)
        for keyword in SENSITIVE_KEYWORDS
    ]
    HEADER_PATTERN = re.compile(r'(Authorization:\s*(?:Bearer|Basic)\s+)[^\s,}\]]+', re.IGNORECASE)

    def scrub(self, msg: str) -> str:
        for pattern in self.ASSIGNMENT_PATTERNS:
            msg = pattern.sub(r'\1****', msg)
        for pattern in self.JSON_PATTERNS:
            msg = pattern.sub(r'\1****\2', msg)
        return self.HEADER_PATTERN.sub(r'\1****', msg)

    def filter(self, record):
        # Arguments are merged first so secrets passed as %s values are caught too
        try:
            rendered = record.getMessage()
        except (TypeError, ValueError):
            rendered = str(record.msg)
        record.msg, record.args = self.scrub(rendered), None
        return True


class LoggingManager:
    """
    Owns the root logger configuration for a run.

    Settings come from the ``logging`` config section: level, log_dir,
    rotation, retention_days, console_output and console_level.
    """

    def __init__(self):
        self.configured = False
        self.log_dir = None
        self.retention_days = 7

    def setup_logging(self, config: Dict[str, Any]) -> None:
        if self.configured:
            return

        settings = config or {}
        file_level = _level(settings.get('level', 'INFO'))
        self.log_dir = settings.get('log_dir', 'logs')
        self.retention_days = settings.get('retention_days', 7)
        console = settings.get('console_output', True)

        self._prepare_log_dir()

        scrubber = SensitiveDataFilter()
        handlers = [(self._create_file_handler(settings.get('rotation', 'daily')),
                     file_level, logging.Formatter(FILE_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))]
        if console:
            handlers.append((logging.StreamHandler(),
                             _level(settings.get('console_level', 'INFO')),
                             logging.Formatter(CONSOLE_FORMAT, datefmt='%H:%M:%S')))

        root = logging.getLogger()
        root.handlers.clear()
        root.setLevel(file_level)
        for handler, level, formatter in handlers:
            handler.setLevel(level)
            handler.setFormatter(formatter)
            handler.addFilter(scrubber)
            root.addHandler(handler)

        # discovery cache warnings are noise for service account use
        logging.getLogger('googleapiclient.discovery_cache').setLevel(logging.ERROR)

        self._cleanup_old_logs()
        self.configured = True

        logging.getLogger(__name__).info(
            f"Logging to {self.log_dir} at {logging.getLevelName(file_level)}, "
            f"keeping {self.retention_days} days, console={console}")

    def _prepare_log_dir(self) -> None:
        if not self.log_dir or os.path.isdir(self.log_dir):
            return
        try:
            os.makedirs(self.log_dir, exist_ok=True)
        except OSError as e:
            # logging is not up yet
            print(f"Warning: cannot create log directory {self.log_dir} ({e}), using current directory")
            self.log_dir = '.'

    def _create_file_handler(self, rotation: str) -> logging.Handler:
        path = os.path.join(self.log_dir, LOG_FILE_NAME)
        if str(rotation).lower() not in ROTATING_MODES:
            return logging.FileHandler(path, encoding='utf-8')

        handler = logging.handlers.TimedRotatingFileHandler(
            filename=path, when='midnight', interval=1,
            backupCount=self.retention_days, encoding='utf-8')
        handler.suffix = '%Y-%m-%d'
        return handler

    def _cleanup_old_logs(self) -> None:
        """Delete rotated files whose mtime is past the retention window."""
        if not self.log_dir or self.retention_days <= 0:
            return

        cutoff = (datetime.now() - timedelta(days=self.retention_days)).timestamp()
        rotated = [f for f in self.get_log_files() if not f.endswith(LOG_FILE_NAME)]

        for path in rotated:
            try:
                if os.path.getmtime(path) < cutoff:
                    os.remove(path)
                    print(f"Removed old log file: {path}")
            except OSError as e:
                print(f"Warning: could not remove old log file {path}: {e}")

    def get_log_files(self) -> List[str]:
        if not self.log_dir:
            return []
        return sorted(glob.glob(os.path.join(self.log_dir, LOG_FILE_NAME + '*')))


_logging_manager = LoggingManager()


def setup_logging(config: Dict[str, Any]) -> None:
    """Configure process logging from the ``logging`` config section."""
    _logging_manager.setup_logging(config)
