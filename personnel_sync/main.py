"""
Main orchestrator for Personnel Sync.

Loads the configuration, builds the source and destination adapters named
in it, and runs one reconciliation per sync set. Results of all sets are
aggregated into a single summary and, when configured, an email alert.
"""

import sys
import json
import time
import inspect
import logging
import argparse
import importlib
from datetime import datetime
from typing import Dict, Any, List, Optional
from personnel_sync.config import (
    load_config, sync_sets_from_config, ConfigurationError, VERBOSITY_MEDIUM
)
from personnel_sync.logging_setup import setup_logging
from personnel_sync.models import ChangeResults, attribute_mappings_from_config
from personnel_sync.event_log import EventLog
from personnel_sync.sync import sync_people
from personnel_sync.sources.base import Source
from personnel_sync.destinations.base import Destination
from personnel_sync.notifications import (
    send_failure_notification,
    send_sync_errors_notification,
    send_success_summary,
    test_notification_config,
)

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_SYNC_ERRORS = 1
EXIT_CONFIG_ERROR = 2
EXIT_UNEXPECTED_ERROR = 4

ADAPTER_PACKAGES = {
    'source': ('personnel_sync.sources', Source),
    'destination': ('personnel_sync.destinations', Destination),
}


class SyncError(Exception):
    """Raised when a run cannot be set up, e.g. an adapter cannot be loaded."""
    pass


def load_adapter(kind: str, adapter_config: Dict[str, Any]):
    """
    Import the adapter module named by adapter_config['type'] and instantiate it.

    The first concrete Source or Destination subclass defined in the module
    is used.

    Raises:
        SyncError: If the module cannot be imported or holds no adapter class
    """
    package, base_class = ADAPTER_PACKAGES[kind]
    adapter_type = adapter_config['type']
    module_name = f"{package}.{adapter_type}"

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise SyncError(f"Failed to import {kind} module {adapter_type}: {e}")

    adapter_class = None
    for _, attr in inspect.getmembers(module, inspect.isclass):
        if (issubclass(attr, base_class) and
                attr.__module__ == module.__name__ and
                not inspect.isabstract(attr)):
            adapter_class = attr
            break

    if adapter_class is None:
        raise SyncError(f"No {base_class.__name__} subclass found in module {module_name}")

    try:
        return adapter_class(adapter_config)
    except Exception as e:
        raise SyncError(f"Failed to initialize {kind} {adapter_type}: {e}") from e


class SyncOrchestrator:
    """
    Runs every configured sync set from one source into one destination.

    Errors in one sync set are collected and reported; the remaining sets
    still run.
    """

    def __init__(self, config_path: Optional[str] = None, dry_run: Optional[bool] = None):
        """
        Args:
            config_path: YAML configuration file; $CONFIG_PATH or config.yaml when None
            dry_run: Overrides runtime.dry_run from the configuration when not None
        """
        self.config = None
        self.config_path = config_path
        self.dry_run_override = dry_run
        self.source = None
        self.destination = None

        self.totals = ChangeResults()
        self.set_results = {}
        self.set_errors = {}
        self.runtime_seconds = 0.0

    @property
    def dry_run(self) -> bool:
        if self.dry_run_override is not None:
            return self.dry_run_override
        return bool(self.config.get('runtime', {}).get('dry_run', False))

    @property
    def verbosity(self) -> int:
        return self.config.get('runtime', {}).get('verbosity', VERBOSITY_MEDIUM)

    def run(self) -> int:
        """
        Reconcile every sync set and send the configured alerts.

        Returns:
            Exit code: 0 success, 1 sync set errors, 2 configuration error,
            4 unexpected error
        """
        start = time.monotonic()
        try:
            self._load_configuration()
            setup_logging(self.config.get('logging', {}))

            mode = " (dry run)" if self.dry_run else ""
            logger.info(f"Starting Personnel Sync{mode}")

            self.source = self._load_adapter('source')
            self.destination = self._load_adapter('destination')

            attribute_map = attribute_mappings_from_config(self.config['attribute_map'])

            for sync_set in sync_sets_from_config(self.config):
                self._process_sync_set(sync_set, attribute_map)

            self.runtime_seconds = time.monotonic() - start
            self._log_sync_summary()

            if self.set_errors:
                self._send_sync_errors_notification()
                logger.warning(f"Sync completed with errors in {len(self.set_errors)} sync set(s)")
                return EXIT_SYNC_ERRORS

            self._send_success_notification()
            logger.info("Sync completed successfully")
            return EXIT_OK

        except ConfigurationError as e:
            logger.error(f"Configuration error: {e}")
            return EXIT_CONFIG_ERROR
        except SyncError as e:
            logger.error(f"Sync setup failed: {e}")
            self._send_failure_notification("Sync Setup Failed", str(e))
            return EXIT_UNEXPECTED_ERROR
        except Exception as e:
            logger.error(f"Unexpected error: {e}", exc_info=True)
            self._send_failure_notification("Sync Failed", f"Unexpected error: {e}")
            return EXIT_UNEXPECTED_ERROR
        finally:
            self._cleanup()

    def _load_configuration(self):
        if self.config is None:
            self.config = load_config(self.config_path)

    def _load_adapter(self, kind: str):
        adapter_config = dict(self.config[kind])
        adapter_config.setdefault('error_handling', self.config.get('error_handling', {}))
        return load_adapter(kind, adapter_config)

    def _process_sync_set(self, sync_set: Dict[str, Any], attribute_map) -> None:
        set_name = sync_set.get('name', '')
        label = set_name or 'default'
        logger.info(f"Processing sync set: {label}")

        event_log = EventLog()
        try:
            self.source.for_set(sync_set.get('source'))
            self.destination.for_set(sync_set.get('destination'))
            results = sync_people(self.source, self.destination, attribute_map,
                                  self.dry_run, event_log)
        except Exception as e:
            logger.error(f"Sync set {label} failed: {e}", exc_info=True)
            results = ChangeResults(errors=[str(e)])

        events = self._flush_events(event_log)
        errors = list(results.errors)
        errors.extend(item.message for item in events if item.level >= logging.ERROR)

        self.totals.merge(results)
        self.set_results[set_name] = results
        if errors:
            self.set_errors[set_name] = errors
            for error in results.errors:
                logger.error(f"Sync set {label}: {error}")

        logger.info(f"Sync set {label}: {results.created} created, {results.updated} updated, "
                    f"{results.deleted} deleted, {len(errors)} error(s)")

    def _flush_events(self, event_log: EventLog) -> List:
        success_level = logging.INFO if self.verbosity >= VERBOSITY_MEDIUM else logging.DEBUG
        return event_log.flush_to_logger(logger, success_level=success_level)

    def _sync_stats(self) -> Dict[str, Any]:
        return {
            'runtime_seconds': self.runtime_seconds,
            'dry_run': self.dry_run,
            'totals': self.totals.to_dict(),
            'sets': {name: results.to_dict() for name, results in self.set_results.items()},
        }

    def _log_sync_summary(self):
        logger.info(f"Run finished in {self.runtime_seconds:.2f}s: "
                    f"{len(self.set_results)} sync set(s), {len(self.set_errors)} with errors")
        logger.info(f"Totals: {self.totals.created} created, {self.totals.updated} updated, "
                    f"{self.totals.deleted} deleted")

    def _send_failure_notification(self, title: str, error_message: str):
        if not self.config:
            return
        send_failure_notification(title, error_message, self.config.get('notifications', {}))

    def _send_sync_errors_notification(self):
        send_sync_errors_notification(self.set_errors, self.config.get('notifications', {}))

    def _send_success_notification(self):
        send_success_summary(self._sync_stats(), self.config.get('notifications', {}))

    def health_check(self) -> Dict[str, Any]:
        """
        Load the configuration and build both adapters without syncing.

        Returns a report with an overall 'status' ('healthy' or 'unhealthy')
        and one pass/fail/skip entry per check.
        """
        checks = {}
        report = {'status': 'healthy', 'timestamp': datetime.now().isoformat(), 'checks': checks}

        def record(name, status, message):
            checks[name] = {'status': status, 'message': message}
            if status == 'fail':
                report['status'] = 'unhealthy'

        try:
            self._load_configuration()
        except ConfigurationError as e:
            record('configuration', 'fail', f"Configuration error: {e}")
            return report
        record('configuration', 'pass', f"Loaded {self.config_path or 'default configuration'}")

        for kind in ADAPTER_PACKAGES:
            try:
                self._load_adapter(kind).close()
            except SyncError as e:
                record(kind, 'fail', str(e))
            else:
                record(kind, 'pass', f"{self.config[kind]['type']} adapter ready")

        notifications = self.config.get('notifications', {})
        if not notifications.get('enable_email', False):
            record('notifications', 'skip', "Email notifications disabled")
        else:
            missing = [f for f in ('smtp_server', 'email_from', 'email_to') if not notifications.get(f)]
            if missing:
                record('notifications', 'fail', f"Missing notification settings: {', '.join(missing)}")
            else:
                record('notifications', 'pass', "Email settings complete")

        return report

    def _cleanup(self):
        for adapter in (self.source, self.destination):
            if adapter is not None:
                adapter.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='personnel-sync',
        description='Reconcile a destination directory of people against a source')
    parser.add_argument('--config', '-c', help='Path to configuration file (default $CONFIG_PATH or config.yaml)')
    parser.add_argument('--dry-run', action='store_true', default=None,
                        help='Report planned changes without applying them')
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument('--health-check', action='store_true',
                      help='Check configuration and adapters, print a JSON report and exit')
    mode.add_argument('--test-email', action='store_true',
                      help='Send a test alert with the configured SMTP settings and exit')
    return parser


def main(argv: Optional[List[str]] = None):
    args = build_parser().parse_args(argv)
    orchestrator = SyncOrchestrator(config_path=args.config, dry_run=args.dry_run)

    if args.health_check:
        report = orchestrator.health_check()
        print(json.dumps(report, indent=2))
        sys.exit(EXIT_OK if report['status'] == 'healthy' else EXIT_SYNC_ERRORS)

    if args.test_email:
        try:
            orchestrator._load_configuration()
        except ConfigurationError as e:
            print(f"Cannot send test email: {e}")
            sys.exit(EXIT_CONFIG_ERROR)
        sent = test_notification_config(orchestrator.config.get('notifications', {}))
        print("Test email sent" if sent else "Test email failed, see log for details")
        sys.exit(EXIT_OK if sent else EXIT_SYNC_ERRORS)

    sys.exit(orchestrator.run())


if __name__ == "__main__":
    main()
