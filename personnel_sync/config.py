"""
Configuration loading for Personnel Sync.

The run is described by one YAML file: source and destination adapter
settings, the attribute map, sync sets and the ambient sections
(runtime, logging, error_handling, notifications). Secrets may come from
environment variables instead of the file.
"""

import os
import yaml
import logging
from typing import Dict, Any, List, Optional

logger = logging.getLogger(__name__)

VERBOSITY_LOW = 0
VERBOSITY_MEDIUM = 5
VERBOSITY_HIGH = 10

# Optional sections and the values filled in when a key is absent
SECTION_DEFAULTS = {
    'runtime': {'dry_run': False, 'verbosity': VERBOSITY_MEDIUM},
    'logging': {'level': 'INFO', 'log_dir': 'logs', 'rotation': 'daily', 'retention_days': 7},
    'error_handling': {'max_retries': 3, 'retry_wait_seconds': 5},
    'notifications': {
        'enable_email': True,
        'email_on_failure': True,
        'email_on_success': False,
        'smtp_port': 587,
        'smtp_tls': True,
    },
}
DESTINATION_SWITCHES = ('disable_add', 'disable_update', 'disable_delete')


class ConfigurationError(Exception):
    """The configuration file is missing, unreadable or invalid."""
    pass


class ConfigLoader:
    """
    Loads, validates and completes a configuration file.

    The path defaults to $CONFIG_PATH, then ``config.yaml``.
    """

    # dotted config path -> environment variable
    ENV_OVERRIDES = {
        'source.auth.password': 'SOURCE_PASSWORD',
        'destination.auth.password': 'DESTINATION_PASSWORD',
        'source.bind_password': 'LDAP_BIND_PASSWORD',
        'notifications.smtp_password': 'SMTP_PASSWORD',
    }

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = config_path or os.getenv('CONFIG_PATH', 'config.yaml')
        self.config = {}

    def load(self) -> Dict[str, Any]:
        """
        Read the file, apply environment overrides, validate and fill defaults.

        Raises:
            ConfigurationError: on a missing file, bad YAML or failed validation
        """
        try:
            with open(self.config_path, 'r') as f:
                parsed = yaml.safe_load(f)
        except FileNotFoundError:
            raise ConfigurationError(f"Configuration file not found: {self.config_path}")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {self.config_path}: {e}")

        if not isinstance(parsed, dict):
            raise ConfigurationError(f"Configuration file {self.config_path} must contain a mapping")
        self.config = parsed

        self._apply_env_overrides()
        self._validate()
        self._apply_defaults()

        logger.info(f"Loaded configuration from {self.config_path}")
        return self.config

    def _apply_env_overrides(self):
        for dotted, env_var in self.ENV_OVERRIDES.items():
            value = os.getenv(env_var)
            if not value:
                continue
            *parents, leaf = dotted.split('.')
            node = self.config
            for key in parents:
                if not isinstance(node.get(key), dict):
                    node[key] = {}
                node = node[key]
            node[leaf] = value
            logger.debug(f"{dotted} taken from ${env_var}")

    def _validate(self):
        """Collect every problem, then raise once listing them all."""
        problems = []
        problems.extend(self._adapter_problems())
        problems.extend(self._attribute_map_problems())
        problems.extend(self._sync_set_problems())

        verbosity = (self.config.get('runtime') or {}).get('verbosity')
        if verbosity is not None and not isinstance(verbosity, int):
            problems.append("runtime.verbosity must be an integer")

        if problems:
            details = "\n".join(f"  - {problem}" for problem in problems)
            raise ConfigurationError(f"Configuration validation failed:\n{details}")

    def _adapter_problems(self) -> List[str]:
        problems = []
        for section in ('source', 'destination'):
            adapter = self.config.get(section)
            if not isinstance(adapter, dict):
                problems.append(f"Missing required section: {section}")
            elif not adapter.get('type'):
                problems.append(f"Missing required field: {section}.type")
        return problems

    def _attribute_map_problems(self) -> List[str]:
        attribute_map = self.config.get('attribute_map')
        if not isinstance(attribute_map, list) or not attribute_map:
            return ["attribute_map must list at least one attribute"]

        problems = []
        for i, entry in enumerate(attribute_map):
            if not isinstance(entry, dict):
                problems.append(f"attribute_map[{i}] must be a mapping")
                continue
            problems.extend(f"Missing required field attribute_map[{i}].{side}"
                            for side in ('source', 'destination') if not entry.get(side))
        return problems

    def _sync_set_problems(self) -> List[str]:
        sync_sets = self.config.get('sync_sets') or []
        if not isinstance(sync_sets, list):
            return ["sync_sets must be a list"]
        return [f"Missing name for sync_sets[{i}]" for i, sync_set in enumerate(sync_sets)
                if not isinstance(sync_set, dict) or not sync_set.get('name')]

    def _apply_defaults(self):
        for section, defaults in SECTION_DEFAULTS.items():
            # an empty YAML section parses as None
            values = self.config[section] = self.config.get(section) or {}
            for key, value in defaults.items():
                values.setdefault(key, value)

        for switch in DESTINATION_SWITCHES:
            self.config['destination'].setdefault(switch, False)

        for entry in self.config['attribute_map']:
            entry.setdefault('required', False)
            entry.setdefault('case_sensitive', False)

        self.config['sync_sets'] = self.config.get('sync_sets') or []


def sync_sets_from_config(config: Dict[str, Any]) -> List[Dict[str, Any]]:
    """The configured sync sets; a single unnamed set when none are listed."""
    return config.get('sync_sets') or [{'name': ''}]


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    return ConfigLoader(config_path).load()
