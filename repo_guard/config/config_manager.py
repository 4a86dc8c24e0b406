"""Configuration management for the repository guard."""

import copy
import os
import yaml
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..core.models import RetentionPolicy
from .config_validator import ConfigValidator


DEFAULT_BACKUP_SETS = {
    'sensitive_configs': {
        'description': 'Sensitive configuration files',
        'paths': ['~/.ssh', '~/.aws', '~/.config/gh', '~/.gitconfig', '~/.env*'],
        'exclude_patterns': ['*.log', '*.tmp', '.DS_Store', 'known_hosts'],
        'encryption': True,
        'compression': True,
    },
    'development_secrets': {
        'description': 'Development environment secrets',
        'paths': ['~/GitHub/*/.env*', '~/GitHub/*/config/secrets*', '~/GitHub/*/keys',
                  '~/GitHub/*/.secrets'],
        'exclude_patterns': ['node_modules', '.git', '*.log'],
        'encryption': True,
        'compression': True,
    },
    'certificates': {
        'description': 'SSL certificates and keys',
        'paths': ['~/.ssl', '~/certificates', '~/*.pem', '~/*.key', '~/*.crt'],
        'exclude_patterns': [],
        'encryption': True,
        'compression': False,
    },
}


class ConfigManager:
    """Manages configuration loading and validation for repository guard runs."""

    DEFAULT_CONFIG_LOCATIONS = [
        "config.yaml",
        "config.yml",
        os.path.expanduser("~/.repo-guard/config.yaml"),
        os.path.expanduser("~/.repo-guard/config.yml"),
        "/etc/repo-guard/config.yaml",
        "/etc/repo-guard/config.yml"
    ]

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration manager.

        Args:
            config_path: Optional path to config file. If not provided,
                        will search in default locations.
        """
        self.config_path = config_path
        self.config_data: Dict[str, Any] = {}
        self.validator = ConfigValidator()

    def load_config(self) -> Dict[str, Any]:
        """Load configuration from file.

        Returns:
            Dictionary containing configuration data.

        Raises:
            FileNotFoundError: If config file cannot be found.
            ValueError: If config file is invalid.
        """
        config_file = self._find_config_file()

        try:
            with open(config_file, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in config file {config_file}: {e}")
        except OSError as e:
            raise ValueError(f"Error reading config file {config_file}: {e}")

        return self.load_dict(data)

    def load_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Validate an already-parsed configuration and apply defaults."""
        self.validator.validate(data)
        self.config_data = data
        self._set_defaults()
        return self.config_data

    def _find_config_file(self) -> str:
        if self.config_path:
            if os.path.exists(self.config_path):
                return self.config_path
            else:
                raise FileNotFoundError(f"Config file not found: {self.config_path}")

        for location in self.DEFAULT_CONFIG_LOCATIONS:
            if os.path.exists(location):
                return location

        raise FileNotFoundError(
            f"Configuration file not found in any of these locations:\n" +
            "\n".join(f"  - {loc}" for loc in self.DEFAULT_CONFIG_LOCATIONS) +
            "\n\nPlease copy config.example.yaml to config.yaml and customize it."
        )

    def _set_defaults(self):
        """Set default values for optional configuration parameters."""
        self.config_data.setdefault('state_dir', '~/.repo-guard')
        state_dir = self.config_data['state_dir']

        defaults = {
            'git': {
                'auto_commit_branches': ['main', 'master', 'develop', 'dev'],
                'max_backup_branches': 10,
                'inactivity_days': 30,
                'timeout_seconds': 120,
                'network_timeout_seconds': 60,
                'max_depth': 6,
                'author_name': None,
                'author_email': None,
            },
            'security': {
                'history_depth': 10,
                'large_file_mb': 10,
                'max_scan_file_mb': 5,
                'exclude_dirs': ['.git', 'node_modules', '.venv', 'venv', '__pycache__'],
                'exclude_files': ['*.log', '*.tmp'],
                'extra_patterns': [],
                'dependency_timeout_seconds': 120,
                'quarantine_dir': f'{state_dir}/quarantine',
            },
            'archive': {
                'directory': f'{state_dir}/archives',
                'key_file': '~/.local/keys/backup-key.txt',
                'temp_dir': None,
                'retention': {'daily': 7, 'weekly': 4, 'monthly': 12},
                'backup_sets': copy.deepcopy(DEFAULT_BACKUP_SETS),
            },
            'concurrency': {
                'workers': 4,
            },
            'logging': {
                'level': 'INFO',
                'file': f'{state_dir}/logs/repo-guard.log',
                'max_size_mb': 10,
                'backup_count': 5
            },
            'reports': {
                'directory': f'{state_dir}/reports',
                'save_local': True,
                'retention_days': 30,
                'status_records': True,
            }
        }

        # Merge defaults with existing config
        for section, section_defaults in defaults.items():
            if section not in self.config_data:
                self.config_data[section] = {}
            for key, value in section_defaults.items():
                if key not in self.config_data[section]:
                    self.config_data[section][key] = value

        retention = self.config_data['archive']['retention']
        for key, value in defaults['archive']['retention'].items():
            retention.setdefault(key, value)
        if not self.config_data['archive']['backup_sets']:
            self.config_data['archive']['backup_sets'] = copy.deepcopy(DEFAULT_BACKUP_SETS)

    def get_search_roots(self) -> List[str]:
        return [os.path.expanduser(root) for root in self.config_data.get('search_roots', [])]

    def get_state_dir(self) -> Path:
        return Path(self.config_data.get('state_dir', '~/.repo-guard')).expanduser()

    def get_git_config(self) -> Dict[str, Any]:
        return self.config_data.get('git', {})

    def get_security_config(self) -> Dict[str, Any]:
        return self.config_data.get('security', {})

    def get_archive_config(self) -> Dict[str, Any]:
        return self.config_data.get('archive', {})

    def get_backup_sets(self) -> Dict[str, Dict[str, Any]]:
        return self.get_archive_config().get('backup_sets', {})

    def get_retention_policy(self) -> RetentionPolicy:
        """Combine branch keep-count and archive retention tiers."""
        retention = self.get_archive_config().get('retention', {})
        return RetentionPolicy(
            keep_count=self.get_git_config().get('max_backup_branches', 10),
            daily=retention.get('daily', 7),
            weekly=retention.get('weekly', 4),
            monthly=retention.get('monthly', 12),
        )

    def get_concurrency_config(self) -> Dict[str, Any]:
        return self.config_data.get('concurrency', {})

    def get_email_config(self) -> Dict[str, Any]:
        """Get email configuration.

        Returns:
            Email configuration dictionary, empty when notifications only log.
        """
        return self.config_data.get('email', {})

    def get_logging_config(self) -> Dict[str, Any]:
        return self.config_data.get('logging', {})

    def get_reports_config(self) -> Dict[str, Any]:
        return self.config_data.get('reports', {})
