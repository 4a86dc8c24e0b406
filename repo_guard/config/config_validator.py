"""Configuration validation for repository guard."""

from typing import Any, Dict

from ..core.errors import FatalConfigurationError


class ConfigValidator:
    """Validates repository guard configuration.

    Every problem raises ``FatalConfigurationError``, which is also a
    ``ValueError``: a run cannot start on a broken configuration.
    """

    REQUIRED_SECTIONS = ['search_roots']
    REQUIRED_EMAIL_FIELDS = ['smtp_server', 'from_address', 'to_addresses']
    RETENTION_KEYS = ['daily', 'weekly', 'monthly']

    def validate(self, config: Dict[str, Any]) -> None:
        """Validate configuration data.

        Args:
            config: Configuration dictionary to validate.

        Raises:
            FatalConfigurationError: If configuration is invalid.
        """
        if not isinstance(config, dict):
            raise FatalConfigurationError("Configuration must be a mapping")

        self._validate_structure(config)
        self._validate_search_roots(config['search_roots'])

        if 'git' in config:
            self._validate_git_config(config['git'])
        if 'archive' in config:
            self._validate_archive_config(config['archive'])
        if 'concurrency' in config:
            self._validate_positive_int(config['concurrency'], 'workers', 'concurrency')
        if 'email' in config:
            self._validate_email_config(config['email'])

    def _validate_structure(self, config: Dict[str, Any]) -> None:
        missing_sections = [section for section in self.REQUIRED_SECTIONS if section not in config]
        if missing_sections:
            raise FatalConfigurationError(f"Missing required configuration sections: {missing_sections}")

        for section in ['git', 'security', 'archive', 'concurrency', 'logging', 'reports', 'email']:
            if section in config and not isinstance(config[section], dict):
                raise FatalConfigurationError(f"Configuration section '{section}' must be a mapping")

    def _validate_search_roots(self, roots: Any) -> None:
        if not isinstance(roots, list) or not roots:
            raise FatalConfigurationError("search_roots must be a non-empty list of directories")
        for i, root in enumerate(roots):
            if not isinstance(root, str) or not root.strip():
                raise FatalConfigurationError(f"search_roots entry {i} must be a non-empty path")

    def _validate_git_config(self, git_config: Dict[str, Any]) -> None:
        branches = git_config.get('auto_commit_branches')
        if branches is not None and (not isinstance(branches, list)
                                     or not all(isinstance(b, str) for b in branches)):
            raise FatalConfigurationError("git.auto_commit_branches must be a list of branch names")

        self._validate_positive_int(git_config, 'max_backup_branches', 'git')
        self._validate_positive_int(git_config, 'timeout_seconds', 'git')
        self._validate_positive_int(git_config, 'network_timeout_seconds', 'git')
        self._validate_non_negative_int(git_config, 'inactivity_days', 'git')

    def _validate_archive_config(self, archive_config: Dict[str, Any]) -> None:
        retention = archive_config.get('retention', {})
        if not isinstance(retention, dict):
            raise FatalConfigurationError("archive.retention must be a mapping")
        for key in self.RETENTION_KEYS:
            self._validate_non_negative_int(retention, key, 'archive.retention')

        backup_sets = archive_config.get('backup_sets', {})
        if not isinstance(backup_sets, dict):
            raise FatalConfigurationError("archive.backup_sets must be a mapping of set name to definition")
        for name, definition in backup_sets.items():
            if not isinstance(definition, dict):
                raise FatalConfigurationError(f"Backup set '{name}' must be a mapping")
            paths = definition.get('paths')
            if not isinstance(paths, list) or not paths:
                raise FatalConfigurationError(f"Backup set '{name}' needs a non-empty 'paths' list")
            excludes = definition.get('exclude_patterns', [])
            if not isinstance(excludes, list):
                raise FatalConfigurationError(f"Backup set '{name}' exclude_patterns must be a list")

    def _validate_email_config(self, email_config: Dict[str, Any]) -> None:
        missing_fields = [field for field in self.REQUIRED_EMAIL_FIELDS if field not in email_config]
        if missing_fields:
            raise FatalConfigurationError(f"Email configuration missing required fields: {missing_fields}")

        if 'smtp_port' in email_config:
            try:
                port = int(email_config['smtp_port'])
            except (ValueError, TypeError):
                port = 0
            if not (1 <= port <= 65535):
                raise FatalConfigurationError(
                    f"Email configuration has invalid SMTP port: {email_config['smtp_port']}")

        to_addresses = email_config.get('to_addresses', [])
        if not isinstance(to_addresses, list) or not to_addresses:
            raise FatalConfigurationError("Email to_addresses must be a non-empty list")

    @staticmethod
    def _validate_positive_int(section: Dict[str, Any], key: str, section_name: str) -> None:
        if key in section:
            value = section[key]
            if isinstance(value, bool) or not isinstance(value, int) or value < 1:
                raise FatalConfigurationError(f"{section_name}.{key} must be a positive integer, got {value!r}")

    @staticmethod
    def _validate_non_negative_int(section: Dict[str, Any], key: str, section_name: str) -> None:
        if key in section:
            value = section[key]
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise FatalConfigurationError(
                    f"{section_name}.{key} must be a non-negative integer, got {value!r}")
