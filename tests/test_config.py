"""Tests for configuration loading and validation."""

import pytest
import yaml

from repo_guard.config.config_manager import DEFAULT_BACKUP_SETS, ConfigManager
from repo_guard.config.config_validator import ConfigValidator
from repo_guard.core.errors import FatalConfigurationError


def minimal(**overrides):
    data = {'search_roots': ['~/projects']}
    data.update(overrides)
    return data


class TestConfigValidator:
    @pytest.fixture
    def validator(self):
        return ConfigValidator()

    def test_minimal_config_is_valid(self, validator):
        validator.validate(minimal())

    @pytest.mark.parametrize("data", [
        {},
        {'search_roots': []},
        {'search_roots': '~/projects'},
        {'search_roots': ['']},
    ])
    def test_search_roots_required(self, validator, data):
        with pytest.raises(FatalConfigurationError):
            validator.validate(data)

    @pytest.mark.parametrize("git_config", [
        {'max_backup_branches': 0},
        {'timeout_seconds': -5},
        {'network_timeout_seconds': 'slow'},
        {'inactivity_days': -1},
        {'auto_commit_branches': 'main'},
        {'max_backup_branches': True},
    ])
    def test_invalid_git_values(self, validator, git_config):
        with pytest.raises(FatalConfigurationError):
            validator.validate(minimal(git=git_config))

    def test_retention_must_be_non_negative(self, validator):
        validator.validate(minimal(archive={'retention': {'daily': 0}}))
        with pytest.raises(FatalConfigurationError):
            validator.validate(minimal(archive={'retention': {'weekly': -1}}))

    def test_backup_set_needs_paths(self, validator):
        with pytest.raises(FatalConfigurationError, match="paths"):
            validator.validate(minimal(archive={'backup_sets': {'empty': {'paths': []}}}))

    def test_section_must_be_mapping(self, validator):
        with pytest.raises(FatalConfigurationError):
            validator.validate(minimal(security=['not', 'a', 'mapping']))

    def test_email_requires_fields_and_valid_port(self, validator):
        with pytest.raises(FatalConfigurationError, match="missing required fields"):
            validator.validate(minimal(email={'smtp_server': 'smtp.example.com'}))
        with pytest.raises(FatalConfigurationError, match="SMTP port"):
            validator.validate(minimal(email={
                'smtp_server': 'smtp.example.com', 'smtp_port': 70000,
                'from_address': 'a@example.com', 'to_addresses': ['b@example.com'],
            }))

    def test_errors_are_value_errors(self, validator):
        with pytest.raises(ValueError):
            validator.validate({'search_roots': []})


class TestConfigManager:
    def test_defaults_are_applied(self):
        manager = ConfigManager()
        config = manager.load_dict(minimal(state_dir='/tmp/guard-state'))

        assert config['git']['auto_commit_branches'] == ['main', 'master', 'develop', 'dev']
        assert config['git']['max_backup_branches'] == 10
        assert config['archive']['backup_sets'] == DEFAULT_BACKUP_SETS
        assert config['archive']['directory'] == '/tmp/guard-state/archives'
        assert config['reports']['directory'] == '/tmp/guard-state/reports'
        assert config['concurrency']['workers'] == 4

    def test_explicit_values_win(self):
        manager = ConfigManager()
        manager.load_dict(minimal(git={'max_backup_branches': 3}, archive={'retention': {'daily': 2}}))
        policy = manager.get_retention_policy()
        assert policy.keep_count == 3
        assert policy.daily == 2
        assert policy.weekly == 4
        assert policy.monthly == 12

    def test_default_sets_are_not_shared(self):
        first = ConfigManager()
        first.load_dict(minimal())
        first.get_backup_sets()['sensitive_configs']['paths'].append('~/extra')
        assert '~/extra' not in DEFAULT_BACKUP_SETS['sensitive_configs']['paths']

    def test_search_roots_are_expanded(self, isolated_git_env):
        manager = ConfigManager()
        manager.load_dict(minimal())
        assert manager.get_search_roots() == [str(isolated_git_env / 'projects')]

    def test_load_yaml_file(self, tmp_path):
        config_file = tmp_path / 'config.yaml'
        config_file.write_text(yaml.safe_dump(minimal(concurrency={'workers': 2})))
        config = ConfigManager(str(config_file)).load_config()
        assert config['concurrency']['workers'] == 2

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            ConfigManager(str(tmp_path / 'absent.yaml')).load_config()

    def test_invalid_yaml(self, tmp_path):
        config_file = tmp_path / 'config.yaml'
        config_file.write_text("search_roots: [unclosed\n")
        with pytest.raises(ValueError, match="Invalid YAML"):
            ConfigManager(str(config_file)).load_config()
