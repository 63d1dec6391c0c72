"""
Tests for the command-line interface.
"""

import json
import os
from unittest.mock import AsyncMock, Mock, patch

import pytest
from click.testing import CliRunner

from timeline_archiver import __version__
from timeline_archiver.cli import main
from timeline_archiver.commands import run_sync
from timeline_archiver.exceptions import ManifestError
from timeline_archiver.models import AccountStatus, MediaKind
from timeline_archiver.orchestrator import AccountResult, SyncReport


@pytest.fixture
def runner():
    """Create a CLI test runner."""
    return CliRunner()


@pytest.fixture
def clean_env():
    """Run with an empty environment and no .env file."""
    with patch.dict(os.environ, {}, clear=True):
        with patch("timeline_archiver.config.load_dotenv"):
            yield


@pytest.fixture
def mock_run_sync():
    with patch("timeline_archiver.cli.run_sync", new_callable=AsyncMock) as mocked:
        mocked.return_value = 0
        yield mocked


class TestCLIBasics:
    """Test basic CLI functionality."""

    def test_help(self, runner):
        result = runner.invoke(main, ['--help'])

        assert result.exit_code == 0
        assert 'Timeline Archiver' in result.output
        assert 'sync' in result.output

    def test_version(self, runner):
        result = runner.invoke(main, ['--version'])

        assert result.exit_code == 0
        assert __version__ in result.output

    def test_sync_help(self, runner):
        result = runner.invoke(main, ['sync', '--help'])

        assert result.exit_code == 0
        for option in ('--users', '--list', '--auth', '--out', '--photos', '--rescan'):
            assert option in result.output


class TestSyncCommand:
    """Test the sync command."""

    def test_sync_builds_config(self, runner, clean_env, mock_run_sync, tmp_path):
        """Test options end up in the configuration passed to the run."""
        result = runner.invoke(main, [
            'sync', '--users', 'Alice,@bob', '--token', 'cli-token',
            '--out', str(tmp_path / 'archive'), '--concurrency', '4', '--rescan',
        ])

        assert result.exit_code == 0, result.output
        config = mock_run_sync.call_args[0][0]
        assert config.accounts == ['alice', 'bob']
        assert config.bearer_token == 'cli-token'
        assert config.output_dir == tmp_path / 'archive'
        assert config.concurrency == 4
        assert config.rescan is True
        assert config.retry_failed is True
        assert config.enabled_kinds == frozenset(MediaKind)

    def test_kind_flags_select_kinds(self, runner, clean_env, mock_run_sync):
        """Test giving some kind flags archives only those kinds."""
        result = runner.invoke(main, ['sync', '-u', 'alice', '--token', 't', '--photos', '--gifs'])

        assert result.exit_code == 0, result.output
        config = mock_run_sync.call_args[0][0]
        assert config.enabled_kinds == {MediaKind.PHOTO, MediaKind.ANIMATED_GIF}

    def test_auth_and_list_files(self, runner, clean_env, mock_run_sync, tmp_path):
        """Test the token and accounts come from files."""
        auth = tmp_path / 'auth.json'
        auth.write_text(json.dumps({'bearer_token': 'file-token'}))
        accounts = tmp_path / 'accounts.txt'
        accounts.write_text('alice\n# paused\nbob\n')

        result = runner.invoke(main, [
            'sync', '--auth', str(auth), '--list', str(accounts), '--no-retry-failed',
        ])

        assert result.exit_code == 0, result.output
        config = mock_run_sync.call_args[0][0]
        assert config.bearer_token == 'file-token'
        assert config.accounts == ['alice', 'bob']
        assert config.retry_failed is False

    def test_env_token(self, runner, mock_run_sync):
        """Test the token is read from the environment."""
        with patch.dict(os.environ, {'TWITTER_BEARER_TOKEN': 'env-token'}, clear=True):
            with patch("timeline_archiver.config.load_dotenv"):
                result = runner.invoke(main, ['sync', '-u', 'alice'])

        assert result.exit_code == 0, result.output
        assert mock_run_sync.call_args[0][0].bearer_token == 'env-token'

    def test_missing_token(self, runner, clean_env, mock_run_sync):
        result = runner.invoke(main, ['sync', '-u', 'alice'])

        assert result.exit_code == 1
        assert 'Configuration Error' in result.output
        assert 'bearer_token is required' in result.output
        mock_run_sync.assert_not_called()

    def test_invalid_username(self, runner, clean_env, mock_run_sync):
        result = runner.invoke(main, ['sync', '-u', 'no-dashes-allowed', '--token', 't'])

        assert result.exit_code == 1
        assert 'invalid username' in result.output

    def test_invalid_policy_rejected(self, runner, clean_env, mock_run_sync):
        result = runner.invoke(main, [
            'sync', '-u', 'alice', '--token', 't', '--file-exists-policy', 'skip',
        ])

        assert result.exit_code == 2
        mock_run_sync.assert_not_called()

    @pytest.mark.parametrize("code", [0, 1, 2, 3])
    def test_exit_code_passed_through(self, runner, clean_env, mock_run_sync, code):
        mock_run_sync.return_value = code

        result = runner.invoke(main, ['sync', '-u', 'alice', '--token', 't'])

        assert result.exit_code == code

    def test_keyboard_interrupt(self, runner, clean_env, mock_run_sync):
        """Test an interrupted run exits with 130."""
        def interrupted(coro):
            coro.close()
            raise KeyboardInterrupt

        with patch('timeline_archiver.cli.asyncio.run', side_effect=interrupted):
            result = runner.invoke(main, ['sync', '-u', 'alice', '--token', 't'])

        assert result.exit_code == 130
        assert 'interrupted' in result.output


class TestConfigCommand:
    """Test the config command."""

    def test_config_defaults(self, runner, clean_env):
        result = runner.invoke(main, ['config'])

        assert result.exit_code == 0
        assert 'Bearer token: ❌ Not set' in result.output
        assert 'output_dir: archive (default)' in result.output

    def test_config_masks_token(self, runner):
        env = {'TWITTER_BEARER_TOKEN': 'AAAA-secret-token-ZZZZ', 'TIMELINE_CONCURRENCY': '7'}
        with patch.dict(os.environ, env, clear=True):
            with patch("timeline_archiver.config.load_dotenv"):
                result = runner.invoke(main, ['config', '--verbose'])

        assert result.exit_code == 0
        assert 'AAAA...ZZZZ' in result.output
        assert 'secret' not in result.output
        assert 'concurrency: 7 (environment)' in result.output

    def test_config_invalid_env(self, runner):
        with patch.dict(os.environ, {'TIMELINE_MAX_RETRIES': 'lots'}, clear=True):
            with patch("timeline_archiver.config.load_dotenv"):
                result = runner.invoke(main, ['config'])

        assert result.exit_code == 1
        assert 'Invalid integer' in result.output


class TestRunSync:
    """Test the sync command implementation."""

    @pytest.mark.asyncio
    async def test_returns_report_exit_code(self, sample_config, capsys):
        report = SyncReport([
            AccountResult('alice', AccountStatus.PARTIAL, new_posts=3, media_failed=1),
        ])
        orchestrator = Mock()
        orchestrator.run = AsyncMock(return_value=report)

        with patch('timeline_archiver.commands.setup_logging'), \
                patch('timeline_archiver.commands.SyncOrchestrator', return_value=orchestrator):
            code = await run_sync(sample_config)

        assert code == 2
        output = capsys.readouterr().out
        assert 'Sync Summary' in output
        assert '1 failed media download(s)' in output

    @pytest.mark.asyncio
    async def test_fatal_error_returns_failure(self, sample_config, capsys):
        orchestrator = Mock()
        orchestrator.run = AsyncMock(side_effect=ManifestError('Failed to save manifest'))

        with patch('timeline_archiver.commands.setup_logging'), \
                patch('timeline_archiver.commands.SyncOrchestrator', return_value=orchestrator):
            code = await run_sync(sample_config)

        assert code == 1
        assert 'Sync aborted' in capsys.readouterr().err
