"""
Configuration management for the timeline archiver.

This module handles loading, validation, and merging of configuration from
multiple sources (CLI args, environment variables, config files, the auth
file and account list files).
"""

import json
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, FrozenSet, Iterable, List, Optional

from dotenv import load_dotenv

from .constants import (
    DEFAULT_ACCOUNT_CONCURRENCY,
    DEFAULT_BASE_BACKOFF,
    DEFAULT_CONCURRENCY,
    DEFAULT_MAX_BACKOFF,
    DEFAULT_MAX_RATE_LIMIT_WAIT,
    DEFAULT_MAX_RETRIES,
    DEFAULT_RATE_LIMIT,
    DEFAULT_TIMEOUT,
    FILE_EXISTS_POLICIES,
    MAX_PAGE_SIZE,
    MIN_PAGE_SIZE,
    UPSTREAM_RETRIEVAL_CEILING,
)
from .exceptions import ConfigurationError
from .models import MediaKind

USERNAME_PATTERN = re.compile(r'^[A-Za-z0-9_]{1,15}$')

# Config attribute toggling each media kind
KIND_FIELDS: Dict[MediaKind, str] = {
    MediaKind.PHOTO: 'photos',
    MediaKind.VIDEO: 'videos',
    MediaKind.ANIMATED_GIF: 'animated_gifs',
}

if set(KIND_FIELDS) != set(MediaKind):
    raise RuntimeError("KIND_FIELDS does not cover every MediaKind")


@dataclass
class ArchiverConfig:
    """
    Configuration settings for a sync run.

    Attributes:
        bearer_token: API bearer token
        output_dir: Root directory of the archive
        accounts: Usernames to sync
        photos: Archive photos
        videos: Archive videos
        animated_gifs: Archive animated GIFs
        rescan: Ignore the resume boundary and walk the whole timeline again
        retry_failed: Retry media that failed in earlier runs
        file_exists_policy: "adopt" existing media files or "overwrite" them
        max_posts: Posts retrieved per account (capped at the upstream limit)
        page_size: Posts requested per timeline page
        concurrency: Download workers per account
        account_concurrency: Accounts synced at the same time
        rate_limit: Maximum requests per second
        timeout: API request timeout in seconds, and the stall limit of a
            media transfer (time to connect or between two reads)
        max_retries: Maximum number of retry attempts for failed requests
        base_backoff: Initial backoff time in seconds for exponential backoff
        max_backoff: Maximum backoff time in seconds
        max_rate_limit_wait: Longest honored rate-limit wait in seconds
        verbose: Enable verbose logging output
        log_file: Path to log file for persistent logging
    """

    # Input/Output
    bearer_token: Optional[str] = None
    output_dir: Path = Path('archive')
    accounts: List[str] = field(default_factory=list)

    # Media selection
    photos: bool = True
    videos: bool = True
    animated_gifs: bool = True

    # Behavior
    rescan: bool = False
    retry_failed: bool = True
    file_exists_policy: str = 'adopt'
    max_posts: int = UPSTREAM_RETRIEVAL_CEILING
    page_size: int = MAX_PAGE_SIZE

    # Concurrency and rate limiting
    concurrency: int = DEFAULT_CONCURRENCY
    account_concurrency: int = DEFAULT_ACCOUNT_CONCURRENCY
    rate_limit: float = DEFAULT_RATE_LIMIT
    timeout: float = DEFAULT_TIMEOUT
    max_retries: int = DEFAULT_MAX_RETRIES
    base_backoff: float = DEFAULT_BASE_BACKOFF
    max_backoff: float = DEFAULT_MAX_BACKOFF
    max_rate_limit_wait: float = DEFAULT_MAX_RATE_LIMIT_WAIT

    # Logging
    verbose: bool = False
    log_file: Optional[Path] = None

    def __post_init__(self):
        """Convert string paths to Path objects and normalize accounts."""
        if isinstance(self.output_dir, str):
            self.output_dir = Path(self.output_dir)
        if self.log_file and isinstance(self.log_file, str):
            self.log_file = Path(self.log_file)
        self.accounts = normalize_accounts(self.accounts)

    @property
    def enabled_kinds(self) -> FrozenSet[MediaKind]:
        """Media kinds selected for archiving."""
        return frozenset(
            kind for kind, attr in KIND_FIELDS.items() if getattr(self, attr)
        )

    @property
    def ceiling(self) -> int:
        """Effective per-account retrieval ceiling."""
        return min(self.max_posts, UPSTREAM_RETRIEVAL_CEILING)

    def masked_token(self) -> str:
        """Bearer token safe for display."""
        if not self.bearer_token:
            return "(not set)"
        if len(self.bearer_token) <= 8:
            return "***"
        return f"{self.bearer_token[:4]}...{self.bearer_token[-4:]}"


def normalize_accounts(accounts: Iterable[str]) -> List[str]:
    """
    Clean a list of usernames.

    Strips whitespace and a leading '@', lowercases, drops blanks and
    duplicates while keeping the first occurrence order.
    """
    seen = set()
    result = []
    for account in accounts:
        name = account.strip().lstrip('@').lower()
        if name and name not in seen:
            seen.add(name)
            result.append(name)
    return result


class ConfigLoader:
    """
    Utility class for loading and merging configuration from multiple sources.

    Configuration precedence (highest to lowest):
    1. CLI arguments
    2. Environment variables
    3. Configuration file
    4. Default values
    """

    # Environment variable mapping
    ENV_VAR_MAPPING = {
        'TWITTER_BEARER_TOKEN': 'bearer_token',
        'TIMELINE_OUTPUT_DIR': 'output_dir',
        'TIMELINE_ACCOUNTS': 'accounts',
        'TIMELINE_PHOTOS': 'photos',
        'TIMELINE_VIDEOS': 'videos',
        'TIMELINE_ANIMATED_GIFS': 'animated_gifs',
        'TIMELINE_RESCAN': 'rescan',
        'TIMELINE_RETRY_FAILED': 'retry_failed',
        'TIMELINE_FILE_EXISTS_POLICY': 'file_exists_policy',
        'TIMELINE_MAX_POSTS': 'max_posts',
        'TIMELINE_PAGE_SIZE': 'page_size',
        'TIMELINE_CONCURRENCY': 'concurrency',
        'TIMELINE_ACCOUNT_CONCURRENCY': 'account_concurrency',
        'TIMELINE_RATE_LIMIT': 'rate_limit',
        'TIMELINE_TIMEOUT': 'timeout',
        'TIMELINE_MAX_RETRIES': 'max_retries',
        'TIMELINE_BASE_BACKOFF': 'base_backoff',
        'TIMELINE_MAX_BACKOFF': 'max_backoff',
        'TIMELINE_MAX_RATE_LIMIT_WAIT': 'max_rate_limit_wait',
        'TIMELINE_VERBOSE': 'verbose',
        'TIMELINE_LOG_FILE': 'log_file',
    }

    BOOL_KEYS = ('photos', 'videos', 'animated_gifs', 'rescan', 'retry_failed', 'verbose')
    INT_KEYS = ('max_posts', 'page_size', 'concurrency', 'account_concurrency', 'max_retries')
    FLOAT_KEYS = ('rate_limit', 'timeout', 'base_backoff', 'max_backoff', 'max_rate_limit_wait')
    PATH_KEYS = ('output_dir', 'log_file')

    @staticmethod
    def load_from_env(load_dotenv_file: bool = True) -> Dict[str, Any]:
        """
        Load configuration from environment variables.

        Args:
            load_dotenv_file: Whether to load .env file before reading environment

        Returns:
            Dictionary of configuration values found in environment

        Raises:
            ConfigurationError: If a numeric variable cannot be parsed
        """
        if load_dotenv_file:
            load_dotenv()

        config: Dict[str, Any] = {}

        for env_var, config_key in ConfigLoader.ENV_VAR_MAPPING.items():
            value = os.getenv(env_var)
            if value is None:
                continue

            if config_key in ConfigLoader.BOOL_KEYS:
                config[config_key] = value.lower() in ('true', '1', 'yes', 'on')
            elif config_key in ConfigLoader.INT_KEYS:
                try:
                    config[config_key] = int(value)
                except ValueError:
                    raise ConfigurationError(
                        f"Invalid integer value for {env_var}: {value}"
                    )
            elif config_key in ConfigLoader.FLOAT_KEYS:
                try:
                    config[config_key] = float(value)
                except ValueError:
                    raise ConfigurationError(
                        f"Invalid float value for {env_var}: {value}"
                    )
            elif config_key in ConfigLoader.PATH_KEYS:
                config[config_key] = Path(value)
            elif config_key == 'accounts':
                config[config_key] = parse_account_list(value)
            else:
                config[config_key] = value

        return config

    @staticmethod
    def load_from_file(path: Path) -> Dict[str, Any]:
        """
        Load configuration from a JSON file.

        Args:
            path: Path to configuration file

        Returns:
            Dictionary of configuration values from file

        Raises:
            ConfigurationError: If file doesn't exist or is invalid
        """
        config = _read_json_object(Path(path), "Configuration file")

        for key in ConfigLoader.PATH_KEYS:
            if config.get(key):
                config[key] = Path(config[key])
        if isinstance(config.get('accounts'), str):
            config['accounts'] = parse_account_list(config['accounts'])

        return config

    @staticmethod
    def load_auth_file(path: Path) -> str:
        """
        Read the bearer token from an auth file.

        The file is a JSON object: ``{"bearer_token": "..."}``.

        Raises:
            ConfigurationError: If the file is missing, invalid or has no token
        """
        data = _read_json_object(Path(path), "Auth file")
        token = data.get('bearer_token')
        if not isinstance(token, str) or not token.strip():
            raise ConfigurationError(f"Auth file has no bearer_token: {path}")
        return token.strip()

    @staticmethod
    def load_accounts(
        users: Optional[str] = None,
        list_file: Optional[Path] = None,
    ) -> List[str]:
        """
        Collect usernames from a comma-separated string and a list file.

        The list file holds one username per line; blank lines and lines
        starting with '#' are ignored.

        Raises:
            ConfigurationError: If the list file cannot be read
        """
        accounts: List[str] = []
        if users:
            accounts.extend(parse_account_list(users))

        if list_file:
            list_file = Path(list_file)
            try:
                lines = list_file.read_text(encoding='utf-8').splitlines()
            except OSError as e:
                raise ConfigurationError(f"Cannot read account list {list_file}: {e}")
            accounts.extend(
                line.strip() for line in lines
                if line.strip() and not line.strip().startswith('#')
            )

        return normalize_accounts(accounts)

    @staticmethod
    def load_from_cli_args(args: Dict[str, Any]) -> Dict[str, Any]:
        """
        Parse configuration from CLI arguments.

        Args:
            args: Dictionary of CLI arguments (typically from click)

        Returns:
            Dictionary of configuration values from CLI, None values dropped
        """
        config = {}

        for key, value in args.items():
            if value is None:
                continue
            config_key = key.replace('-', '_')
            if config_key in ConfigLoader.PATH_KEYS:
                config[config_key] = Path(value)
            else:
                config[config_key] = value

        return config

    @staticmethod
    def merge_configs(*configs: Dict[str, Any]) -> Dict[str, Any]:
        """
        Merge multiple configuration dictionaries.

        Later configurations override earlier ones. Typically used to merge
        in order: file config, env vars, CLI args.
        """
        merged = {}

        for config in configs:
            for key, value in config.items():
                # Only override if value is not None
                if value is not None:
                    merged[key] = value

        return merged

    @staticmethod
    def validate(config: ArchiverConfig) -> None:
        """
        Validate configuration values.

        Args:
            config: Configuration object to validate

        Raises:
            ConfigurationError: Listing every failed rule
        """
        errors = []

        if not config.bearer_token:
            errors.append(
                "bearer_token is required (use --auth, --token or the "
                "TWITTER_BEARER_TOKEN environment variable)"
            )

        if not config.accounts:
            errors.append("at least one account is required (use --users or --list)")

        for account in config.accounts:
            if not USERNAME_PATTERN.match(account):
                errors.append(f"invalid username: {account!r}")

        if not config.enabled_kinds:
            errors.append("at least one media kind must be enabled")

        if config.file_exists_policy not in FILE_EXISTS_POLICIES:
            errors.append(
                f"file_exists_policy must be one of {sorted(FILE_EXISTS_POLICIES)}, "
                f"got: {config.file_exists_policy}"
            )

        if config.max_posts < 1:
            errors.append(f"max_posts must be >= 1, got: {config.max_posts}")

        if not MIN_PAGE_SIZE <= config.page_size <= MAX_PAGE_SIZE:
            errors.append(
                f"page_size must be between {MIN_PAGE_SIZE} and {MAX_PAGE_SIZE}, "
                f"got: {config.page_size}"
            )

        if config.concurrency < 1:
            errors.append(f"concurrency must be >= 1, got: {config.concurrency}")

        if config.account_concurrency < 1:
            errors.append(
                f"account_concurrency must be >= 1, got: {config.account_concurrency}"
            )

        if config.rate_limit <= 0:
            errors.append(f"rate_limit must be > 0, got: {config.rate_limit}")

        if config.timeout <= 0:
            errors.append(f"timeout must be > 0, got: {config.timeout}")

        if config.max_retries < 0:
            errors.append(f"max_retries must be >= 0, got: {config.max_retries}")

        if config.base_backoff <= 0:
            errors.append(f"base_backoff must be > 0, got: {config.base_backoff}")

        if config.max_backoff < config.base_backoff:
            errors.append(
                f"max_backoff ({config.max_backoff}) must be >= "
                f"base_backoff ({config.base_backoff})"
            )

        if config.max_rate_limit_wait < 0:
            errors.append(
                f"max_rate_limit_wait must be >= 0, got: {config.max_rate_limit_wait}"
            )

        if config.output_dir.exists() and not config.output_dir.is_dir():
            errors.append(f"output_dir is not a directory: {config.output_dir}")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)


def parse_account_list(value: str) -> List[str]:
    """Split a comma-separated username list."""
    return [part.strip() for part in value.split(',') if part.strip()]


def _read_json_object(path: Path, label: str) -> Dict[str, Any]:
    if not path.exists():
        raise ConfigurationError(f"{label} not found: {path}")

    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in {label.lower()} {path}: {e}")
    except OSError as e:
        raise ConfigurationError(f"Error reading {label.lower()} {path}: {e}")

    if not isinstance(data, dict):
        raise ConfigurationError(f"{label} must contain a JSON object: {path}")
    return data


def load_config(
    cli_args: Optional[Dict[str, Any]] = None,
    config_file: Optional[Path] = None,
    load_env: bool = True,
    auth_file: Optional[Path] = None,
    users: Optional[str] = None,
    list_file: Optional[Path] = None,
    validate: bool = True,
) -> ArchiverConfig:
    """
    Load and validate configuration from all sources.

    This is the main entry point for loading configuration. It merges
    configuration from multiple sources in the correct precedence order.

    Args:
        cli_args: Dictionary of CLI arguments (highest precedence)
        config_file: Path to a JSON configuration file
        load_env: Whether to load from environment variables
        auth_file: Auth file providing the bearer token
        users: Comma-separated usernames
        list_file: File with one username per line
        validate: Whether to validate the result

    Returns:
        ArchiverConfig object

    Raises:
        ConfigurationError: If configuration is invalid

    Example:
        >>> config = load_config(
        ...     cli_args={'output_dir': './archive', 'photos': True},
        ...     auth_file=Path('auth.json'),
        ...     users='alice,bob',
        ... )
    """
    configs_to_merge = []

    if config_file:
        configs_to_merge.append(ConfigLoader.load_from_file(config_file))

    if load_env:
        configs_to_merge.append(ConfigLoader.load_from_env())

    explicit: Dict[str, Any] = {}
    if auth_file:
        explicit['bearer_token'] = ConfigLoader.load_auth_file(auth_file)
    if users or list_file:
        explicit['accounts'] = ConfigLoader.load_accounts(users, list_file)
    configs_to_merge.append(explicit)

    if cli_args:
        configs_to_merge.append(ConfigLoader.load_from_cli_args(cli_args))

    merged_config = ConfigLoader.merge_configs(*configs_to_merge)

    try:
        config = ArchiverConfig(**merged_config)
    except TypeError as e:
        raise ConfigurationError(f"Invalid configuration parameters: {e}")

    if validate:
        ConfigLoader.validate(config)

    return config
