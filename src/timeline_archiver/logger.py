"""Logging configuration for the timeline archiver."""

import logging
import sys
from pathlib import Path
from typing import Optional


class CleanFormatter(logging.Formatter):
    """Formatter for compact log lines with an optionally colored level.

    Verbose output adds the logger name, which tells which account task or
    worker module a line came from.
    """

    # ANSI color codes
    COLORS = {
        'DEBUG': '\033[36m',    # Cyan
        'INFO': '\033[32m',     # Green
        'WARNING': '\033[33m',  # Yellow
        'ERROR': '\033[31m',    # Red
        'CRITICAL': '\033[35m', # Magenta
        'RESET': '\033[0m'
    }

    def __init__(self, use_colors: bool = True, verbose: bool = False):
        """Initialize formatter.

        Args:
            use_colors: Whether to use ANSI color codes
            verbose: Whether to include logger name in output
        """
        self.use_colors = use_colors
        self.verbose = verbose

        if verbose:
            fmt = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'
        else:
            fmt = '%(asctime)s [%(levelname)s] %(message)s'

        super().__init__(fmt=fmt, datefmt='%Y-%m-%d %H:%M:%S')

    def format(self, record: logging.LogRecord) -> str:
        formatted = super().format(record)

        if self.use_colors and record.levelname in self.COLORS:
            color = self.COLORS[record.levelname]
            reset = self.COLORS['RESET']
            formatted = formatted.replace(
                f'[{record.levelname}]',
                f'[{color}{record.levelname}{reset}]',
                1
            )

        return formatted


def setup_logging(
    verbose: bool = False,
    log_file: Optional[Path] = None,
    console: bool = True,
    level: Optional[int] = None
) -> None:
    """Configure logging for a sync run.

    Console output goes to stderr so the final report on stdout stays
    clean for scripts. The log file, when given, always receives DEBUG.

    Args:
        verbose: If True, use DEBUG level and show logger names
        log_file: Optional path to log file
        console: Whether to enable console output
        level: Override log level (defaults to INFO, or DEBUG when verbose)

    Example:
        setup_logging(verbose=True, log_file=Path("sync.log"))
    """
    if level is None:
        level = logging.DEBUG if verbose else logging.INFO

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)  # Capture all, filter at handlers
    root_logger.handlers.clear()

    if console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(level)
        console_handler.setFormatter(
            CleanFormatter(use_colors=sys.stderr.isatty(), verbose=verbose)
        )
        root_logger.addHandler(console_handler)

    if log_file:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file, encoding='utf-8')
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(CleanFormatter(use_colors=False, verbose=True))
        root_logger.addHandler(file_handler)

    # Silence noisy third-party loggers
    logging.getLogger('aiohttp').setLevel(logging.WARNING)
    logging.getLogger('asyncio').setLevel(logging.WARNING)
