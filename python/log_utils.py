"""
Logging helpers shared by the API and service layers.

SECURITY: Everything a caller sends (wallet addresses, names, provider
payload values) must pass through sanitize_for_logging before being logged.
"""

import logging
import re
import sys
from pathlib import Path
from typing import Optional


def sanitize_for_logging(text: str, max_length: int = 500) -> str:
    """Sanitize user input for safe logging, preventing log injection

    Removes newlines, carriage returns, and other control characters
    that could be used to inject fake log entries.

    Args:
        text: User input text
        max_length: Maximum length kept

    Returns:
        Sanitized text safe for logging
    """
    if not text:
        return ''
    sanitized = re.sub(r'[\r\n\x00-\x1f\x7f-\x9f]', ' ', str(text))
    sanitized = re.sub(r'\s+', ' ', sanitized).strip()
    return sanitized[:max_length] if len(sanitized) > max_length else sanitized


def mask_address(address: Optional[str]) -> str:
    """Shorten a wallet address for log lines: 0x1234...abcd"""
    address = sanitize_for_logging(address or '', max_length=100)
    if len(address) <= 12:
        return address
    return f"{address[:6]}...{address[-4:]}"


def setup_logging(
    level: str = "INFO",
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    log_file: Optional[str] = None,
    console: bool = True
) -> None:
    """Configure root logging once at application start

    Args:
        level: Log level name
        log_format: logging.Formatter format string
        log_file: Optional file to log to (parent directory is created)
        console: Log to stdout
    """
    handlers = []
    if console:
        handlers.append(logging.StreamHandler(sys.stdout))
    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(path, encoding='utf-8'))
    if not handlers:
        handlers.append(logging.NullHandler())

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=log_format,
        handlers=handlers,
        force=True
    )
