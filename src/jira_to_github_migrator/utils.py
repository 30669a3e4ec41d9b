"""
Utility functions for the Jira to GitHub migration tool.
"""

from __future__ import annotations

import logging
import os
import re
import subprocess
from subprocess import CompletedProcess


class PassError(Exception):
    """Base class for pass-related errors."""


class InvalidPassPathError(PassError):
    """Raised when the pass path format is invalid."""


class PassphraseRequiredError(PassError):
    """Raised when a GPG passphrase is required for the pass utility."""


def setup_logging(*, verbosity: int = 0) -> None:
    """Configure logging for the migration process.

    The log file always receives DEBUG output. The console shows WARNING by
    default, INFO with ``-v`` and DEBUG with ``-vv``.
    """
    if verbosity >= 2:
        console_level = logging.DEBUG
    elif verbosity == 1:
        console_level = logging.INFO
    else:
        console_level = logging.WARNING

    formatter = logging.Formatter("%(asctime)s - %(levelname)s - %(message)s")

    console_handler = logging.StreamHandler()
    console_handler.setLevel(console_level)
    console_handler.setFormatter(formatter)

    file_handler = logging.FileHandler("migration.log", mode="a")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.addHandler(console_handler)
    root_logger.addHandler(file_handler)

    # urllib3 debug output drowns the migration log
    logging.getLogger("urllib3").setLevel(logging.INFO)


def _validate_pass_path(pass_path: str) -> None:
    """Validate the pass path format."""
    if not re.fullmatch(r"(?:[A-Za-z0-9_-]+)(?:/[A-Za-z0-9_-]+)*", pass_path):
        msg = f"Invalid pass path: {pass_path}"
        raise ValueError(msg)


def get_pass_value(pass_path: str) -> str:
    """Get value from pass utility at specified path."""
    _validate_pass_path(pass_path)

    try:
        result: CompletedProcess[str] = subprocess.run(  # noqa: S603
            ["pass", pass_path], capture_output=True, text=True, check=True
        )
    except FileNotFoundError as e:
        msg = "The 'pass' utility is not installed"
        raise PassError(msg) from e
    except subprocess.CalledProcessError as e:
        if e.returncode == 1 and "not in the password store" in e.stderr.lower():
            msg = f"Pass path '{pass_path}' not found or invalid."
            raise InvalidPassPathError(msg) from e
        if e.returncode == 2 and "gpg" in e.stderr.lower() and "public key decryption failed" in e.stderr.lower():
            # The GPG agent could not prompt. Ask here and hand the passphrase to pass on stdin.
            try:
                passphrase = input("Enter passphrase for GPG key used by pass: ")
            except EOFError as eof:
                msg = "Passphrase input was interrupted. Please run the command in an interactive session."
                raise PassphraseRequiredError(msg) from eof

            env = os.environ.copy() | {"PASSWORD_STORE_GPG_OPTS": "--pinentry-mode=loopback --passphrase-fd 0"}
            try:
                result = subprocess.run(  # noqa: S603
                    ["pass", pass_path], input=passphrase, capture_output=True, text=True, check=True, env=env
                )
            except subprocess.CalledProcessError as retry_error:
                msg = (
                    f"Failed to get value from pass at '{pass_path}' with passphrase.\n"
                    f"Error: {retry_error.stderr.strip()}\n"
                    f"Return code: {retry_error.returncode}"
                )
                raise PassphraseRequiredError(msg) from retry_error
            return result.stdout.strip()
        msg = (
            f"Failed to get value from pass at '{pass_path}'.\n"
            f"Output: {e.stdout.strip()}\n"
            f"Error: {e.stderr.strip()}\n"
            f"Return code: {e.returncode}"
        )
        raise PassError(msg) from e

    return result.stdout.strip()


def format_size(size_in_bytes: int) -> str:
    """Format a byte count for display (e.g. ``1.5 kB``)."""
    if size_in_bytes < 1024:
        return f"{size_in_bytes} bytes"
    size = float(size_in_bytes)
    for unit in ("kB", "MB", "GB"):
        size /= 1024
        if size < 1024:
            return f"{size:.1f} {unit}"
    return f"{size:.1f} TB"
