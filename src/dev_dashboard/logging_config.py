# Copyright 2024 Heinrich Krupp
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Logging configuration for the Dev Dashboard tool store.

Routes DEBUG/INFO records to stdout and WARNING and above to stderr so that
command output and diagnostics can be separated by the shell.
"""

import sys
import logging
from typing import Optional

from .config import LOG_LEVEL


class DualStreamHandler(logging.Handler):
    """Handler that splits records between stdout and stderr by level."""

    def __init__(self, fmt: str = '%(levelname)s:%(name)s:%(message)s'):
        super().__init__()
        self.stdout_handler = logging.StreamHandler(sys.stdout)
        self.stderr_handler = logging.StreamHandler(sys.stderr)

        formatter = logging.Formatter(fmt)
        self.stdout_handler.setFormatter(formatter)
        self.stderr_handler.setFormatter(formatter)

    def emit(self, record):
        """Route log records based on level."""
        if record.levelno >= logging.WARNING:
            self.stderr_handler.emit(record)
        else:
            self.stdout_handler.emit(record)


def configure_logging(level: Optional[str] = None) -> logging.Logger:
    """
    Configure the root logger with a DualStreamHandler.

    Args:
        level: Log level name; defaults to the LOG_LEVEL environment setting

    Returns:
        Logger for this module
    """
    log_level = (level or LOG_LEVEL).upper()
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level, logging.WARNING))

    # Remove any existing handlers to avoid duplicates
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    root_logger.addHandler(DualStreamHandler())

    return logging.getLogger(__name__)
