"""Type definitions for the CLI module."""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from ..config import AppSettings
from ..utils.types import SitewatchError


class CLIError(SitewatchError):
    """Base exception for CLI-related errors."""

    pass


class CommandResult:
    """Result of a CLI command execution."""

    def __init__(
        self,
        success: bool,
        message: str = "",
        data: Optional[dict[str, Any]] = None,
        exit_code: int = 1,
    ):
        self.success = success
        self.message = message
        self.data = data or {}
        self.exit_code = exit_code
        self.timestamp = datetime.utcnow()

    def __bool__(self) -> bool:
        return self.success


class OutputFormat(str, Enum):
    """Output format options for CLI commands."""

    TEXT = "text"
    JSON = "json"


class CLIContext:
    """Context object for CLI commands."""

    def __init__(
        self,
        verbose: bool = False,
        debug: bool = False,
        output_format: OutputFormat = OutputFormat.TEXT,
        settings: Optional[AppSettings] = None,
    ):
        self.verbose = verbose
        self.debug = debug
        self.output_format = output_format
        self.settings = settings
        self.start_time = datetime.utcnow()

    @property
    def json_output(self) -> bool:
        return self.output_format == OutputFormat.JSON
