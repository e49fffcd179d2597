"""Console output and log format selection."""

import os
from enum import Enum
from typing import Literal, Mapping, Optional


class OutputFormat(str, Enum):
    """Console output formats for the run command."""
    AUTO = "auto"
    RICH = "rich"
    PLAIN = "plain"
    JSON = "json"


LogFormat = Literal["json", "console", "plain"]

ENV_VAR_NAME = "CONSOLE_OUTPUT_FORMAT"


def get_output_format(cli_override: Optional[str] = None, env: Optional[Mapping[str, str]] = None) -> OutputFormat:
    """
    Get the output format with priority: CLI parameter > Environment variable > Default (auto).

    Args:
        cli_override: Optional CLI parameter value that takes precedence
        env: Environment mapping, defaults to the process environment

    Returns:
        OutputFormat enum value
    """
    if cli_override:
        try:
            return OutputFormat(cli_override.lower())
        except ValueError:
            pass

    env_value = (os.environ if env is None else env).get(ENV_VAR_NAME)
    if env_value:
        try:
            return OutputFormat(env_value.lower())
        except ValueError:
            pass

    return OutputFormat.AUTO


def log_format_for(output_format: OutputFormat) -> LogFormat:
    """
    Map the console output format onto a log renderer:
    - auto/rich -> console (with colors)
    - plain -> plain (no colors)
    - json -> json
    """
    if output_format == OutputFormat.JSON:
        return "json"
    if output_format == OutputFormat.PLAIN:
        return "plain"
    return "console"
