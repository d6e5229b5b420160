"""
Configuration loader for the Keel engine.

Configuration is merged from a system-wide TOML file in the user config
directory and a project file at ``.keel/config.toml``; an ``AGENT.MD`` in
the project root becomes the developer instructions.
"""

import logging
from pathlib import Path
from typing import Any

from platformdirs import user_config_dir

try:
    import tomllib
except ImportError:  # Python < 3.11
    import tomli as tomllib

from keel.config.schema import Configuration
from keel.constants import (
    AGENT_MD_FILE_NAME,
    APP_NAME,
    CONFIG_DIR_NAME,
    CONFIG_FILE_NAME,
    DEFAULT_ENCODING,
)
from keel.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


def get_config_dir() -> Path:
    """
    Get the system-wide configuration directory.

    Returns
    -------
    Path
        Path to the system configuration directory.
    """
    return Path(user_config_dir(APP_NAME))


def get_system_config_path() -> Path:
    return get_config_dir() / CONFIG_FILE_NAME


def _parse_toml(path: Path) -> dict[str, Any]:
    """
    Parse a TOML configuration file.

    Parameters
    ----------
    path : Path
        Path to the TOML file to parse.

    Returns
    -------
    dict[str, Any]
        Parsed configuration as a dictionary.

    Raises
    ------
    ConfigurationError
        If the file cannot be read or contains invalid TOML.
    """
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(
            f"Invalid TOML in {path}: {e}",
            config_file=str(path),
            cause=e,
        ) from e
    except OSError as e:
        raise ConfigurationError(
            f"Failed to read config file {path}: {e}",
            config_file=str(path),
            cause=e,
        ) from e


def _get_project_config(cwd: Path) -> Path | None:
    config_file: Path = cwd.resolve() / CONFIG_DIR_NAME / CONFIG_FILE_NAME
    if config_file.is_file():
        return config_file
    return None


def _get_agent_md_content(cwd: Path) -> str | None:
    agent_md_file: Path = cwd.resolve() / AGENT_MD_FILE_NAME
    if not agent_md_file.is_file():
        return None

    try:
        return agent_md_file.read_text(encoding=DEFAULT_ENCODING)
    except OSError as e:
        logger.warning(f"Failed to read {agent_md_file}: {e}", exc_info=True)
        return None


def _merge_dicts(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """
    Recursively merge two dictionaries.

    Values from ``override`` take precedence over ``base``; nested tables
    are merged key by key.

    Examples
    --------
    >>> _merge_dicts({"model": {"name": "a", "temperature": 0.1}}, {"model": {"name": "b"}})
    {'model': {'name': 'b', 'temperature': 0.1}}
    """
    result: dict[str, Any] = base.copy()
    for key, value in override.items():
        if isinstance(result.get(key), dict) and isinstance(value, dict):
            result[key] = _merge_dicts(result[key], value)
        else:
            result[key] = value
    return result


def load_configuration(
    cwd: Path | None = None,
    system_path: Path | None = None,
) -> Configuration:
    """
    Load configuration from system and project sources.

    Sources are applied in this order, later ones winning:

    1. System-wide configuration (if it exists)
    2. Project configuration in ``.keel/config.toml``
    3. ``AGENT.MD`` content as ``developer_instructions``

    The API key and base URL are always read from the environment.

    Parameters
    ----------
    cwd : Path | None, optional
        Project directory. Defaults to the current directory.
    system_path : Path | None, optional
        Override for the system config file location.

    Returns
    -------
    Configuration
        Loaded configuration object.

    Raises
    ------
    ConfigurationError
        If the merged configuration does not validate.

    Examples
    --------
    >>> config = load_configuration(Path("/path/to/project"))
    >>> config.max_turns
    50
    """
    cwd = cwd or Path.cwd()
    system_path = system_path or get_system_config_path()

    config_dict: dict[str, Any] = {}

    if system_path.is_file():
        try:
            config_dict = _parse_toml(system_path)
            logger.debug(f"Loaded system config from {system_path}")
        except ConfigurationError as e:
            logger.warning(f"Skipping invalid system config {system_path}: {e}")

    project_path: Path | None = _get_project_config(cwd)
    if project_path:
        # Project config errors propagate
        project_config_dict: dict[str, Any] = _parse_toml(project_path)
        config_dict = _merge_dicts(config_dict, project_config_dict)
        logger.debug(f"Loaded project config from {project_path}")

    if "cwd" not in config_dict:
        config_dict["cwd"] = str(cwd)

    if "developer_instructions" not in config_dict:
        agent_md_content: str | None = _get_agent_md_content(cwd)
        if agent_md_content:
            config_dict["developer_instructions"] = agent_md_content
            logger.debug(f"Loaded {AGENT_MD_FILE_NAME} from {cwd}")

    try:
        config: Configuration = Configuration(**config_dict)
    except Exception as e:
        raise ConfigurationError(
            f"Invalid configuration: {e}",
            cause=e,
        ) from e

    logger.info(f"Configuration loaded from {cwd}")
    return config
