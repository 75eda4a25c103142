"""Configuration management for pipeline-scm.

Settings are resolved through a fallback chain: environment variable, then
the options object handed over by the pipeline engine, then the
``[pipeline_scm]`` section of an INI file, then the built-in default.
"""

from __future__ import annotations

import configparser
import logging
import os
from typing import Any, Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

CONFIG_SECTION = "pipeline_scm"

# Module-level config cache
_config: Optional[Dict[str, Any]] = None
_options: Optional[Any] = None  # Engine options object (initialized by the engine)


def initialize(options: Any) -> None:
    """Initialize config module with the engine's options object.

    Args:
        options: Parsed options object; attributes named ``scm_<key>``
            override file settings.
    """
    global _options
    _options = options
    logger.debug("Config module initialized with engine options object")


def _parse_config_file(config_file: Optional[str] = None) -> Dict[str, Any]:
    """Parse the ``[pipeline_scm]`` section of an INI file.

    Args:
        config_file: Path to the config file. If None, no file is read.

    Returns:
        Dict of raw string values, empty when the file or section is missing.
    """
    if not config_file:
        return {}

    parser = configparser.ConfigParser()
    try:
        read = parser.read(config_file)
    except configparser.Error as exc:
        logger.warning("Failed to parse config file %s: %s", config_file, exc)
        return {}

    if not read:
        logger.debug("Config file not found: %s", config_file)
        return {}
    if not parser.has_section(CONFIG_SECTION):
        logger.debug("No [%s] section in %s", CONFIG_SECTION, config_file)
        return {}
    return dict(parser.items(CONFIG_SECTION))


def _get_config() -> Dict[str, Any]:
    """Get parsed config dict, initializing if needed."""
    global _config
    if _config is None:
        config_file = os.environ.get("PIPELINE_SCM_CONFIG")
        _config = _parse_config_file(config_file)
    return _config


def _lookup_raw(key: str, env_var: Optional[str]) -> Tuple[Optional[str], Any]:
    """Find the first source that sets key.

    Returns:
        (source description, raw value), or (None, None) if nothing sets it
    """
    if env_var and env_var in os.environ:
        return env_var, os.environ[env_var]
    option_key = f"scm_{key}"
    if _options is not None and hasattr(_options, option_key):
        return f"option {option_key}", getattr(_options, option_key)
    value = _get_config().get(key)
    if value is not None:
        return f"[{CONFIG_SECTION}] {key}", value
    return None, None


def _get_config_value(
    key: str,
    default: Any,
    env_var: Optional[str] = None,
    converter: Optional[Callable[[Any], Any]] = None,
) -> Any:
    """Get config value with fallback chain: env var, options, config file, default.

    Args:
        key: Config key name (in [pipeline_scm] section)
        default: Returned when no source sets the key or its value is invalid
        env_var: Optional environment variable name (e.g., PIPELINE_SCM_POLL)
        converter: Applied to string values (e.g., _parse_bool)
    """
    source, value = _lookup_raw(key, env_var)
    if source is None:
        return default
    if converter is None or not isinstance(value, str):
        return value
    try:
        return converter(value)
    except (ValueError, TypeError):
        logger.warning("Invalid value for %s: %r, using default %r", source, value, default)
        return default


def _parse_bool(value: Any) -> bool:
    """Parse boolean value from config (string or bool).

    Accepts: True, "true", "True", "1", "yes", "on" -> True
             False, "false", "False", "0", "no", "off" -> False
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.lower() in ("true", "1", "yes", "on")
    return bool(value)


def _parse_mode(value: Any) -> int:
    """Parse a permission mode, given as an int or an octal string ("0640")."""
    if isinstance(value, int):
        return value
    return int(str(value).strip(), 8)


DEFAULT_CONTAINER_TIMEOUTS = {"pull": 300, "start": 60, "stop_grace": 20}


def _parse_timeouts(value: Any) -> Dict[str, int]:
    """Parse container timeouts, merged over the defaults.

    Accepts a mapping or a "start=60,stop_grace=20" string. Malformed
    entries are logged and skipped.
    """
    timeouts = dict(DEFAULT_CONTAINER_TIMEOUTS)
    if isinstance(value, dict):
        timeouts.update(value)
        return timeouts
    for item in str(value).split(","):
        name, sep, seconds = item.partition("=")
        if not sep:
            continue
        try:
            timeouts[name.strip()] = int(seconds)
        except ValueError:
            logger.warning("Invalid timeout value: %s", item)
    return timeouts


def scm_poll_default() -> bool:
    """Whether checkout steps record a polling baseline by default."""
    return _get_config_value(
        "poll",
        True,
        env_var="PIPELINE_SCM_POLL",
        converter=_parse_bool,
    )


def scm_changelog_default() -> bool:
    """Whether checkout steps request a changelog by default."""
    return _get_config_value(
        "changelog",
        True,
        env_var="PIPELINE_SCM_CHANGELOG",
        converter=_parse_bool,
    )


def scm_changelog_prefix() -> str:
    """Filename prefix for changelog temp files."""
    return _get_config_value(
        "changelog_prefix",
        "changelog",
        env_var="PIPELINE_SCM_CHANGELOG_PREFIX",
    )


def scm_changelog_suffix() -> str:
    """Filename suffix for changelog temp files."""
    return _get_config_value(
        "changelog_suffix",
        ".xml",
        env_var="PIPELINE_SCM_CHANGELOG_SUFFIX",
    )


def scm_changelog_mode() -> int:
    """Permission bits applied to changelog files on POSIX hosts (default 0o640)."""
    return _get_config_value(
        "changelog_mode",
        0o640,
        env_var="PIPELINE_SCM_CHANGELOG_MODE",
        converter=_parse_mode,
    )


def scm_git_executable() -> str:
    """Git executable used by GitBackend."""
    return _get_config_value(
        "git",
        "git",
        env_var="PIPELINE_SCM_GIT",
    )


def scm_container_image() -> str:
    """Default image for PodmanLauncher containers."""
    return _get_config_value(
        "container_image",
        "quay.io/centos/centos:stream9",
        env_var="PIPELINE_SCM_CONTAINER_IMAGE",
    )


def scm_podman_socket() -> str:
    """Podman socket URI (default: unix:///run/podman/podman.sock).

    URI format expected by podman-py PodmanClient:
    - unix:///run/podman/podman.sock (local Unix socket)
    - http+unix:///run/podman/podman.sock (HTTP over Unix socket)
    """
    return _get_config_value(
        "podman_socket",
        "unix:///run/podman/podman.sock",
        env_var="PIPELINE_SCM_PODMAN_SOCKET",
    )


def scm_image_pull_policy() -> str:
    """When PodmanLauncher pulls its image: always, if-not-present or never."""
    return _get_config_value(
        "image_pull_policy",
        "if-not-present",
        env_var="PIPELINE_SCM_IMAGE_PULL_POLICY",
        converter=lambda value: value.strip().lower(),
    )


def scm_container_timeouts() -> Dict[str, int]:
    """Container lifecycle timeouts in seconds.

    Keys: pull, start, stop_grace
    """
    value = _get_config_value(
        "container_timeouts",
        DEFAULT_CONTAINER_TIMEOUTS,
        env_var="PIPELINE_SCM_CONTAINER_TIMEOUTS",
    )
    return _parse_timeouts(value)


def reset_config() -> None:
    """Reset config cache (useful for testing)."""
    global _config, _options
    _config = None
    _options = None
