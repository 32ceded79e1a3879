import os
import re
from collections.abc import Iterable

from dotenv import find_dotenv, load_dotenv

from zenith_suggest.logger import get_logger

logger = get_logger(__name__)

CONFIG_FILENAME = "config.yaml"

_CONFIG_LINE = re.compile(r"^\s*([A-Za-z_][A-Za-z0-9_]*)\s*:(.*)$")


def config_file_path(config_dir: str | None = None) -> str:
    """``CONFIG_DIR/config.yaml``, else ``./config/config.yaml`` when present, else ``./config.yaml``."""
    if config_dir:
        return os.path.join(config_dir, CONFIG_FILENAME)
    nested = os.path.join(os.getcwd(), "config", CONFIG_FILENAME)
    if os.path.exists(nested):
        return nested
    return os.path.join(os.getcwd(), CONFIG_FILENAME)


def _dotenv_path(config_dir: str | None = None) -> str | None:
    if config_dir and os.path.exists(os.path.join(config_dir, ".env")):
        return os.path.join(config_dir, ".env")
    return find_dotenv(usecwd=True) or None


def _parse_value(raw_value: str) -> str:
    value = raw_value.strip()
    if value[:1] in {'"', "'"}:
        quote = value[0]
        chars: list[str] = []
        escaped = False
        for char in value[1:]:
            if escaped:
                chars.append(char)
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == quote:
                return "".join(chars)
            else:
                chars.append(char)
    # unquoted, or a quote that never closes
    return value.split("#", 1)[0].rstrip()


def read_config_file(path: str | None) -> dict[str, str]:
    """Read flat ``KEY: value`` lines; nested YAML is not supported."""
    if not path or not os.path.exists(path):
        return {}

    values: dict[str, str] = {}
    with open(path, encoding="utf-8") as handle:
        for line in handle:
            match = _CONFIG_LINE.match(line)
            if match is None:
                continue
            value = _parse_value(match.group(2))
            if value:
                values[match.group(1)] = value
    return values


def load_environment(keys: Iterable[str]) -> dict[str, str]:
    """Load ``.env`` and fill every unset key in ``keys`` from ``config.yaml``.

    Variables already in the environment always win. Returns the values read
    from the config file.
    """
    config_dir = os.getenv("CONFIG_DIR")
    dotenv_path = _dotenv_path(config_dir)
    if dotenv_path:
        load_dotenv(dotenv_path=dotenv_path, override=False)

    path = config_file_path(config_dir)
    file_values = read_config_file(path)
    applied = [key for key in keys if key not in os.environ and key in file_values]
    for key in applied:
        os.environ[key] = file_values[key]
    if applied:
        logger.debug("[ENV] %s taken from %s", ", ".join(applied), path)
    return file_values


def ensure_dirs(*paths: str | None) -> None:
    for path in paths:
        if path and path not in {".", "./"}:
            os.makedirs(path, exist_ok=True)
