"""
Utility functions for configuration and logging.
"""

import os
import logging
import yaml
from pathlib import Path
from typing import Dict, Any, Optional
from dotenv import load_dotenv, find_dotenv


def load_config(config_path: str = "config.yaml") -> Dict[str, Any]:
    """
    Load configuration from a YAML file.

    Environment variables are loaded from the project `.env` first so that
    `${VAR}` placeholders in the YAML resolve to what the developer edited.

    Args:
        config_path: Path to config file

    Returns:
        Configuration dictionary

    Raises:
        FileNotFoundError: If the config file does not exist
    """
    # Always prioritize the project-local .env so the value the developer edits wins.
    project_root = Path(__file__).resolve().parent.parent.parent
    explicit_env = project_root / ".env"
    dotenv_loaded = False

    if explicit_env.exists():
        load_dotenv(explicit_env, override=True)
        dotenv_loaded = True

    if not dotenv_loaded:
        env_path = find_dotenv(usecwd=True)
        if env_path:
            load_dotenv(env_path, override=True)
            dotenv_loaded = True

    if not dotenv_loaded:
        load_dotenv(override=False)

    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        config = yaml.safe_load(f) or {}

    # Expand environment variables
    config = _expand_env_vars(config)

    return config


def _expand_env_vars(config: Any) -> Any:
    """
    Recursively expand environment variables in config.

    Args:
        config: Configuration value (dict, list or scalar)

    Returns:
        Config with expanded environment variables
    """
    if isinstance(config, dict):
        return {k: _expand_env_vars(v) for k, v in config.items()}
    elif isinstance(config, list):
        return [_expand_env_vars(item) for item in config]
    elif isinstance(config, str):
        # Replace ${VAR} with environment variable
        if config.startswith('${') and config.endswith('}'):
            var_name = config[2:-1]
            return os.getenv(var_name, config)
        return config
    else:
        return config


def setup_logging(config: Dict[str, Any], log_file: Optional[str] = None):
    """
    Setup logging configuration.

    Args:
        config: Configuration dictionary
        log_file: Optional override for `logging.file`
    """
    log_level = config.get('logging', {}).get('level', 'INFO')
    log_file = log_file or config.get('logging', {}).get('file', 'logs/build.log')

    handlers = [logging.StreamHandler()]
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.insert(0, logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, str(log_level).upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True,
    )

    # Reduce noise from some libraries
    logging.getLogger('httpx').setLevel(logging.WARNING)
    logging.getLogger('uvicorn.access').setLevel(logging.WARNING)


def format_bytes(size: int) -> str:
    """Render a byte count the way gulp-size does (1.2 kB, 3 MB)."""
    value = float(size)
    for unit in ("B", "kB", "MB", "GB"):
        if value < 1000 or unit == "GB":
            if unit == "B":
                return f"{int(value)} B"
            return f"{value:.1f} {unit}".replace(".0 ", " ")
        value /= 1000
    return f"{size} B"  # pragma: no cover - loop always returns


def log_url_banner(url_line: str, log: Optional[logging.Logger] = None) -> None:
    """Log a line framed by `=` rules of the same width."""
    log = log or logging.getLogger(__name__)
    rule = "=" * len(url_line)
    log.info(rule)
    log.info(url_line)
    log.info(rule)
