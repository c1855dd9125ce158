"""
Settings - where the database lives, how to log, how to print

Database path, in order:
    --db, $WGCM_DB, $XDG_CONFIG_HOME/wgcm/wgcm.db, ~/.config/wgcm/wgcm.db

An optional YAML settings file sits next to the default database
(config.yaml), or wherever -c/--config or $WGCM_CONFIG points:

    logging:
      level: INFO
      file: ~/.config/wgcm/wgcm.log
    output: table      # or json

Environment variables win over the file.
"""

import os
import logging
from pathlib import Path
from typing import Mapping, Optional

import yaml

from wgcm.errors import InvalidValue

APP_DIR_NAME = 'wgcm'
DB_FILE_NAME = 'wgcm.db'
CONFIG_FILE_NAME = 'config.yaml'

OUTPUT_MODES = ('table', 'json')


def config_dir(environ: Mapping[str, str] = os.environ) -> Path:
    """$XDG_CONFIG_HOME/wgcm, falling back to ~/.config/wgcm"""
    xdg = environ.get('XDG_CONFIG_HOME')
    if xdg:
        return Path(xdg) / APP_DIR_NAME
    return Path.home() / '.config' / APP_DIR_NAME


def resolve_db_path(override: Optional[str] = None,
                    environ: Mapping[str, str] = os.environ) -> Path:
    """Pick the database file; the directory is created when the DB opens"""
    if override:
        return Path(override).expanduser()
    if environ.get('WGCM_DB'):
        return Path(environ['WGCM_DB']).expanduser()
    return config_dir(environ) / DB_FILE_NAME


def resolve_config_path(override: Optional[str] = None,
                        environ: Mapping[str, str] = os.environ) -> Path:
    if override:
        return Path(override).expanduser()
    if environ.get('WGCM_CONFIG'):
        return Path(environ['WGCM_CONFIG']).expanduser()
    return config_dir(environ) / CONFIG_FILE_NAME


def load_config(config_path: Path) -> dict:
    """Load the settings file; a missing file means defaults"""
    if not config_path.exists():
        return {}

    try:
        with open(config_path) as f:
            config = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise InvalidValue(f"cannot parse settings file {config_path}: {e}")

    if not isinstance(config, dict):
        raise InvalidValue(f"settings file {config_path} must contain a mapping")
    return config


def output_mode(config: dict, json_flag: bool = False,
                environ: Mapping[str, str] = os.environ) -> str:
    """'json' or 'table'"""
    if json_flag:
        return 'json'

    mode = environ.get('WGCM_OUTPUT') or config.get('output') or 'table'
    mode = str(mode).lower()
    if mode not in OUTPUT_MODES:
        raise InvalidValue(f"output mode must be one of {', '.join(OUTPUT_MODES)}, got {mode!r}")
    return mode


def setup_logging(config: dict, verbose: bool = False,
                  environ: Mapping[str, str] = os.environ):
    """Setup logging; stdout stays reserved for command output"""
    log_config = config.get('logging') or {}

    log_level = environ.get('WGCM_LOG_LEVEL') or log_config.get('level')
    if not log_level:
        log_level = 'INFO' if verbose else 'WARNING'

    level = getattr(logging, str(log_level).upper(), None)
    if not isinstance(level, int):
        raise InvalidValue(f"unknown log level {log_level!r}")

    log_file = log_config.get('file')
    if log_file:
        log_file = Path(log_file).expanduser()
        log_file.parent.mkdir(parents=True, exist_ok=True)

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(log_file) if log_file else logging.StreamHandler(),
        ],
        force=True,
    )
