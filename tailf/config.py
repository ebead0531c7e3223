"""Configuration loading: defaults <- YAML file <- env vars <- CLI args (highest priority)."""

import argparse
import logging
import os
import sys
from dataclasses import dataclass

import yaml

from tailf.decoder import DEFAULT_BUFFER_SIZE, resolve_charset

logger = logging.getLogger(__name__)

DEFAULT_ROTATE_WAIT = 5.0
DEFAULT_EVENT_QUEUE_SIZE = 1024


def _parse_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("true", "1", "yes")


@dataclass(frozen=True)
class Config:
    target: str = ""
    source_charset: str | None = None   # None = platform default
    dest_charset: str | None = None     # None = platform default
    reset: bool = False
    persist: bool = False
    position_file: str | None = None    # implies persist
    rotate_wait: float = DEFAULT_ROTATE_WAIT
    buffer_size: int = DEFAULT_BUFFER_SIZE
    event_queue_size: int = DEFAULT_EVENT_QUEUE_SIZE
    log_level: str = "INFO"

    @property
    def persistent(self) -> bool:
        return self.persist or self.position_file is not None


def build_cli_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tailf",
        description="Follow a file across rotation and truncation, re-encoding its content.",
        epilog="Example: tailf -e EUC-JP -p /var/log/app.log",
    )
    parser.add_argument("target", help="Path of the file to follow")
    parser.add_argument(
        "-e", "--encode", dest="source_charset", default=None,
        help="Source file encoding (default: platform default)",
    )
    parser.add_argument(
        "-o", "--output-encoding", dest="dest_charset", default=None,
        help="Output encoding (default: platform default)",
    )
    parser.add_argument(
        "-r", "--reset", action="store_true", default=None,
        help="Reset the previous reading position",
    )
    parser.add_argument(
        "-p", "--persistence", dest="persist", action="store_true", default=None,
        help="Persist the last reading position",
    )
    parser.add_argument(
        "-P", "--pos-file", dest="position_file", default=None,
        help="Persist the last reading position to POS_FILE (default: <tempdir>/tailf.<path>)",
    )
    parser.add_argument(
        "--rotate-wait", type=float, default=None,
        help=f"Seconds to keep draining a deleted file (default: {DEFAULT_ROTATE_WAIT:g})",
    )
    parser.add_argument(
        "--config", default=None,
        help="Path to a YAML config file",
    )
    parser.add_argument(
        "--log-level", default=None,
        help="Diagnostic log level (default: INFO)",
    )
    return parser


def load_yaml_config(path: str | None) -> dict:
    """Load settings from a YAML file. Returns empty dict if no path."""
    if not path:
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        logger.info("Loaded YAML config from %s", path)
        return data
    except FileNotFoundError:
        logger.warning("Config file %s not found, using defaults", path)
        return {}


def _env_settings() -> dict:
    """Collect TAILF_* environment overrides, skipping unset ones."""
    mapping = {
        "TAILF_ENCODING": ("source_charset", str),
        "TAILF_OUTPUT_ENCODING": ("dest_charset", str),
        "TAILF_RESET": ("reset", _parse_bool),
        "TAILF_PERSIST": ("persist", _parse_bool),
        "TAILF_POS_FILE": ("position_file", str),
        "TAILF_ROTATE_WAIT": ("rotate_wait", float),
        "TAILF_BUFFER_SIZE": ("buffer_size", int),
        "TAILF_EVENT_QUEUE_SIZE": ("event_queue_size", int),
        "TAILF_LOG_LEVEL": ("log_level", str),
    }
    settings = {}
    for env_key, (name, convert) in mapping.items():
        raw = os.environ.get(env_key)
        if raw is not None and raw != "":
            settings[name] = convert(raw)
    return settings


def _yaml_settings(data: dict) -> dict:
    keys = {
        "encoding": ("source_charset", str),
        "output_encoding": ("dest_charset", str),
        "reset": ("reset", _parse_bool),
        "persist": ("persist", _parse_bool),
        "pos_file": ("position_file", str),
        "rotate_wait": ("rotate_wait", float),
        "buffer_size": ("buffer_size", int),
        "event_queue_size": ("event_queue_size", int),
        "log_level": ("log_level", str),
    }
    settings = {}
    for key, value in data.items():
        if key not in keys:
            logger.warning("Ignoring unknown config key: %s", key)
            continue
        if value is None:
            continue
        name, convert = keys[key]
        settings[name] = convert(value)
    return settings


def load_config(argv: list[str] | None = None) -> Config:
    """Build Config from defaults <- YAML <- env vars <- CLI args."""
    if argv is None:
        argv = sys.argv[1:]

    parser = build_cli_parser()
    args = parser.parse_args(argv)

    kwargs: dict = {}
    kwargs.update(_yaml_settings(load_yaml_config(args.config or os.environ.get("TAILF_CONFIG"))))
    kwargs.update(_env_settings())
    for name in ("source_charset", "dest_charset", "reset", "persist",
                 "position_file", "rotate_wait", "log_level"):
        value = getattr(args, name)
        if value is not None:
            kwargs[name] = value

    kwargs["target"] = os.path.normpath(os.path.abspath(args.target))
    if kwargs.get("position_file"):
        kwargs["position_file"] = os.path.normpath(os.path.abspath(kwargs["position_file"]))

    try:
        resolve_charset(kwargs.get("source_charset"))
        resolve_charset(kwargs.get("dest_charset"))
    except ValueError as e:
        parser.error(str(e))

    return Config(**kwargs)
