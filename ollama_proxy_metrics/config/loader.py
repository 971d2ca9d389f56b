"""Configuration loading: YAML file, environment and command-line flags."""
import argparse
import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence

import yaml
from pydantic import ValidationError

from ollama_proxy_metrics.config.schema import DEFAULT_LISTEN, DEFAULT_UPSTREAM, ProxyConfig
from ollama_proxy_metrics.core.errors import ConfigValidationError

UPSTREAM_ENV = "OLLAMA_UPSTREAM"
LOG_LEVEL_ENV = "LOG_LEVEL"


class ConfigLoader:
    """Load proxy settings from a YAML file."""

    def __init__(self, config_path: str):
        """
        Args:
            config_path: Path to YAML configuration file
        """
        self.config_path = Path(config_path)
        self.config: Dict[str, Any] = {}

    def load(self) -> Dict[str, Any]:
        """Load the YAML mapping; keys are validated later with the other sources."""
        if not self.config_path.exists():
            raise FileNotFoundError(f"Config file not found: {self.config_path}")

        try:
            with open(self.config_path, "r") as f:
                raw_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML syntax in {self.config_path}: {e}") from e

        if not isinstance(raw_config, dict):
            raise ValueError(f"Top level of {self.config_path} must be a mapping")

        self.config = raw_config
        return self.config


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ollama-proxy-metrics",
        description="Transparent Ollama proxy exporting Prometheus metrics.",
    )
    parser.add_argument(
        "--listen",
        default=None,
        help=f"listen address for proxy (e.g. :8080, default {DEFAULT_LISTEN})",
    )
    parser.add_argument(
        "--upstream",
        default=None,
        help=f"Ollama upstream base URL (or set {UPSTREAM_ENV}, default {DEFAULT_UPSTREAM})",
    )
    parser.add_argument("--config", default=None, help="optional YAML config file")
    parser.add_argument(
        "--log-level",
        default=None,
        help=f"logging level (or set {LOG_LEVEL_ENV}, default INFO)",
    )
    return parser


def load_config(
    argv: Optional[Sequence[str]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> ProxyConfig:
    """
    Resolve configuration from all sources.

    Precedence per key: flag > environment > YAML file > default.
    Empty environment values are ignored.

    Raises:
        ConfigValidationError: On unreadable config file or invalid values
    """
    args = build_arg_parser().parse_args(argv)
    env = os.environ if environ is None else environ

    values: Dict[str, Any] = {}
    if args.config:
        try:
            values.update(ConfigLoader(args.config).load())
        except (OSError, ValueError) as e:
            raise ConfigValidationError(str(e)) from e

    env_values = {"upstream": env.get(UPSTREAM_ENV), "log_level": env.get(LOG_LEVEL_ENV)}
    values.update({k: v for k, v in env_values.items() if v})

    flag_values = {"listen": args.listen, "upstream": args.upstream, "log_level": args.log_level}
    values.update({k: v for k, v in flag_values.items() if v is not None})

    try:
        return ProxyConfig(**values)
    except ValidationError as e:
        raise ConfigValidationError(f"Configuration validation failed: {e}") from e
