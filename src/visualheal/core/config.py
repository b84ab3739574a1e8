"""Configuration management for visualheal (visualheal.toml parsing + defaults)."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

try:
    import tomllib
except ImportError:
    import tomli as tomllib  # type: ignore[no-redef]


STATE_DIR_NAME = ".visualheal"
CONFIG_FILE_NAME = "visualheal.toml"


@dataclass
class ScreenshotConfig:
    directory: str = "screenshots"


@dataclass
class VerifyConfig:
    threshold: float = 0.1
    timeout_seconds: float = 60.0


@dataclass
class HealConfig:
    generator_timeout_seconds: float = 120.0
    backup_retention: int = 20
    dry_run: bool = False


@dataclass
class ConfirmConfig:
    auto_approve_in_ci: bool = True


@dataclass
class VisualHealConfig:
    """Complete visualheal configuration."""

    state_dir: str = STATE_DIR_NAME
    screenshots: ScreenshotConfig = field(default_factory=ScreenshotConfig)
    verify: VerifyConfig = field(default_factory=VerifyConfig)
    heal: HealConfig = field(default_factory=HealConfig)
    confirm: ConfirmConfig = field(default_factory=ConfirmConfig)


def load_config(project_path: Path | None = None) -> VisualHealConfig:
    """Load configuration from visualheal.toml if present, otherwise return defaults."""
    config = VisualHealConfig()

    if project_path is None:
        project_path = Path.cwd()

    config_file = project_path / CONFIG_FILE_NAME
    if not config_file.exists():
        return config

    with open(config_file, "rb") as f:
        data = tomllib.load(f)

    if "general" in data:
        gen = data["general"]
        if "state_dir" in gen:
            config.state_dir = gen["state_dir"]

    if "screenshots" in data:
        if "directory" in data["screenshots"]:
            config.screenshots.directory = data["screenshots"]["directory"]

    if "verify" in data:
        v = data["verify"]
        if "threshold" in v:
            config.verify.threshold = float(v["threshold"])
        if "timeout_seconds" in v:
            config.verify.timeout_seconds = float(v["timeout_seconds"])

    if "heal" in data:
        h = data["heal"]
        for attr in ("generator_timeout_seconds", "backup_retention", "dry_run"):
            if attr in h:
                setattr(config.heal, attr, h[attr])

    if "confirm" in data:
        c = data["confirm"]
        if "auto_approve_in_ci" in c:
            config.confirm.auto_approve_in_ci = c["auto_approve_in_ci"]

    return config


def get_state_dir(project_path: Path | None = None, config: VisualHealConfig | None = None) -> Path:
    """Get or create the .visualheal state directory."""
    if project_path is None:
        project_path = Path.cwd()
    name = config.state_dir if config else STATE_DIR_NAME
    state_dir = project_path / name
    state_dir.mkdir(parents=True, exist_ok=True)
    return state_dir


def is_ci_environment() -> bool:
    """True when running under a CI runner (CI=true or GITHUB_ACTIONS=true)."""
    return os.environ.get("CI") == "true" or os.environ.get("GITHUB_ACTIONS") == "true"
