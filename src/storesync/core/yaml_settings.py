"""YAML configuration files, layered, with include: support.

Files are merged lowest priority first:

    <package>/defaults/default.yaml
    <user config dir>/storesync.yaml
    ./storesync.yaml
    every --include FILE given on the command line

Any file may name further files under ``include:``; the including file
wins over what it includes.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

import yaml
from platformdirs import user_config_dir
from pydantic_settings import BaseSettings, YamlConfigSettingsSource

from storesync.core.log import logger

CONFIG_FILENAME = "storesync.yaml"

DEFAULTS_FILE = Path(__file__).parent.parent / "defaults" / "default.yaml"


def cli_includes(argv: list[str] | None = None) -> list[str]:
    """Values of every ``--include FILE`` (or ``--include=FILE``)."""
    args = iter(sys.argv[1:] if argv is None else argv)
    includes = []
    for arg in args:
        if arg == "--include":
            value = next(args, None)
            if value is not None:
                includes.append(value)
        elif arg.startswith("--include="):
            includes.append(arg.partition("=")[2])
    return includes


def config_files(extra: list[str | os.PathLike]) -> list[Path]:
    """Candidate configuration files in merge order, duplicates dropped."""
    files = [
        DEFAULTS_FILE,
        Path(user_config_dir("storesync", appauthor=False)) / CONFIG_FILENAME,
        Path(CONFIG_FILENAME),
    ]
    for name in extra:
        path = Path(name).expanduser()
        if path not in files:
            files.append(path)
    return files


def deep_merge(base: dict, override: dict) -> dict:
    """New dict with override merged into base; nested dicts merge too."""
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = value
    return merged


# _read_files must keep pydantic-settings' ``deep_merge`` keyword, which shadows the function
_deep_merge = deep_merge


def load_with_includes(path: Path, chain: tuple[Path, ...] = ()) -> dict:
    """Parse one YAML file and the files it includes, depth first.

    Raises:
        ValueError: A file includes itself, directly or indirectly
    """
    path = path.resolve()
    if path in chain:
        raise ValueError(f"Circular include: {path}")

    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    included = data.pop("include", None) or []
    if isinstance(included, str):
        included = [included]

    merged: dict = {}
    for name in included:
        target = Path(name).expanduser()
        if not target.is_absolute():
            target = path.parent / target
        merged = deep_merge(merged, load_with_includes(target, (*chain, path)))
    return deep_merge(merged, data)


class YamlWithIncludesSettingsSource(YamlConfigSettingsSource):
    """pydantic-settings source reading the layered YAML files."""

    def __init__(self, settings_cls: type[BaseSettings], yaml_file=None):
        # The fixed layers are always read; yaml_file only adds to them
        super().__init__(settings_cls, cli_includes() or yaml_file)

    def _read_files(self, files, deep_merge: bool = False) -> dict:
        # Layers always merge deeply, whatever the caller asks for
        if files is None:
            files = []
        elif isinstance(files, (str, os.PathLike)):
            files = [files]

        data: dict = {}
        for path in config_files(list(files)):
            if not path.is_file():
                logger.debug("No configuration file", file=str(path))
                continue
            logger.debug("Loading configuration", file=str(path))
            data = _deep_merge(data, load_with_includes(path))
        return data
