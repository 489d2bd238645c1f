"""
Test Specification Loader

This module locates YAML test specification files, parses them into
TestSpec models (merging settings inherited from a named profile) and
reads queries from query files.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import yaml
from pydantic import ValidationError

from perfbench.errors import ConfigurationError
from perfbench.models.test_config import TestSpec

logger = logging.getLogger(__name__)

SPEC_EXTENSIONS = (".yaml", ".yml")

_TSV_ESCAPES = {
    "b": "\b",
    "f": "\f",
    "n": "\n",
    "r": "\r",
    "t": "\t",
    "0": "\0",
    "a": "\a",
    "v": "\v",
    "\\": "\\",
    "'": "'",
}


def is_spec_file(path: Path) -> bool:
    return path.suffix.lower() in SPEC_EXTENSIONS


def unescape_tsv(value: str) -> str:
    """Decode a TSV-escaped field; unknown escapes yield the escaped char."""
    out: List[str] = []
    chars = iter(value)
    for ch in chars:
        if ch != "\\":
            out.append(ch)
            continue
        nxt = next(chars, None)
        if nxt is None:
            out.append("\\")
            break
        out.append(_TSV_ESCAPES.get(nxt, nxt))
    return "".join(out)


def _read_yaml(path: Path) -> Any:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return yaml.safe_load(f)
    except OSError as e:
        raise ConfigurationError(f"Cannot read file: {e}", source=str(path)) from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML: {e}", source=str(path)) from e


class SpecLoader:
    """
    Loads test specifications and their query files.

    Profiles are read from an optional YAML file shaped as
    ``profiles: {<name>: {<setting>: <value>, ...}}``.
    """

    def __init__(self, profiles_file: Optional[Union[str, Path]] = None):
        self.profiles_file = Path(profiles_file) if profiles_file else None
        self._profiles_cache: Optional[Dict[str, Dict[str, Any]]] = None

    def _profiles(self) -> Dict[str, Dict[str, Any]]:
        if self._profiles_cache is not None:
            return self._profiles_cache
        if self.profiles_file is None:
            self._profiles_cache = {}
            return self._profiles_cache

        data = _read_yaml(self.profiles_file) or {}
        profiles = data.get("profiles", {}) if isinstance(data, dict) else None
        if not isinstance(profiles, dict):
            raise ConfigurationError(
                "Expected a 'profiles' mapping", source=str(self.profiles_file)
            )
        self._profiles_cache = {
            str(name): dict(values or {}) for name, values in profiles.items()
        }
        return self._profiles_cache

    def resolve_settings(self, raw_settings: Any, source: str) -> Dict[str, Any]:
        """Profile settings overlaid with the test's own settings."""
        if raw_settings is None:
            return {}
        if not isinstance(raw_settings, dict):
            raise ConfigurationError("'settings' must be a mapping", source=source)

        profile_name = raw_settings.get("profile")
        merged: Dict[str, Any] = {}
        if profile_name:
            if self.profiles_file is None:
                logger.warning(
                    f"{source}: profile '{profile_name}' requested but no profiles file given"
                )
            else:
                profile = self._profiles().get(str(profile_name))
                if profile is None:
                    logger.warning(
                        f"{source}: profile '{profile_name}' not found in {self.profiles_file}"
                    )
                else:
                    merged.update(profile)
        merged.update(raw_settings)
        return merged

    def load_spec(self, path: Union[str, Path]) -> TestSpec:
        """
        Parse one test file.

        Raises:
            ConfigurationError: unreadable file or invalid specification
        """
        path = Path(path)
        data = _read_yaml(path)
        if not isinstance(data, dict):
            raise ConfigurationError("Test file must contain a mapping", source=str(path))

        data = dict(data)
        data["settings"] = self.resolve_settings(data.get("settings"), str(path))
        data["source_path"] = str(path)

        try:
            spec = TestSpec.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError(str(e), source=str(path)) from e

        logger.debug(f"Loaded test '{spec.name}' from {path}")
        return spec

    def load_specs(self, paths: Sequence[Union[str, Path]]) -> List[TestSpec]:
        return [self.load_spec(path) for path in paths]

    def read_queries(self, spec: TestSpec) -> List[str]:
        """
        Query templates of a spec, reading query_file when given.

        A ``.tsv`` query file holds one escaped query per line; any other
        file is a single query.
        """
        if spec.query:
            return list(spec.query)

        query_path = Path(spec.query_file or "")
        if not query_path.is_absolute() and spec.source_path:
            query_path = Path(spec.source_path).parent / query_path

        try:
            content = query_path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigurationError(
                f"Cannot read query file {query_path}: {e}", source=spec.source_path
            ) from e

        if query_path.suffix.lower() == ".tsv":
            return [unescape_tsv(line) for line in content.splitlines() if line.strip()]
        return [content]


def _collect_dir(directory: Path, recursive: bool, out: List[Path]) -> None:
    if is_spec_file(directory):
        logger.warning(f"'{directory}' is a directory, but has a YAML extension")

    for entry in sorted(directory.iterdir()):
        if entry.is_dir():
            if recursive:
                _collect_dir(entry, recursive, out)
        elif is_spec_file(entry):
            out.append(entry)


def discover_spec_files(
    inputs: Sequence[Union[str, Path]],
    recursive: bool = False,
    cwd: Optional[Path] = None,
) -> List[Path]:
    """
    Expand command-line inputs into test files.

    Without inputs the current directory is searched.
    """
    found: List[Path] = []

    if not inputs:
        root = cwd or Path(".")
        logger.info("Trying to find test scenario files in the current folder...")
        _collect_dir(root, recursive, found)
        if not found:
            raise ConfigurationError("Did not find any YAML test files")
        logger.info(f"Found {len(found)} files.")
        return found

    for raw in inputs:
        path = Path(raw)
        if not path.exists():
            raise ConfigurationError(f"File '{path}' does not exist")
        if path.is_dir():
            _collect_dir(path, recursive, found)
        elif not is_spec_file(path):
            raise ConfigurationError(f"File '{path}' does not have a YAML extension")
        else:
            found.append(path)

    return found
