"""Profile and config loading for YAML-based stationctl settings."""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass
from importlib import resources
from importlib.resources.abc import Traversable
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validators

from stationctl.core.errors import ConfigLoadError, ConfigValidationError
from stationctl.core.model import (
    CharacteristicRole,
    ReadingSpec,
    StationConfig,
    StationProfile,
    normalize_uuid,
)

_UUID_RE = re.compile(r"^[0-9a-f]{4}$|^[0-9a-f]{8}$|^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$")
LOGGER = logging.getLogger(__name__)


class UniqueKeyLoader(yaml.SafeLoader):
    """YAML loader that rejects duplicate mapping keys."""


UniqueKeyLoader.yaml_implicit_resolvers = {
    key: list(value) for key, value in yaml.SafeLoader.yaml_implicit_resolvers.items()
}

for first_char, mappings in list(UniqueKeyLoader.yaml_implicit_resolvers.items()):
    UniqueKeyLoader.yaml_implicit_resolvers[first_char] = [
        (tag, regexp)
        for tag, regexp in mappings
        if tag != "tag:yaml.org,2002:bool"
    ]


def _construct_mapping(loader: UniqueKeyLoader, node: yaml.Node, deep: bool = False) -> dict[str, Any]:
    mapping: dict[str, Any] = {}
    for key_node, value_node in node.value:
        key = loader.construct_object(key_node, deep=deep)
        if key in mapping:
            raise ConfigValidationError(f"Duplicate key '{key}' in YAML document")
        mapping[key] = loader.construct_object(value_node, deep=deep)
    return mapping


UniqueKeyLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG,
    _construct_mapping,
)


@dataclass(frozen=True)
class LoadedProfiles:
    profiles: dict[str, StationProfile]
    warnings: tuple[str, ...]


def _load_schema_validator(name: str) -> Any:
    schema_text = resources.files("stationctl.schemas").joinpath(name).read_text(
        encoding="utf-8"
    )
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def _validate(doc: dict[str, Any], schema_name: str, source: Path | Traversable) -> None:
    validator = _load_schema_validator(schema_name)
    try:
        validator.validate(doc)
    except ValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise ConfigValidationError(f"Schema validation failed for {source}{where}: {exc.message}") from exc


def _config_home() -> Path:
    return Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config")) / "stationctl"


def _profile_dirs() -> tuple[Path, Path]:
    xdg_data = Path(os.environ.get("XDG_DATA_HOME", Path.home() / ".local/share"))
    return _config_home() / "profiles", xdg_data / "stationctl/profiles"


def default_config_path() -> Path:
    return _config_home() / "config.yaml"


def _read_yaml(path: Path | Traversable) -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigLoadError(f"Could not read {path}: {exc}") from exc

    try:
        loaded = yaml.load(content, Loader=UniqueKeyLoader)
    except yaml.YAMLError as exc:
        raise ConfigValidationError(f"Invalid YAML in {path}: {exc}") from exc

    if not isinstance(loaded, dict):
        raise ConfigValidationError(f"File {path} must contain a mapping at root")
    return loaded


def _parse_int(value: int | str, *, context: str) -> int:
    if isinstance(value, int):
        return value
    try:
        return int(value.strip(), 0)
    except ValueError as exc:
        raise ConfigValidationError(f"{context} must be an integer or 0x-prefixed hex") from exc


def _normalize_bool(value: Any, *, context: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered == "true":
            return True
        if lowered == "false":
            return False
    raise ConfigValidationError(f"{context} must be boolean true/false")


def _normalize_profile_uuid(value: str, *, context: str) -> str:
    normalized = value.strip().lower()
    if not _UUID_RE.match(normalized):
        raise ConfigValidationError(
            f"{context} must be a 16-bit, 32-bit, or 128-bit UUID string"
        )
    return normalize_uuid(normalized)


def _build_profile(doc: dict[str, Any], source: Path | Traversable) -> StationProfile:
    _validate(doc, "profile.schema.json", source)

    company_id = _parse_int(doc["company_id"], context=f"{doc['id']}.company_id")
    if not 0 <= company_id <= 0xFFFF:
        raise ConfigValidationError(f"{doc['id']}.company_id must fit in 16 bits")

    characteristics = {
        role: _normalize_profile_uuid(
            doc["characteristics"][role.value],
            context=f"{doc['id']}.characteristics.{role.value}",
        )
        for role in CharacteristicRole
    }

    readings: list[ReadingSpec] = []
    type_ids: set[int] = set()
    for name, spec in doc["readings"].items():
        type_id = _parse_int(spec["type"], context=f"{doc['id']}.readings.{name}.type")
        if not 0 <= type_id <= 0xFF:
            raise ConfigValidationError(f"{doc['id']}.readings.{name}.type must fit in one byte")
        if type_id in type_ids:
            raise ConfigValidationError(f"{doc['id']}.readings.{name} reuses type 0x{type_id:02x}")
        type_ids.add(type_id)
        readings.append(
            ReadingSpec(
                name=name,
                type_id=type_id,
                size=int(spec["size"]),
                signed=_normalize_bool(
                    spec.get("signed", False),
                    context=f"{doc['id']}.readings.{name}.signed",
                ),
                scale=spec.get("scale", 1),
            )
        )

    return StationProfile(
        id=doc["id"],
        name=doc["name"],
        company_id=company_id,
        service_uuid=_normalize_profile_uuid(doc["service_uuid"], context=f"{doc['id']}.service_uuid"),
        characteristics=characteristics,
        readings=tuple(readings),
    )


def _iter_packaged_profile_paths() -> list[Traversable]:
    profile_root = resources.files("stationctl.profiles")
    return [item for item in profile_root.iterdir() if item.name.endswith((".yml", ".yaml"))]


def _iter_user_profile_paths() -> list[Path]:
    paths: list[Path] = []
    for directory in _profile_dirs():
        if not directory.exists() or not directory.is_dir():
            continue
        paths.extend(sorted(p for p in directory.iterdir() if p.suffix in {".yml", ".yaml"}))
    return paths


def load_profiles() -> LoadedProfiles:
    profiles: dict[str, StationProfile] = {}
    warnings: list[str] = []

    for path in sorted(_iter_packaged_profile_paths(), key=lambda p: p.name):
        profile = _build_profile(_read_yaml(path), path)
        profiles[profile.id] = profile

    for path in _iter_user_profile_paths():
        profile = _build_profile(_read_yaml(path), path)
        if profile.id in profiles:
            warning = f"User profile '{profile.id}' overrides packaged profile"
            LOGGER.warning(warning)
            warnings.append(warning)
        profiles[profile.id] = profile

    return LoadedProfiles(profiles=profiles, warnings=tuple(warnings))


def load_config(path: Path | None = None) -> StationConfig:
    """Load the user config, falling back to defaults when no file exists.

    An explicitly given path must exist.
    """
    source = path or default_config_path()
    if path is None and not source.exists():
        return StationConfig()

    doc = _read_yaml(source)
    _validate(doc, "config.schema.json", source)

    defaults = StationConfig()
    return StationConfig(
        profile=doc.get("profile", defaults.profile),
        addresses=tuple(doc.get("addresses", defaults.addresses)),
        readings=tuple(doc.get("readings", defaults.readings)),
        power_on_timeout_s=float(doc.get("power_on_timeout_s", defaults.power_on_timeout_s)),
        record_timeout_s=float(doc.get("record_timeout_s", defaults.record_timeout_s)),
        scan_duration_s=float(doc.get("scan_duration_s", defaults.scan_duration_s)),
    )
