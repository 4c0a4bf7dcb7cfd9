# Shelly Exporter - Configuration
# Author: IntelligentToasters
# License: GNU General Public License v3.0
#
# Loads, validates and writes the YAML configuration file listing the
# devices to export.
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.

"""shelly_exporter.config

Example file:

    listen_port: 10037
    log_level: INFO
    log_to_file: false
    log_file: logs/shelly_exporter.log
    targets:
      - name: kitchen-plug
        url: http://192.168.1.20
        model: plus_plug
        password: secret
        request_timeout: 3
        min_interval: 0.8
        ignore: [temperature]
      - name: switchboard
        url: http://192.168.1.23
        model: pro_4pm
        components: true
      - name: house-meter
        url: http://192.168.1.21
        model: pro_3em
        meters:
          - index: 0
          - index: 1
            ignore: [power_factor]

`parse_config` checks the whole document and raises one ConfigError
listing every problem it found.
"""
from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Set

import yaml

from .models import MODELS, DeviceModel
from .poller import DEFAULT_MIN_INTERVAL

log = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = os.path.join("config", "shelly_exporter.yml")
DEFAULT_LISTEN_PORT = 10037
DEFAULT_REQUEST_TIMEOUT = 3.0
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigError(ValueError):
    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("Configuration errors:\n  " + "\n  ".join(self.errors))


@dataclass
class MeterConfig:
    index: int
    ignore: List[str] = field(default_factory=list)


@dataclass
class TargetConfig:
    name: str
    url: str
    model: str
    username: Optional[str] = None
    password: Optional[str] = None
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    min_interval: float = DEFAULT_MIN_INTERVAL
    ignore: List[str] = field(default_factory=list)
    meters: List[MeterConfig] = field(default_factory=list)
    components: bool = False

    @property
    def device_model(self) -> DeviceModel:
        return MODELS[self.model]

    def meter_indexes(self) -> List[int]:
        if self.meters:
            return [m.index for m in self.meters]
        return self.device_model.meter_indexes

    def ignored(self, index: Optional[int] = None) -> Set[str]:
        """Field keys ignored device-wide, plus those of meter `index`."""
        keys = set(self.ignore)
        if index is not None:
            for m in self.meters:
                if m.index == index:
                    keys.update(m.ignore)
        return keys


@dataclass
class ExporterConfig:
    listen_port: int = DEFAULT_LISTEN_PORT
    log_level: str = "INFO"
    log_to_file: bool = False
    log_file: str = os.path.join("logs", "shelly_exporter.log")
    targets: List[TargetConfig] = field(default_factory=list)


def _number(doc: Dict[str, Any], key: str, default: float, where: str, errors: List[str]) -> float:
    value = doc.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        errors.append(f"{where}: {key} must be a number, got {value!r}")
        return default
    return float(value)


def _key_list(value: Any, where: str, errors: List[str]) -> List[str]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        errors.append(f"{where}: ignore must be a list of field names")
        return []
    return list(value)


def _parse_target(doc: Any, pos: int, errors: List[str]) -> Optional[TargetConfig]:
    where = f"targets[{pos}]"
    if not isinstance(doc, dict):
        errors.append(f"{where}: must be a mapping")
        return None
    name = doc.get("name")
    if isinstance(name, str) and name:
        where = f"target {name!r}"
    else:
        errors.append(f"{where}: name is required")
    url = doc.get("url")
    if not isinstance(url, str) or not url.strip():
        errors.append(f"{where}: url is required")
    model_key = doc.get("model")
    model = MODELS.get(model_key) if isinstance(model_key, str) else None
    if model is None:
        errors.append(f"{where}: unknown model {model_key!r} (known: {', '.join(sorted(MODELS))})")

    username = doc.get("username") or None
    password = doc.get("password") or None
    if password is not None and not isinstance(password, str):
        password = str(password)
    if model is not None:
        if model.transport == "http":
            if bool(username) != bool(password):
                errors.append(f"{where}: username and password must be given together")
        elif username is not None:
            errors.append(f"{where}: {model.key} devices authenticate as 'admin', remove username")

    timeout = _number(doc, "request_timeout", DEFAULT_REQUEST_TIMEOUT, where, errors)
    if timeout <= 0:
        errors.append(f"{where}: request_timeout must be > 0, got {timeout}")
    min_interval = _number(doc, "min_interval", DEFAULT_MIN_INTERVAL, where, errors)
    if min_interval < 0:
        errors.append(f"{where}: min_interval must be >= 0, got {min_interval}")

    components = doc.get("components", False)
    if not isinstance(components, bool):
        errors.append(f"{where}: components must be true or false, got {components!r}")
        components = False
    elif components and model is not None and not model.supports_components:
        errors.append(f"{where}: {model.key} does not report BTHome components")

    ignore = _key_list(doc.get("ignore"), where, errors)
    if model is not None:
        known = model.field_keys()
        for key in ignore:
            if key not in known:
                errors.append(f"{where}: unknown field {key!r} in ignore (known: {', '.join(known)})")

    meters: List[MeterConfig] = []
    raw_meters = doc.get("meters") or []
    if not isinstance(raw_meters, list):
        errors.append(f"{where}: meters must be a list")
        raw_meters = []
    seen: Set[int] = set()
    for raw in raw_meters:
        if not isinstance(raw, dict) or isinstance(raw.get("index"), bool) or not isinstance(raw.get("index"), int):
            errors.append(f"{where}: every meter needs an integer index")
            continue
        index = raw["index"]
        meter_where = f"{where} meter {index}"
        if index in seen:
            errors.append(f"{meter_where}: listed twice")
        seen.add(index)
        meter_ignore = _key_list(raw.get("ignore"), meter_where, errors)
        if model is not None:
            if index not in model.meter_indexes:
                errors.append(f"{meter_where}: {model.key} has meters {model.meter_indexes}")
            known = model.field_keys(per_meter=True)
            for key in meter_ignore:
                if key not in known:
                    errors.append(f"{meter_where}: unknown per-meter field {key!r}")
        meters.append(MeterConfig(index=index, ignore=meter_ignore))

    if not isinstance(name, str) or model is None or not isinstance(url, str):
        return None
    return TargetConfig(
        name=name,
        url=url.strip(),
        model=model.key,
        username=username,
        password=password,
        request_timeout=timeout,
        min_interval=min_interval,
        ignore=ignore,
        meters=meters,
        components=components,
    )


def parse_config(doc: Any) -> ExporterConfig:
    if doc is None:
        doc = {}
    if not isinstance(doc, dict):
        raise ConfigError(["top level must be a mapping"])
    errors: List[str] = []

    port = doc.get("listen_port", DEFAULT_LISTEN_PORT)
    if isinstance(port, bool) or not isinstance(port, int) or not (1 <= port <= 65535):
        errors.append(f"listen_port must be between 1 and 65535, got {port!r}")
        port = DEFAULT_LISTEN_PORT

    level = str(doc.get("log_level", "INFO")).upper()
    if level not in LOG_LEVELS:
        errors.append(f"log_level must be one of {', '.join(LOG_LEVELS)}, got {level!r}")

    cfg = ExporterConfig(
        listen_port=port,
        log_level=level,
        log_to_file=bool(doc.get("log_to_file", False)),
        log_file=str(doc.get("log_file") or ExporterConfig.log_file),
    )

    raw_targets = doc.get("targets") or []
    if not isinstance(raw_targets, list):
        errors.append("targets must be a list")
        raw_targets = []
    if not raw_targets:
        errors.append("no targets configured")
    names: Set[str] = set()
    for pos, raw in enumerate(raw_targets):
        target = _parse_target(raw, pos, errors)
        if target is None:
            continue
        if target.name in names:
            errors.append(f"target {target.name!r}: duplicate name")
        names.add(target.name)
        cfg.targets.append(target)

    if errors:
        raise ConfigError(errors)
    return cfg


def load_config(path: str = DEFAULT_CONFIG_PATH) -> ExporterConfig:
    """Read and validate `path`. Raises FileNotFoundError or ConfigError."""
    with open(path, "r", encoding="utf-8") as f:
        try:
            doc = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError([f"{path} is not valid YAML: {e}"]) from e
    return parse_config(doc)


def to_dict(config: ExporterConfig) -> Dict[str, Any]:
    doc = asdict(config)
    for target in doc["targets"]:
        for key in ("username", "password"):
            if target[key] is None:
                del target[key]
        if not target["meters"]:
            del target["meters"]
    return doc


def save_config(config: ExporterConfig, path: str) -> None:
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(to_dict(config), f, sort_keys=False, default_flow_style=False)


def example_config() -> ExporterConfig:
    return ExporterConfig(targets=[
        TargetConfig(name="plus-plug", url="http://192.168.1.20", model="plus_plug", password="changeme"),
        TargetConfig(name="pro-3em", url="http://192.168.1.21", model="pro_3em",
                     meters=[MeterConfig(index=0), MeterConfig(index=1), MeterConfig(index=2)]),
        TargetConfig(name="em", url="http://192.168.1.22", model="em"),
    ])


def write_example_config(path: str) -> None:
    save_config(example_config(), path)
    log.info("Wrote example configuration to %s", path)


def refresh_config_file(config: ExporterConfig, path: str) -> None:
    """Rewrite `path` so options added in newer versions show up with defaults."""
    try:
        save_config(config, path)
    except OSError as e:
        log.warning("Could not update %s: %s", path, e)
