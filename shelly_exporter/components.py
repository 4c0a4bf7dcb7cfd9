# Shelly Exporter - BTHome Components
# Author: IntelligentToasters
# License: GNU General Public License v3.0
#
# Parses the `Shelly.GetComponents` reply into the BTHome devices paired
# with a Shelly and their sensor readings.
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

"""BTHome component parsing.

A Shelly acting as a Bluetooth gateway lists paired devices as
`bthomedevice:<id>` components and their readings as `bthomesensor:<id>`
components. Sensors point at their device through the shared `addr`.

- parse_components(doc) -> list[BtHomeDevice]
    Raises KeyError/TypeError when the reply has no `result.components`
    list. Individual components that are incomplete are skipped, as are
    sensors whose device is unknown and devices without any sensor.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

log = logging.getLogger(__name__)

DEVICE_PREFIX = "bthomedevice:"
SENSOR_PREFIX = "bthomesensor:"


@dataclass
class BtHomeSensor:
    id: int
    name: str
    value: float
    last_updated_ts: int = 0
    obj_id: int = 0
    idx: int = 0


@dataclass
class BtHomeDevice:
    id: int
    name: str
    address: str
    rssi: Optional[int] = None
    battery: Optional[int] = None
    last_updated_ts: Optional[int] = None
    sensors: List[BtHomeSensor] = field(default_factory=list)


def _config_and_status(component: Dict[str, Any]):
    config = component.get("config")
    status = component.get("status")
    if not isinstance(config, dict) or not isinstance(status, dict):
        return None, None
    return config, status


def _parse_device(component: Dict[str, Any]) -> Optional[BtHomeDevice]:
    config, status = _config_and_status(component)
    if config is None:
        return None
    name, addr = config.get("name"), config.get("addr")
    if not name or not addr or config.get("id") is None:
        return None
    try:
        device = BtHomeDevice(id=int(config["id"]), name=str(name), address=str(addr))
        if status.get("rssi") is not None:
            device.rssi = int(status["rssi"])
        if status.get("battery") is not None:
            device.battery = int(status["battery"])
        if status.get("last_updated_ts") is not None:
            device.last_updated_ts = int(status["last_updated_ts"])
    except (TypeError, ValueError) as e:
        log.debug("Skipping malformed BTHome device %r: %s", component.get("key"), e)
        return None
    return device


def _parse_sensor(component: Dict[str, Any]):
    config, status = _config_and_status(component)
    if config is None:
        return None, None
    name, addr = config.get("name"), config.get("addr")
    if not name or not addr or config.get("id") is None or status.get("value") is None:
        return None, None
    value = status["value"]
    if isinstance(value, bool):
        value = 1.0 if value else 0.0
    try:
        sensor = BtHomeSensor(
            id=int(config["id"]),
            name=str(name),
            value=float(value),
            last_updated_ts=int(status.get("last_updated_ts") or 0),
            obj_id=int(config.get("obj_id") or 0),
            idx=int(config.get("idx") or 0),
        )
    except (TypeError, ValueError) as e:
        log.debug("Skipping malformed BTHome sensor %r: %s", component.get("key"), e)
        return None, None
    return sensor, str(addr)


def parse_components(doc: Any) -> List[BtHomeDevice]:
    components = doc["result"]["components"]
    if not isinstance(components, list):
        raise TypeError("result.components is not a list")

    devices: Dict[str, BtHomeDevice] = {}
    for component in components:
        if isinstance(component, dict) and str(component.get("key", "")).startswith(DEVICE_PREFIX):
            device = _parse_device(component)
            if device is not None:
                devices[device.address] = device

    for component in components:
        if isinstance(component, dict) and str(component.get("key", "")).startswith(SENSOR_PREFIX):
            sensor, addr = _parse_sensor(component)
            if sensor is not None and addr in devices:
                devices[addr].sensors.append(sensor)

    found = [d for d in devices.values() if d.sensors]
    log.debug("Found %d BTHome devices with %d sensors", len(found), sum(len(d.sensors) for d in found))
    return found
