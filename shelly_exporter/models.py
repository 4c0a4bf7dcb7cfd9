# Shelly Exporter - Device Model Tables
# Author: IntelligentToasters
# License: GNU General Public License v3.0
#
# Declarative tables describing, for every supported Shelly model, which
# requests to make and which JSON fields to publish as which metrics.
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

"""Device model tables.

Every supported model is one DeviceModel: a transport ("rpc" for Gen2
WebSocket devices, "http" for Gen1 `/status` devices), the number of meters
it has, and an ordered list of Calls. Each Call lists the Fields read from
its reply.

Field paths
- Dotted paths into the reply, e.g. `result.aenergy.total`. Numeric
  segments index into lists (`emeters.0.power`).
- `{index}` is replaced with the meter index and `{phase}` with the phase
  letter (`a`, `b`, `c`) for per-meter fields.

Field keys
- `key` is the name used in the `ignore` lists of the configuration. The
  same key can appear both device-wide and per meter (Pro 3EM energy
  totals); ignoring it at target level drops both.

Conventions
- A missing or null value (or a null parent node) raises
  (KeyError/TypeError) unless the field has a `default`, in which case the
  default is published.
- Boolean fields are published as 1.0 / 0.0.
- A field with `divide_by` is derived; a zero or missing divisor yields
  None and the sample is left out for that refresh.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

PHASES = ("a", "b", "c")

# metric name -> help text
METRICS: Dict[str, str] = {
    "shelly_voltage_volts": "Voltage (V)",
    "shelly_current_amps": "Current (A)",
    "shelly_current_total_amps": "Total Current (A)",
    "shelly_power_watts": "Power (W)",
    "shelly_power_active_watts": "Active Power (W)",
    "shelly_power_apparent_va": "Apparent Power (VA)",
    "shelly_power_reactive_watts": "Reactive Power (W)",
    "shelly_power_active_total_watts": "Total Active Power (W)",
    "shelly_power_apparent_total_va": "Total Apparent Power (VA)",
    "shelly_power_factor": "Power Factor",
    "shelly_frequency_hz": "Frequency (Hz)",
    "shelly_energy_total_wh": "Total Energy (Wh)",
    "shelly_energy_returned_total_wh": "Total Energy Returned to the grid (Wh)",
    "shelly_energy_active_total_wh": "Total Active Energy (Wh)",
    "shelly_energy_active_returned_total_wh": "Total Active Energy Returned to the grid (Wh)",
    "shelly_temperature_celsius": "Temperature (°C)",
    "shelly_relay_state": "The state of the relay",
    "shelly_input_state": "The state of the input",
    "shelly_input_percent": "Input analog value in percent",
    "shelly_input_count": "Total pulses counted on the input",
    "shelly_input_frequency_hz": "Network frequency on the input in hertz",
}


def lookup(doc: Any, path: str) -> Any:
    """Walk a dotted path through nested dicts and lists."""
    node = doc
    for segment in path.split("."):
        if isinstance(node, list):
            node = node[int(segment)]
        elif isinstance(node, dict):
            node = node[segment]
        else:
            raise TypeError(f"cannot descend into {type(node).__name__} at {segment!r} of {path!r}")
    return node


@dataclass(frozen=True)
class Field:
    key: str
    path: str
    metric: str
    per_meter: bool = False
    kind: str = "float"
    default: Optional[float] = None
    divide_by: Optional[str] = None

    def resolve(self, path: str, index: Optional[int]) -> str:
        if index is None:
            return path
        return path.format(index=index, phase=PHASES[index] if index < len(PHASES) else index)

    def read(self, doc: Any, index: Optional[int] = None) -> Optional[float]:
        if self.divide_by is not None:
            return self._read_ratio(doc, index)
        try:
            value = lookup(doc, self.resolve(self.path, index))
        except (KeyError, IndexError, TypeError):
            # TypeError: a parent node on the path is null
            if self.default is None:
                raise
            return self.default
        if value is None:
            if self.default is None:
                raise TypeError(f"{self.path} is null")
            return self.default
        if self.kind == "bool":
            if not isinstance(value, (bool, int)):
                raise TypeError(f"{self.path} is not a boolean: {value!r}")
            return 1.0 if value else 0.0
        if isinstance(value, bool):
            raise TypeError(f"{self.path} is a boolean, expected a number")
        return float(value)

    def _read_ratio(self, doc: Any, index: Optional[int]) -> Optional[float]:
        numerator = float(lookup(doc, self.resolve(self.path, index)))
        try:
            divisor = lookup(doc, self.resolve(self.divide_by, index))
        except (KeyError, IndexError):
            return None
        if not divisor:
            return None
        return numerator / float(divisor)


@dataclass(frozen=True)
class Call:
    """One request per refresh (or one per meter when `per_meter`)."""

    name: str
    fields: Tuple[Field, ...]
    method: Optional[str] = None
    params: Optional[Dict[str, Any]] = None
    per_meter: bool = False


@dataclass(frozen=True)
class DeviceModel:
    key: str
    label: str
    transport: str
    calls: Tuple[Call, ...]
    meter_count: int = 0
    # Shelly.GetComponents exposes BTHome devices paired with the device
    supports_components: bool = False

    @property
    def meter_indexes(self) -> List[int]:
        return list(range(self.meter_count))

    def field_keys(self, per_meter: bool = False) -> List[str]:
        keys: List[str] = []
        for call in self.calls:
            for f in call.fields:
                if per_meter and not (f.per_meter or call.per_meter):
                    continue
                if f.key not in keys:
                    keys.append(f.key)
        return keys


def _f(key: str, path: str, metric: str, **kw: Any) -> Field:
    return Field(key=key, path=path, metric=metric, **kw)


def _m(key: str, path: str, metric: str, **kw: Any) -> Field:
    return Field(key=key, path=path, metric=metric, per_meter=True, **kw)


# Gen2 Input.GetStatus; the device reports null or omits values that do not
# apply to the input's configured mode.
_INPUT_FIELDS = (
    _f("input_state", "result.state", "shelly_input_state", kind="bool", default=0.0),
    _f("input_percent", "result.percent", "shelly_input_percent", default=0.0),
    _f("input_count", "result.counts.total", "shelly_input_count", default=0.0),
    _f("input_frequency", "result.freq", "shelly_input_frequency_hz", default=0.0),
)

_INPUT_CALL = Call("input", _INPUT_FIELDS, method="Input.GetStatus", params={"id": 0})

PLUG = DeviceModel(
    key="plug",
    label="Plug",
    transport="http",
    calls=(
        Call("status", (
            _f("power", "meters.0.power", "shelly_power_watts"),
            _f("temperature", "temperature", "shelly_temperature_celsius"),
            _f("relay_state", "relays.0.ison", "shelly_relay_state", kind="bool"),
        )),
    ),
)

EM = DeviceModel(
    key="em",
    label="Em",
    transport="http",
    meter_count=2,
    calls=(
        Call("status", (
            _f("relay_state", "relays.0.ison", "shelly_relay_state", kind="bool"),
            _m("active_power", "emeters.{index}.power", "shelly_power_active_watts"),
            _m("reactive_power", "emeters.{index}.reactive", "shelly_power_reactive_watts"),
            _m("voltage", "emeters.{index}.voltage", "shelly_voltage_volts"),
            _m("power_factor", "emeters.{index}.pf", "shelly_power_factor"),
            _m("total_energy", "emeters.{index}.total", "shelly_energy_total_wh"),
            _m("total_energy_returned", "emeters.{index}.total_returned", "shelly_energy_returned_total_wh"),
            # the EM does not report current; derive it from power and voltage
            _m("current", "emeters.{index}.power", "shelly_current_amps", divide_by="emeters.{index}.voltage"),
        )),
    ),
)

EM3 = DeviceModel(
    key="3em",
    label="3Em",
    transport="http",
    meter_count=3,
    calls=(
        Call("status", (
            _f("relay_state", "relays.0.ison", "shelly_relay_state", kind="bool"),
            _m("power", "emeters.{index}.power", "shelly_power_watts"),
            _m("current", "emeters.{index}.current", "shelly_current_amps"),
            _m("voltage", "emeters.{index}.voltage", "shelly_voltage_volts"),
            _m("power_factor", "emeters.{index}.pf", "shelly_power_factor"),
        )),
    ),
)

PLUS_PLUG = DeviceModel(
    key="plus_plug",
    label="PlusPlug",
    transport="rpc",
    calls=(
        Call("switch", (
            _f("power", "result.apower", "shelly_power_watts"),
            _f("voltage", "result.voltage", "shelly_voltage_volts"),
            _f("current", "result.current", "shelly_current_amps"),
            _f("temperature", "result.temperature.tC", "shelly_temperature_celsius"),
            _f("relay_state", "result.output", "shelly_relay_state", kind="bool"),
        ), method="Switch.GetStatus", params={"id": 0}),
    ),
)

PLUS_1PM = DeviceModel(
    key="plus_1pm",
    label="Plus1Pm",
    transport="rpc",
    calls=(
        Call("switch", (
            _f("total_energy", "result.aenergy.total", "shelly_energy_total_wh"),
            _f("total_energy_returned", "result.ret_aenergy.total", "shelly_energy_returned_total_wh"),
            _f("power", "result.apower", "shelly_power_watts"),
            _f("voltage", "result.voltage", "shelly_voltage_volts"),
            _f("current", "result.current", "shelly_current_amps"),
            _f("power_factor", "result.pf", "shelly_power_factor"),
            _f("frequency", "result.freq", "shelly_frequency_hz"),
            _f("temperature", "result.temperature.tC", "shelly_temperature_celsius"),
            _f("relay_state", "result.output", "shelly_relay_state", kind="bool"),
        ), method="Switch.GetStatus", params={"id": 0}),
        _INPUT_CALL,
    ),
)

PLUS_PM_MINI = DeviceModel(
    key="plus_pm_mini",
    label="PlusPmMini",
    transport="rpc",
    calls=(
        Call("pm", (
            _f("total_energy", "result.aenergy.total", "shelly_energy_total_wh"),
            _f("power", "result.apower", "shelly_power_watts"),
            _f("voltage", "result.voltage", "shelly_voltage_volts"),
            _f("current", "result.current", "shelly_current_amps"),
        ), method="PM1.GetStatus", params={"id": 0}),
        _INPUT_CALL,
    ),
)

PRO_4PM = DeviceModel(
    key="pro_4pm",
    label="Pro4Pm",
    transport="rpc",
    meter_count=4,
    supports_components=True,
    calls=(
        Call("status", (
            _m("current", "result.switch:{index}.current", "shelly_current_amps"),
            _m("voltage", "result.switch:{index}.voltage", "shelly_voltage_volts"),
            _m("active_power", "result.switch:{index}.apower", "shelly_power_active_watts"),
            _m("power_factor", "result.switch:{index}.pf", "shelly_power_factor"),
            _m("frequency", "result.switch:{index}.freq", "shelly_frequency_hz"),
            _m("total_active_energy", "result.switch:{index}.aenergy.total", "shelly_energy_active_total_wh"),
            _m("total_active_energy_returned", "result.switch:{index}.ret_aenergy.total",
               "shelly_energy_active_returned_total_wh"),
            _m("temperature", "result.switch:{index}.temperature.tC", "shelly_temperature_celsius"),
            _m("relay_state", "result.switch:{index}.output", "shelly_relay_state", kind="bool"),
        ), method="Shelly.GetStatus"),
    ),
)

PRO_3EM = DeviceModel(
    key="pro_3em",
    label="Pro3Em",
    transport="rpc",
    meter_count=3,
    calls=(
        Call("em", (
            _m("current", "result.{phase}_current", "shelly_current_amps"),
            _m("voltage", "result.{phase}_voltage", "shelly_voltage_volts"),
            _m("active_power", "result.{phase}_act_power", "shelly_power_active_watts"),
            _m("apparent_power", "result.{phase}_aprt_power", "shelly_power_apparent_va"),
            _m("power_factor", "result.{phase}_pf", "shelly_power_factor"),
            _f("total_current", "result.total_current", "shelly_current_total_amps"),
            _f("total_active_power", "result.total_act_power", "shelly_power_active_total_watts"),
            _f("total_apparent_power", "result.total_aprt_power", "shelly_power_apparent_total_va"),
        ), method="EM.GetStatus", params={"id": 0}),
        Call("emdata", (
            _f("total_active_energy", "result.total_act", "shelly_energy_active_total_wh"),
            _f("total_active_energy_returned", "result.total_act_ret", "shelly_energy_active_returned_total_wh"),
            _m("total_active_energy", "result.{phase}_total_act_energy", "shelly_energy_active_total_wh"),
            _m("total_active_energy_returned", "result.{phase}_total_act_ret_energy",
               "shelly_energy_active_returned_total_wh"),
        ), method="EMData.GetStatus", params={"id": 0}),
    ),
)

PRO_EM = DeviceModel(
    key="pro_em",
    label="ProEm",
    transport="rpc",
    meter_count=2,
    calls=(
        Call("em1", (
            _m("current", "result.current", "shelly_current_amps"),
            _m("voltage", "result.voltage", "shelly_voltage_volts"),
            _m("active_power", "result.act_power", "shelly_power_active_watts"),
            _m("apparent_power", "result.aprt_power", "shelly_power_apparent_va"),
            _m("power_factor", "result.pf", "shelly_power_factor"),
        ), method="EM1.GetStatus", params={"id": 0}, per_meter=True),
        Call("em1data", (
            _m("total_active_energy", "result.total_act_energy", "shelly_energy_active_total_wh"),
            _m("total_active_energy_returned", "result.total_act_ret_energy",
               "shelly_energy_active_returned_total_wh"),
        ), method="EM1Data.GetStatus", params={"id": 0}, per_meter=True),
    ),
)

MODELS: Dict[str, DeviceModel] = {m.key: m for m in (
    PLUG, EM, EM3, PLUS_PLUG, PLUS_1PM, PLUS_PM_MINI, PRO_4PM, PRO_3EM, PRO_EM,
)}


def get_model(key: str) -> DeviceModel:
    try:
        return MODELS[key]
    except KeyError:
        raise ValueError(f"unknown device model {key!r} (known: {', '.join(sorted(MODELS))})") from None
