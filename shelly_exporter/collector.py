# Shelly Exporter - Prometheus Collector
# Author: IntelligentToasters
# License: GNU General Public License v3.0
#
# Provides ShellyCollector: refreshes every configured device on scrape and
# renders the readings as Prometheus gauges.
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

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Iterator, List, Optional, Sequence

from prometheus_client.core import GaugeMetricFamily, Metric

from .device import DeviceConnection
from .models import METRICS

log = logging.getLogger(__name__)

LABELS = ["targetName", "deviceModel", "phase"]
BTHOME_DEVICE_LABELS = ["targetName", "deviceModel", "bthomeName", "bthomeAddress"]
BTHOME_SENSOR_LABELS = BTHOME_DEVICE_LABELS + ["sensorId", "sensorName"]


class ShellyCollector:
    """Custom collector: one refresh of every device per scrape.

    Devices are refreshed concurrently. A device whose refresh failed has
    its readings left out of the scrape and `shelly_device_up` set to 0.
    BTHome devices reported by a gateway are exported under `shelly_bthome_*`.
    """

    def __init__(self, devices: Sequence[DeviceConnection], max_workers: Optional[int] = None):
        self.devices: List[DeviceConnection] = list(devices)
        self._executor = ThreadPoolExecutor(max_workers=max_workers or max(1, len(self.devices)),
                                            thread_name_prefix="shelly-refresh")

    def describe(self) -> List[Metric]:
        # no describe-time refresh when registering
        return []

    def refresh_all(self) -> Dict[str, bool]:
        futures = {d.name: self._executor.submit(d.refresh) for d in self.devices}
        status: Dict[str, bool] = {}
        for name, future in futures.items():
            try:
                status[name] = future.result().success
            except Exception:
                log.exception("Unexpected error refreshing %s", name)
                status[name] = False
        return status

    def collect(self) -> Iterator[Metric]:
        status = self.refresh_all()

        up = GaugeMetricFamily("shelly_device_up", "Whether the last refresh of the device succeeded (1) or not (0)",
                               labels=["targetName", "deviceModel"])
        families: Dict[str, GaugeMetricFamily] = {}
        for device in self.devices:
            ok = status.get(device.name, False)
            up.add_metric([device.name, device.label], 1.0 if ok else 0.0)
            if not ok:
                continue
            for sample in device.samples():
                family = families.get(sample.metric)
                if family is None:
                    family = GaugeMetricFamily(sample.metric, METRICS.get(sample.metric, sample.metric), labels=LABELS)
                    families[sample.metric] = family
                family.add_metric([device.name, device.label, sample.phase], sample.value)

        yield up
        for name in sorted(families):
            yield families[name]
        yield from self._collect_bthome(status)

    def _collect_bthome(self, status: Dict[str, bool]) -> Iterator[Metric]:
        sensor_value = GaugeMetricFamily("shelly_bthome_sensor_value", "Latest value of a BTHome sensor",
                                         labels=BTHOME_SENSOR_LABELS)
        rssi = GaugeMetricFamily("shelly_bthome_device_rssi_dbm", "Signal strength of a BTHome device in dBm",
                                 labels=BTHOME_DEVICE_LABELS)
        battery = GaugeMetricFamily("shelly_bthome_device_battery_percent", "Battery level of a BTHome device",
                                    labels=BTHOME_DEVICE_LABELS)
        found = False
        for device in self.devices:
            if not device.target.components or not status.get(device.name, False):
                continue
            for bt in device.bthome_devices():
                found = True
                base = [device.name, device.label, bt.name, bt.address]
                if bt.rssi is not None:
                    rssi.add_metric(base, float(bt.rssi))
                if bt.battery is not None:
                    battery.add_metric(base, float(bt.battery))
                for sensor in bt.sensors:
                    sensor_value.add_metric(base + [str(sensor.id), sensor.name], sensor.value)
        if found:
            yield sensor_value
            yield rssi
            yield battery

    def close(self) -> None:
        self._executor.shutdown(wait=False)
        for device in self.devices:
            device.close()
