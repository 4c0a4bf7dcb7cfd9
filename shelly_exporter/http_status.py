# Shelly Exporter - HTTP Status Client
# Author: IntelligentToasters
# License: GNU General Public License v3.0
#
# Provides HttpStatusClient for first generation devices that only expose
# a plain HTTP `/status` document.
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
from typing import Optional

import requests
from requests.auth import HTTPBasicAuth

log = logging.getLogger(__name__)


class HttpStatusClient:
    """GET `<url>/status`, optionally with HTTP Basic credentials.

    A 401 is terminal: it is logged and the request fails, there is no
    handshake to retry.
    """

    def __init__(self, url: str, username: Optional[str] = None, password: Optional[str] = None,
                 timeout: float = 3.0, session: Optional[requests.Session] = None):
        if bool(username) != bool(password):
            raise ValueError("username and password must be given together")
        if timeout <= 0:
            raise ValueError("timeout must be > 0")
        url = url.strip().rstrip("/")
        if "://" not in url:
            url = "http://" + url
        self.url = url + "/status"
        self.timeout = float(timeout)
        self._auth = HTTPBasicAuth(username, password) if username else None
        self._session = session if session is not None else requests.Session()

    def request(self) -> Optional[str]:
        try:
            resp = self._session.get(self.url, auth=self._auth, timeout=self.timeout)
        except requests.RequestException as e:
            log.error("Status request to %s failed: %s", self.url, e)
            return None
        if resp.status_code == 401:
            log.error("%s rejected the configured credentials (401)", self.url)
            return None
        if resp.status_code != 200:
            log.error("Status request to %s returned HTTP %d", self.url, resp.status_code)
            return None
        return resp.text
