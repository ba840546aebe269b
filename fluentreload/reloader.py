"""Asks a running Fluentd to reload its configuration."""

from __future__ import annotations

import logging
import urllib.error
import urllib.request
from dataclasses import dataclass

log = logging.getLogger(__name__)

RELOAD_PATH = "/api/config.gracefulReload"


@dataclass
class Reloader:
    """Sends a graceful reload request to Fluentd's RPC endpoint.

    A reloader without a port does nothing; it stands for local datasources.
    """

    port: int | None
    timeout: float | None = None

    def reload_configuration(self) -> bool:
        """Request a reload; return True when Fluentd answered with status 200."""
        if self.port is None:
            log.info("Not reloading fluentd (fake or filesystem datasource used)")
            return False

        log.info("Reloading fluentd configuration gracefully via %s", RELOAD_PATH)
        url = f"http://127.0.0.1:{self.port}{RELOAD_PATH}"
        try:
            with urllib.request.urlopen(url, timeout=self.timeout) as response:
                status = response.status
                body = response.read()
        except urllib.error.HTTPError as exc:
            body = exc.read()
            exc.close()
            log.error(
                "fluentd config.gracefulReload endpoint returned statuscode %s; response: %s",
                exc.code, body.decode(errors="replace"),
            )
            return False
        except (urllib.error.URLError, OSError) as exc:
            log.error("fluentd config.gracefulReload request failed: %s", exc)
            return False

        if status != 200:
            log.error(
                "fluentd config.gracefulReload endpoint returned statuscode %s; response: %s",
                status, body.decode(errors="replace"),
            )
            return False
        return True