"""
Container health check for the investigator API.

Exits 0 when ``/health`` answers with ``status == "ok"``. With
``HEALTHCHECK_REQUIRE_LIVE=true`` the service must also be running against a
live completion endpoint rather than the mock adapter.
"""

from __future__ import annotations

import json
import os
from urllib.error import URLError
from urllib.request import urlopen


def main() -> int:
    port = os.getenv("PORT", "8000")
    path = os.getenv("HEALTHCHECK_PATH", "/health")
    require_live = os.getenv("HEALTHCHECK_REQUIRE_LIVE", "false").strip().lower() in {"1", "true", "yes", "on"}
    url = f"http://127.0.0.1:{port}{path}"

    try:
        with urlopen(url, timeout=2) as response:
            if not 200 <= response.status < 400:
                return 1
            payload = json.loads(response.read().decode("utf-8"))
    except (URLError, TimeoutError, ValueError):
        return 1

    if not isinstance(payload, dict) or payload.get("status") != "ok":
        return 1
    if require_live and not payload.get("live_endpoint"):
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
