from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict


@dataclass
class WebUISettings:
    host: str = "127.0.0.1"
    port: int = 8090
    base_path: str = "/"


def parse_webui_settings(raw: Dict[str, Any]) -> WebUISettings:
    web = raw.get("webui", {}) or {}

    return WebUISettings(
        host=str(web.get("host", "127.0.0.1")),
        port=int(web.get("port", 8090)),
        base_path=str(web.get("base_path", "/")) or "/",
    )
