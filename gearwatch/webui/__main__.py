from __future__ import annotations

import logging
import os
from pathlib import Path
import importlib.util

if importlib.util.find_spec("uvicorn") is None:
    raise SystemExit(
        "Web UI dependencies are missing. Install with `pip install '.[webui]'` or "
        "`pip install fastapi uvicorn`"
    )

import uvicorn

from ..cli import build_session
from ..config import load_config, load_fixtures
from ..logging_setup import configure_logging_from_dict
from .app import create_app
from .config import parse_webui_settings


def main():
    """Entry point for the gearwatch-webui command.

    Reads the config named by GEARWATCH_CONFIG (and, optionally, a fixtures
    file named by GEARWATCH_FIXTURES), builds one monitor session and serves
    it with uvicorn.
    """
    config_path = Path(os.environ.get("GEARWATCH_CONFIG", "./config.yaml"))
    cfg = load_config(config_path)
    configure_logging_from_dict(cfg)
    logger = logging.getLogger(__name__)
    logger.info(f"WebUI logging configured from {config_path}")

    fixtures_raw = os.environ.get("GEARWATCH_FIXTURES")
    fixtures = load_fixtures(Path(fixtures_raw)) if fixtures_raw else None

    settings = parse_webui_settings(cfg)
    app = create_app(build_session(cfg, fixtures))

    logger.info(f"Starting WebUI on {settings.host}:{settings.port}")
    uvicorn.run(app, host=settings.host, port=settings.port, root_path=settings.base_path)


if __name__ == "__main__":
    main()
