"""Command-line entry point: ``python -m mergerelay``."""

from __future__ import annotations

import logging

import uvicorn

from mergerelay.core.config import get_settings
from mergerelay.main import app


def main() -> None:
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
