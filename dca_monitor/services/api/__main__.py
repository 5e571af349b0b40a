"""Module entrypoint for serving the monitor API with shared settings."""

import uvicorn

from dca_monitor.core.config import get_settings
from dca_monitor.core.logging import configure_logging


def main() -> int:
    """Serve the monitor API; uvicorn keeps the JSON log handlers installed here."""

    settings = get_settings()
    configure_logging(settings.LOG_LEVEL)
    uvicorn.run(
        "dca_monitor.services.api.main:app",
        host=settings.HOST,
        port=settings.PORT,
        log_config=None,
        log_level=settings.LOG_LEVEL.lower(),
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
