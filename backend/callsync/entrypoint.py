import uvicorn

from callsync.core.config import settings
from callsync.core.logging import configure_logging


def main() -> None:
    """Run the API under uvicorn with the configured host, port and log level."""
    configure_logging(settings.log_level)
    uvicorn.run(
        "callsync.main:app",
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
        log_config=None,
    )


if __name__ == "__main__":
    main()
