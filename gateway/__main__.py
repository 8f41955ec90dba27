"""Run the gateway with uvicorn: ``python -m gateway``."""

import uvicorn

from gateway.core.config import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        "gateway.main:app",
        host="0.0.0.0",
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
