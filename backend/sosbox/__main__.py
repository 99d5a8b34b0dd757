"""Run the SOS BOX backend with uvicorn: ``python -m sosbox``."""

import uvicorn

from sosbox.config import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        "sosbox.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
