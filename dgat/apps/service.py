from __future__ import annotations

import uvicorn

from dgat.apps.api.main import create_app
from dgat.core.config import get_settings
from dgat.core.logging import configure_logging


BANNER = "DGAT backend service"


def main() -> None:
    configure_logging()
    settings = get_settings()
    print(f"{BANNER} listening on {settings.server_host}:{settings.server_port}")
    uvicorn.run(create_app(), host=settings.server_host, port=settings.server_port)


if __name__ == "__main__":
    main()
