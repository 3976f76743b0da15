from __future__ import annotations

import uvicorn

from .config import settings
from .logging_config import configure_logging


def main() -> None:
    configure_logging(settings.log_level)
    uvicorn.run("timelog.main:app", host=settings.host, port=settings.port, reload=False)


if __name__ == "__main__":
    main()
