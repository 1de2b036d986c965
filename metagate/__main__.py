"""Run the proxy: python -m metagate"""

import uvicorn

from metagate.config.settings import settings


def main() -> None:
    uvicorn.run(
        "metagate.core.gateway:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        proxy_headers=True,
    )


if __name__ == "__main__":
    main()
