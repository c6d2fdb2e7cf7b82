import logging

import uvicorn

from stickershop.config import settings
from stickershop.db.sqlite import init_db


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )

    init_db()

    uvicorn.run("stickershop.web.main:app", host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
