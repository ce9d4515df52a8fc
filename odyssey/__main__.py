import logging

import uvicorn

from odyssey.config import settings


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run("odyssey.main:app", host=settings.HOST, port=settings.PORT)


if __name__ == "__main__":
    main()
