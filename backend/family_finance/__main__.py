import uvicorn

from .config import settings


def main() -> None:
    # uvicorn exits non-zero when the lifespan startup (opening the store) fails.
    uvicorn.run("family_finance.main:app", host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
