import uvicorn

from .core.config import settings


def main() -> None:
    uvicorn.run("gallery.main:app", host=settings.HTTP_HOST, port=settings.HTTP_PORT)


if __name__ == "__main__":
    main()
