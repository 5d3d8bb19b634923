import uvicorn

from mental_buddy.config import settings


def main() -> None:
    uvicorn.run(
        "mental_buddy.main:app",
        host=settings.HOST,
        port=settings.PORT,
    )


if __name__ == "__main__":
    main()
