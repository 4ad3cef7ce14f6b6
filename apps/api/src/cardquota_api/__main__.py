import uvicorn

from cardquota_api.core.settings import settings


def main() -> None:
    # log_config=None leaves uvicorn's loggers to the Loguru bridge
    uvicorn.run(
        "cardquota_api.app:create_app",
        factory=True,
        host="0.0.0.0",
        port=8000,
        reload=settings.environment == "development",
        log_config=None,
    )


if __name__ == "__main__":
    main()
