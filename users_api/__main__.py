"""Run the users API with uvicorn: ``python -m users_api``."""

import uvicorn

from users_api.config.loader import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        "users_api.main:app",
        host=settings.listen_host,
        port=settings.listen_port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
