import logging

import uvicorn

from compile_runner.settings import load_settings


def main() -> None:
    settings = load_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    uvicorn.run("compile_runner.api:app", host="0.0.0.0", port=settings.port, reload=False)


if __name__ == "__main__":
    main()
