import logging

LOG_FORMAT = "[%(asctime)s] [%(name)s] %(levelname)s %(message)s"


def configure_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    if root.handlers:
        # uvicorn or the test runner already installed handlers
        root.setLevel(level.upper())
        return
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
