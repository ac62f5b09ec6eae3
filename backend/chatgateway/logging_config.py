import logging

LOG_FORMAT = "%(asctime)s %(levelname)s %(message)s"


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    # Request lines from httpx would repeat every streaming call
    logging.getLogger("httpx").setLevel(logging.WARNING)
