import logging

from mobipet.core import config

LOG_FORMAT = '%(asctime)s %(levelname)s [%(name)s] %(message)s'


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=(level or config.LOG_LEVEL).upper(),
        format=LOG_FORMAT,
    )
    # httpx logs every request at INFO, which includes processor URLs.
    logging.getLogger('httpx').setLevel(logging.WARNING)
