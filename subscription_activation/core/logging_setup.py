# subscription_activation/core/logging_setup.py

import logging

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)
    # urllib3 connection chatter drowns out the workflow logs at INFO.
    logging.getLogger("urllib3").setLevel(logging.WARNING)
