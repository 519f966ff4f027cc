import logging

logger = logging.getLogger("dmarcextractor")
logger.addHandler(logging.NullHandler())
