import logging

logger = logging.getLogger("fleetsync")
