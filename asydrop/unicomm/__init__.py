import logging

logger = logging.getLogger('asydrop.unicomm')
