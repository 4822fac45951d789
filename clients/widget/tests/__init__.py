"""Test package for the chat sync widget engine."""

import logging

logging.getLogger("asyncio").setLevel(logging.ERROR)
