# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.

import os
import sys

from loguru import logger

__all__ = ["logger"]

_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)

# Replace loguru's default handler so the level is controlled from the environment
logger.remove()
logger.add(sys.stderr, level=os.environ.get("FRAMESENSE_LOG_LEVEL", "INFO").upper(), format=_FORMAT)

_log_file = os.environ.get("FRAMESENSE_LOG_FILE")
if _log_file:
    logger.add(
        _log_file,
        level="DEBUG",
        rotation="50 MB",
        retention="10 days",
        serialize=True,
        enqueue=True,
    )
