import os

import uvicorn

from utils.logging_utils import get_tagged_logger, setup_logging

logger = get_tagged_logger(__name__, tag="server")


if __name__ == "__main__":
    setup_logging(level=os.getenv("RIDEFARE_LOG_LEVEL", "INFO"), job_name="ridefare")
    port = int(os.getenv("PORT", 8000))
    logger.info("Starting ride fare API", extra={"port": port})

    uvicorn.run(
        "ridefare.main:app",
        host="0.0.0.0",
        port=port,
        reload=False,
    )
