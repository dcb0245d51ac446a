#!/usr/bin/env python3
"""
Reimbursement Review Service
Main execution script - Run this file to start the API server
"""

import logging
import os

import uvicorn

from reimburse.main import create_app

logger = logging.getLogger("reimburse.run")


def main():
    """Main entry point for the reimbursement review service"""
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    port_env = os.environ.get("PORT")
    port = 8000
    if port_env:
        try:
            port = int(port_env)
        except ValueError:
            logger.warning("Invalid PORT value %r, using default 8000", port_env)

    logger.info("API documentation: http://localhost:%d/docs", port)

    app = create_app()
    uvicorn.run(
        app,
        host="0.0.0.0",
        port=port,
        reload=False,
        access_log=True,
        log_level="info",
    )


if __name__ == "__main__":
    main()
