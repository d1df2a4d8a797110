#!/usr/bin/env python3
"""
Start the Celery worker (with the embedded beat scheduler) if none is running.
"""

import asyncio
import logging
import os
import subprocess
import sys
import time

# Add the backend directory to the Python path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from chatfunnel.celery_config import celery_app
from chatfunnel.db.init import init_db

logger = logging.getLogger(__name__)


def check_celery_worker():
    try:
        active_workers = celery_app.control.inspect().active()
        if active_workers:
            logger.info("Celery worker is running")
            return True
        logger.warning("No active Celery workers found")
        return False
    except Exception as e:
        logger.error(f"Failed to check Celery worker status: {e}")
        return False


def start_celery_worker():
    try:
        logger.info("Starting Celery worker...")
        asyncio.run(init_db()).close()
        logger.info("Database connection verified")

        cmd = [
            "celery",
            "-A", "chatfunnel.celery_worker.celery",
            "worker",
            "--beat",
            "--loglevel=info",
            "--concurrency=1"
        ]
        logger.info(f"Running command: {' '.join(cmd)}")
        process = subprocess.Popen(cmd, cwd=os.path.dirname(os.path.abspath(__file__)))
        logger.info(f"Celery worker started with PID: {process.pid}")
        return process
    except Exception as e:
        logger.error(f"Failed to start Celery worker: {e}")
        return None


def main():
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    logger.info("=== CELERY WORKER CHECK ===")
    if check_celery_worker():
        logger.info("Worker is already running, no action needed")
        return

    process = start_celery_worker()
    if not process:
        logger.error("Failed to start worker")
        sys.exit(1)

    logger.info("Worker started, press Ctrl+C to stop")
    try:
        while process.poll() is None:
            time.sleep(1)
        logger.error("Worker process died unexpectedly")
    except KeyboardInterrupt:
        logger.info("Stopping worker...")
        process.terminate()
        process.wait()
        logger.info("Worker stopped")


if __name__ == "__main__":
    main()
