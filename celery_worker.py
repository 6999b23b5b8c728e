#!/usr/bin/env python3
"""
Celery worker script for the payment engine.
Runs the email queue and the embedded beat scheduler for the stale-payment sweep.
"""

import os
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

if __name__ == "__main__":
    from core.celery import celery_app

    celery_app.start([
        "worker",
        "--beat",
        f"--loglevel={os.getenv('LOG_LEVEL', 'info').lower()}",
        "--concurrency=4",
        "--without-gossip",
        "--without-mingle",
        "--without-heartbeat",
    ])
