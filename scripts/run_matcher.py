#!/usr/bin/env python3
"""Entry point for the background outreach matcher worker.

Usage:
    python scripts/run_matcher.py              # work the queue until interrupted
    python scripts/run_matcher.py QUERY_ID     # process one query and exit
"""
import sys
import os
import logging
import threading

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from slack_sdk import WebClient

from reachbot.app import build_services
from reachbot.config import SLACK_BOT_TOKEN
from reachbot.slack_bot import SlackTransport

logger = logging.getLogger("run_matcher")


def main():
    logging.basicConfig(level=logging.INFO)
    if not SLACK_BOT_TOKEN:
        raise RuntimeError("SLACK_BOT_TOKEN is not set. Check .env or Secret Manager")

    services = build_services(SlackTransport(WebClient(token=SLACK_BOT_TOKEN)))

    if len(sys.argv) > 1:
        created = services.matcher.process(sys.argv[1])
        logger.info("Created %d reach-outs for query %s", created, sys.argv[1])
        return

    stop = threading.Event()
    try:
        services.matcher.run_forever(services.job_queue, stop)
    except KeyboardInterrupt:
        stop.set()
        logger.info("Interrupted, shutting down")


if __name__ == "__main__":
    main()
