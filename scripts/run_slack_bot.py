#!/usr/bin/env python3
"""Entry point for the ReachBot Slack bot."""
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from reachbot.slack_bot import start

if __name__ == "__main__":
    start()
