#!/usr/bin/env python3
"""
run.py — Launch pngtuber-relay without installing.

Usage (from the project directory):
    python run.py start
    python run.py start --port 3377
    python run.py init-config
    python run.py check
"""
import sys
from pathlib import Path

# Ensure the project root is on the path
sys.path.insert(0, str(Path(__file__).parent))

from pngtuber_relay.main import app

if __name__ == "__main__":
    app()
