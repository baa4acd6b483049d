#!/usr/bin/env python3
"""
AccessHub - Main Entry Point
============================

Access-governance backend: users request time-bounded access to tools,
designated approvers decide, and every change is audited.

Usage:
    python main.py --help            # Show available commands
    python main.py init              # Initialize database
    python main.py demo              # Load demo data
    python main.py scenario          # Run the workflow walkthrough
    python main.py serve             # Start the HTTP API
"""

import sys
import os

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from cli.main import app

if __name__ == "__main__":
    app()
