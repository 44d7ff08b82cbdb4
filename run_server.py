#!/usr/bin/env python
"""
Run script for the Solana onramp backend.

This script sets up the logging directory and serves the API with uvicorn.
"""

from pathlib import Path

# Create logs directory if it doesn't exist
logs_dir = Path("logs")
logs_dir.mkdir(exist_ok=True)

from onramp.main import main

if __name__ == "__main__":
    main()
