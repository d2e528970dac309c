#!/usr/bin/env python3
"""
Checkbook Engine Entry Point

Starts the FastAPI server with the checkbook inventory and numbering engine.
Host, port and storage come from CHECKBOOK_* environment variables.
"""

import sys

from checkbook_core.api import run_server
from checkbook_core.config import get_config


if __name__ == "__main__":
    config = get_config()
    print("Starting checkbook engine...")
    print(f"Storage: {config.database_url}")
    print(f"API available at: http://localhost:{config.api_port}")
    print(f"Documentation at: http://localhost:{config.api_port}/docs")
    print()

    try:
        run_server(debug="--reload" in sys.argv)
    except KeyboardInterrupt:
        print("\nShutting down checkbook engine...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)
