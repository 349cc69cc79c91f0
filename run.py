#!/usr/bin/env python3
"""
Funds Transfer Engine Entry Point

Starts the FastAPI server with the store configured by
TRANSFER_ENGINE_DATABASE_URL (default: SQLite file transfer_engine.db).
"""

import sys
from pathlib import Path

# Add the project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from transfer_engine.api import run_server
from transfer_engine.config import get_config


if __name__ == "__main__":
    config = get_config()
    print(f"Starting Funds Transfer Engine on http://{config.api_host}:{config.api_port}")
    print(f"Ledger store: {config.database_url}")

    try:
        run_server()
    except KeyboardInterrupt:
        print("\nShutting down Funds Transfer Engine...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)
