#!/usr/bin/env python3
"""
Microcredit Loan Engine Entry Point

Starts the FastAPI server with host and port taken from configuration.
"""

import sys

from microcredit.api import run_server
from microcredit.config import get_config


if __name__ == "__main__":
    config = get_config()
    print("Starting Microcredit Loan Engine...")
    print(f"API available at: http://localhost:{config.api_port}")
    print(f"Documentation at: http://localhost:{config.api_port}/docs")
    print()

    try:
        run_server(debug=False)
    except KeyboardInterrupt:
        print("\nShutting down Microcredit Loan Engine...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)
