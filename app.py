#!/usr/bin/env python3
"""
TestOps Export Service - Main Application Entry Point.

============================================================
SINGLE ENTRYPOINT
============================================================
This is the ONE executable entry point for the service.

- Safe to run as several replicas: only the leader exports
- Handles SIGINT / SIGTERM gracefully
- Configuration comes from the environment (.env supported)

============================================================
USAGE
============================================================
Serve API and scheduler:
    python app.py serve

One-off export:
    python app.py run-once --project-id 17

Environment-based configuration:
    TESTOPS_BASE_URL=https://testops.example.com TESTOPS_TOKEN=... python app.py

============================================================
"""

import sys
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.absolute()
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from orchestrator.cli import main


if __name__ == "__main__":
    sys.exit(main())
