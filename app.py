#!/usr/bin/env python3
"""
Storage Deal Probe - Main Application Entry Point.

============================================================
SINGLE ENTRYPOINT
============================================================
This is the ONE executable entry point for the probe.

- Compatible with PM2 process management
- Can be started, stopped, and restarted safely
- SIGINT and SIGTERM trigger the same graceful shutdown

============================================================
USAGE
============================================================
Direct execution:
    python app.py
    python app.py --standalone --size-preset small

With PM2:
    pm2 start app.py --interpreter python --name qab-probe -- --standalone

Environment-based configuration (.env is loaded):
    LOTUS_API_URL=http://127.0.0.1:1234/rpc/v0
    LOTUS_API_TOKEN=...
    QAB_BACKEND_URL=http://127.0.0.1:3000
    QAB_STANDALONE=true

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
