#!/usr/bin/env python3
"""
Delivery Engine - Main Application Entry Point.

============================================================
SINGLE ENTRYPOINT
============================================================
This is the ONE executable entry point for the engine.

- Compatible with PM2 process management
- Can be started, stopped, and restarted safely
- Handles SIGINT / SIGTERM gracefully (in-flight deliveries
  get the shutdown grace period, then are abandoned)

============================================================
USAGE
============================================================
Direct execution:
    python app.py
    python app.py --single-tick
    python app.py --serve-api --port 8080

With PM2:
    pm2 start app.py --interpreter python --name delivery-engine -- --serve-api

Environment-based configuration:
    TICK_INTERVAL_SECONDS=30 CRON_SECRET=... python app.py --serve-api

============================================================
PM2 ECOSYSTEM CONFIG (ecosystem.config.js)
============================================================
module.exports = {
    apps: [{
        name: 'delivery-engine',
        script: 'app.py',
        interpreter: 'python',
        args: '--serve-api',
        env: {
            LOG_LEVEL: 'INFO',
            TICK_INTERVAL_SECONDS: '60',
        },
        max_restarts: 10,
        restart_delay: 5000,
        watch: false,
    }]
};

============================================================
"""

import sys
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.absolute()
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from scheduler.cli import main


# ============================================================
# ENTRY POINT
# ============================================================

if __name__ == "__main__":
    sys.exit(main())
