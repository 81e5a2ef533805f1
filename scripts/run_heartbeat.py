#!/usr/bin/env python3
"""
Standalone heartbeat - runs the approval expiry sweep on its own schedule.

The HTTP server runs the same sweep in a background thread. Run this one
when no server is up: it expires overdue pending rows in the approvals
audit table, including rows left behind by a stopped server.
"""

import sys
from pathlib import Path

import dotenv
dotenv.load_dotenv()

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from reddog.core.config import get_sweep_interval, is_sweep_enabled
from reddog.core.service import build_services


def main():
    """Main entry point for heartbeat script."""
    if not is_sweep_enabled():
        print("❌ Approval sweep disabled. Set APPROVAL_SWEEP_ENABLED=true to run the heartbeat")
        return 1

    services = build_services()
    heartbeat = services.heartbeat
    print(f"🏃 Approval sweep every {get_sweep_interval()} seconds")
    print(f"📋 Registered tasks: {heartbeat.list_tasks()}")
    print("💡 Press Ctrl+C to stop")

    try:
        heartbeat.run()
    except Exception as e:
        print(f"💥 Critical error: {e}")
        heartbeat.stop()
        return 1

    print("👋 Heartbeat stopped")
    return 0


if __name__ == "__main__":
    sys.exit(main())
