#!/usr/bin/env python3
"""
HTTP server entrypoint.
"""

import sys
from pathlib import Path

import dotenv
dotenv.load_dotenv()

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

import uvicorn

from reddog.core.config import API_HOST, API_PORT, validate_approval_config, validate_billing_config


def main():
    issues = validate_billing_config() + validate_approval_config()
    if issues:
        print("❌ Configuration invalid:")
        for issue in issues:
            print(f"   - {issue}")
        return 1

    print(f"🚀 Starting Red Dog API on http://{API_HOST}:{API_PORT}")
    try:
        uvicorn.run("reddog.api.main:create_app", factory=True, host=API_HOST, port=API_PORT)
    except KeyboardInterrupt:
        print("\nℹ️  Server interrupted")
    return 0


if __name__ == "__main__":
    sys.exit(main())
