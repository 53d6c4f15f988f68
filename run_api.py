"""
Marketplace API entrypoint.

Settings come from the environment / .env via marketplace.config; this
wrapper only turns a startup crash into a readable message.
"""

import logging
import sys

from marketplace.config import settings
from marketplace.main import run


def main() -> None:
    try:
        run()
    except Exception:
        logging.basicConfig(level=logging.ERROR)
        logging.exception("Marketplace API failed to start.")
        print("\nMarketplace API failed to start.")
        print(f"   listen:   {settings.host}:{settings.port}")
        print("   Check DATABASE_URL / DB_PATH, whether PORT is free, and the installed dependencies.\n")
        sys.exit(1)


if __name__ == "__main__":
    main()
