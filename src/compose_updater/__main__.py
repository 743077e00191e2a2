"""Entry point for ``python -m compose_updater``."""

import sys

from compose_updater.cli import main

if __name__ == "__main__":
    sys.exit(main())
