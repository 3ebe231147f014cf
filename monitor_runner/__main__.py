"""Entry point for ``python -m monitor_runner``."""

import sys

from monitor_runner.cli.main import main

if __name__ == "__main__":
    sys.exit(main())
