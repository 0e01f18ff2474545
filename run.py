"""Run the watcher."""

import sys

from watchmymcserver.__main__ import main

if __name__ == "__main__":
    sys.exit(main())
