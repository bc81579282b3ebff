"""Allow running the session driver with `python -m toolchat`."""

import sys

from toolchat.cli import main

if __name__ == "__main__":
    sys.exit(main())
