"""
Run the progress-sync CLI.

Usage:
    python -m progress_sync status <identity>
"""

import sys

from .interface.cli import main

if __name__ == "__main__":
    sys.exit(main())
