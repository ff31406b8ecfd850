"""Entry point for ``python -m synapse_workspace``."""

import sys

from synapse_workspace.cli import main

if __name__ == "__main__":
    sys.exit(main())
