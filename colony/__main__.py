"""Entry point for ``python -m colony``."""

import sys

from colony.cli import main

sys.exit(main())
