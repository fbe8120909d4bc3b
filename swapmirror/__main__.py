"""Entry point for python -m swapmirror."""

import sys

from .cli import main

sys.exit(main())
