"""Allow ``python -m markdowndown``."""

import sys

from .cli import main

sys.exit(main())
