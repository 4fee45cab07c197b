"""Allow ``python -m cosmic_accounts``."""

import sys

from .cli import main


sys.exit(main())
