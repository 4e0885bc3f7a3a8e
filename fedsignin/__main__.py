"""Allow ``python -m fedsignin``."""

import sys

from .cli import main


sys.exit(main())
