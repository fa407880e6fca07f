"""Allow ``python -m line_test``."""

import sys

from line_test.cli import main


sys.exit(main())
