"""Entry point for ``python -m field_payroll``."""

import sys

from field_payroll.cli import main

if __name__ == "__main__":
    sys.exit(main())
