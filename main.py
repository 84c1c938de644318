"""
Bounded Retry - Command Line Interface

Runs a unit of work with bounded retries, a hard per-attempt time limit and
an overall time budget. Equivalent to the installed ``bounded-retry`` script.
"""

import sys

from bounded_retry.cli.main import main

if __name__ == "__main__":
    sys.exit(main())
