"""Allow `python -m mcp_tasks`."""

import sys

from mcp_tasks.server import main

sys.exit(main())
