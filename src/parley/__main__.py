"""Allow `python -m parley` to launch the client."""

import asyncio
import sys

from parley.main import main

sys.exit(asyncio.run(main()))
