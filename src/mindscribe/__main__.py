"""Allow `python -m mindscribe` to launch the voice CLI."""

import asyncio
import sys

from mindscribe.main import main

sys.exit(asyncio.run(main()))
