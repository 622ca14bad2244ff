# core.py
from typing import Optional
from icicle.utils.logger import RichAppLogger

# Initialized wrapper for the running process, set by the CLI entry point
app_logger: Optional[RichAppLogger] = None
