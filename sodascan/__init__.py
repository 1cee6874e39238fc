from .models import Check, CheckOutcome, Metric, Output, ScanResult, State
from .context import Counter, RunContext
from .scan import Scan

__version__ = "0.4.0"
