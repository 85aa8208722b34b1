"""Global test configuration: run every test in testing mode."""

import os

# Set before any bundlepay import so the lifespan skips background tasks
os.environ["TESTING"] = "1"
