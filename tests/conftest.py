import os
import tempfile

# Settings are read once and cached; point them at throwaway storage before
# any test module imports ``database``.
os.environ.setdefault("COSTS_DATA_DIR", tempfile.mkdtemp(prefix="costs-tests-"))
os.environ.setdefault("COSTS_DATABASE_URL", "sqlite://")
os.environ.setdefault("COSTS_SCHEDULER_ENABLED", "0")
os.environ.setdefault("COSTS_TIMEZONE", "UTC")
