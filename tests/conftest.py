# tests/conftest.py
import os
import sys

# Ensure repository root is on PYTHONPATH for tests
repo_root = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
if repo_root not in sys.path:
    sys.path.insert(0, repo_root)

# Keep tests independent of a developer's .env
os.environ.setdefault("NEO4J_PASSWORD", "test-password")
os.environ.setdefault("ENABLE_RICH_CONSOLE", "false")
os.environ.setdefault("LOG_FILE", "")
