"""
Root pytest configuration.
Switches settings to the in-memory SQLite database before any app module is imported.
"""
import os

# Set testing environment before importing app
os.environ["TESTING"] = "True"
os.environ["DEBUG"] = "False"
os.environ.setdefault("PMP_SECRET", "")
