"""Shared test configuration."""
import sys
import os

# Add backend directory to path so imports work
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

# Fast SSE playback and a generous rate limit for API tests
os.environ["STREAM_SPEED"] = "1000"
os.environ["SESSION_CREATE_RATE_LIMIT"] = "1000/minute"
os.environ["STRICT_DT"] = "false"
os.environ["JSON_LOGS"] = "false"
