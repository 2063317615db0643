"""Shared pytest configuration and fixtures."""

import os

# Set environment variables before any imports
os.environ["BURNROOM_SECRET_KEY"] = "test-secret-key"
os.environ["BURNROOM_STORE"] = "memory"
os.environ["BURNROOM_PURGE"] = "0"
for _var in ("BURNROOM_CONFIG", "BURNROOM_CIPHER", "BURNROOM_MEMBERS_ONLY_READ", "SECRET_KEY"):
    os.environ.pop(_var, None)

pytest_plugins = ["burnroom.testing"]
