"""
Test configuration — sets required env vars before any imports.
"""

import os

# Set dummy env vars so Settings() never picks up real credentials.
# External services are always mocked; these values never reach a real API.
os.environ.setdefault("GOOGLE_AI_API_KEY", "test-google-key")
os.environ.setdefault("TELEPHONY_REGION", "mec1.pure.cloud")
os.environ["TELEPHONY_CLIENT_ID"] = ""
os.environ["TELEPHONY_QUEUE_NAME"] = ""
