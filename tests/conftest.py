import os

# backend.auth resolves API keys at import time
os.environ.setdefault("ENVIRONMENT", "development")
