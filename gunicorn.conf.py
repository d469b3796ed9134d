import os

# Bind to the port provided via the PORT environment variable, defaulting to
# 5000.
bind = f"0.0.0.0:{os.getenv('PORT', '5000')}"

# Use eventlet workers to support WebSocket connections from Flask-SocketIO.
worker_class = "eventlet"

# A single worker keeps the in-process table commission locks authoritative.
workers = 1

# Closeout claims older than CLOSEOUT_CLAIM_TIMEOUT are treated as abandoned,
# so a request must never be allowed to outlive it.
timeout = int(os.getenv("GUNICORN_TIMEOUT", "120"))
