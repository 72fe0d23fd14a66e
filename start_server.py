#!/usr/bin/env python3
"""Start the dispatch API under uvicorn, honouring the PORT environment variable."""

import os
import sys
import subprocess

port = os.environ.get("PORT", "8000")
try:
    port_int = int(port)
except ValueError:
    print(f"Warning: Invalid PORT value '{port}', using default 8000", file=sys.stderr)
    port_int = 8000

# The app is imported as src.app.main from the project root.
root = os.path.dirname(os.path.abspath(__file__))
pythonpath = os.environ.get("PYTHONPATH", "")
os.environ["PYTHONPATH"] = f"{root}:{pythonpath}" if pythonpath else root

cmd = [
    sys.executable,
    "-m",
    "uvicorn",
    "src.app.main:app",
    "--host",
    os.environ.get("HOST", "0.0.0.0"),
    "--port",
    str(port_int),
    "--proxy-headers",
    "--forwarded-allow-ips", "*",
]

print(f"Starting dispatch API on port {port_int} (storage: {os.environ.get('DISPATCH_STORAGE_BACKEND', 'memory')})", file=sys.stderr)

try:
    sys.exit(subprocess.call(cmd, cwd=root))
except KeyboardInterrupt:
    print("Server interrupted by user", file=sys.stderr)
    sys.exit(0)
