#!/usr/bin/env python3
# backend/run.py
"""
Local runner for the settlement admin API.

Uses the settings from ``.env``; point DATABASE_URL at a disposable database.
"""
import os
from pathlib import Path
import sys

backend_dir = Path(__file__).parent
sys.path.insert(0, str(backend_dir))
os.chdir(backend_dir)

import uvicorn

if __name__ == "__main__":
    port = int(os.getenv("PORT", "8000"))
    print(f"🚀 Settlement admin API on http://localhost:{port} (docs at /docs)")
    uvicorn.run("app.main:app", host="0.0.0.0", port=port, reload=True, log_level="info")
