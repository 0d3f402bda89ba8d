"""
main.py: server launcher and entry point.

Run this file to start the unit picker API:

    python main.py

This file does NOT contain application logic. See unitpicker/main.py for the
FastAPI application, service wiring, and startup sequence.

Direct uvicorn usage:
    uvicorn unitpicker.main:app --reload

Keep a single worker process: the allocation engine serializes claims in
memory and the change broadcaster fans out to viewers of this process only.
"""

from __future__ import annotations

import os

import uvicorn


HOST = os.getenv("HOST", "127.0.0.1")
PORT = int(os.getenv("PORT", "8000"))


def main() -> None:
    """Start the unit picker server."""
    print(f"\n  Unit picker API → http://{HOST}:{PORT}/docs\n")
    uvicorn.run(
        "unitpicker.main:app",
        host=HOST,
        port=PORT,
        workers=1,
        log_level="info",
    )


if __name__ == "__main__":
    main()
