#!/usr/bin/env python3
"""
Simple run script for the Workflow Engine.

Usage:
    python run.py

Or with custom settings:
    HOST=127.0.0.1 PORT=8080 PERSISTENCE_BACKEND=file python run.py
"""

import os

import uvicorn

from eventflow.config import settings


def main():
    """Run the FastAPI application."""
    host = settings.HOST
    port = settings.PORT
    reload = os.getenv("RELOAD", "true").lower() == "true"

    print(f"""
EventFlow
  An event-driven workflow engine

  Server:    http://{host}:{port}
  API Docs:  http://{host}:{port}/docs
  ReDoc:     http://{host}:{port}/redoc

  Demo workflow: content-review
  Snapshots:     {settings.PERSISTENCE_BACKEND}
    """)

    uvicorn.run(
        "eventflow.main:app",
        host=host,
        port=port,
        reload=reload,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
