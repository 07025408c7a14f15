#!/usr/bin/env python3
"""
Simple run script for the FlowState server.

Usage:
    python run.py

Or with custom settings:
    HOST=127.0.0.1 PORT=8080 python run.py
"""

import os

import uvicorn

from flowstate.config import settings


def main():
    """Run the FastAPI application."""
    reload = os.getenv("RELOAD", "true").lower() == "true"

    print(f"""
  {settings.APP_NAME} v{settings.APP_VERSION}
  Server:    http://{settings.HOST}:{settings.PORT}
  API Docs:  http://{settings.HOST}:{settings.PORT}/docs
  Workflows: json-summarizer, tweet-to-image
    """)

    uvicorn.run(
        "flowstate.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=reload,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
