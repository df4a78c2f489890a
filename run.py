"""Standalone FastAPI bridge entry point.

Run with: python run.py
"""
import logging
import os

import uvicorn

# Configure logging to show debug info
logging.basicConfig(
    level=logging.DEBUG if os.getenv("COMFY_DEBUG") else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

if __name__ == "__main__":
    uvicorn.run(
        "comfy_jobs.fastapi_app:app",
        host=os.getenv("BRIDGE_HOST", "127.0.0.1"),
        port=int(os.getenv("BRIDGE_PORT", "7860")),
    )
