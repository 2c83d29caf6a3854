"""Conductor server entry point."""

import os

import uvicorn
from dotenv import load_dotenv

load_dotenv()

if __name__ == "__main__":
    # 127.0.0.1 for local development; set API_HOST=0.0.0.0 to expose on the network
    host = os.getenv("API_HOST", "127.0.0.1")
    port = int(os.getenv("API_PORT", 8000))
    debug = os.getenv("DEBUG", "false").lower() == "true"

    print(f"Starting Conductor API server on {host}:{port}")
    uvicorn.run("conductor.main:app", host=host, port=port, reload=debug)
