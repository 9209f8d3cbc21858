#!/usr/bin/env python3
"""
Script to run the MedShare FastAPI application.
"""

import os
import uvicorn

# Run the FastAPI application
if __name__ == "__main__":
    host = os.getenv("API_HOST", "0.0.0.0")
    port = int(os.getenv("API_PORT", "8000"))
    uvicorn.run("medshare.api:app", host=host, port=port, reload=os.getenv("API_RELOAD") == "1")
