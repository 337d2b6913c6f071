#!/usr/bin/env python3
"""
Quick runner for Case Documents Service
=======================================

Usage:
    python -m casedocs.run
"""

import uvicorn

if __name__ == "__main__":
    print("Starting Case Documents Service...")
    print("API docs: http://localhost:8000/docs")
    print("Health:   http://localhost:8000/health")
    print()

    uvicorn.run(
        "casedocs.api:app",
        host="0.0.0.0",
        port=8000,
        reload=True
    )
