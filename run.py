"""
OpsBoard Application Runner

Usage:
    python run.py          → Start the API (port from API_PORT)
    python run.py api      → Start the API
    python run.py dev      → Start the API with auto-reload
"""

import sys

import uvicorn

from opsboard.core.config import settings


def run_api(reload: bool = False):
    """Run the FastAPI server."""
    print(f"Starting {settings.APP_NAME} API on http://localhost:{settings.API_PORT}")
    if settings.DEBUG:
        print(f"API docs available at http://localhost:{settings.API_PORT}/api/docs")
    uvicorn.run(
        "opsboard.main:app",
        host="0.0.0.0",
        port=settings.API_PORT,
        reload=reload,
    )


if __name__ == "__main__":
    mode = sys.argv[1] if len(sys.argv) > 1 else "api"
    if mode == "api":
        run_api()
    elif mode == "dev":
        run_api(reload=True)
    else:
        print(f"Unknown mode '{mode}'. Use: api | dev")
        sys.exit(1)
