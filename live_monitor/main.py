"""Entry point for running the live monitor server."""

import uvicorn

from .app import app
from .config import HOST, PORT


def main():
    """Run the FastAPI application."""
    uvicorn.run(
        app,
        host=HOST,
        port=PORT,
        log_level="info"
    )


if __name__ == "__main__":
    main()
