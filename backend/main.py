"""Entry point for running the FastAPI application."""

import os

import uvicorn
from dotenv import load_dotenv

load_dotenv()

from src.services.config import configure_logging, get_config  # noqa: E402

if __name__ == "__main__":
    configure_logging(get_config())

    # Can be overridden: PORT=7860 python main.py
    port = int(os.getenv("PORT", "8000"))

    uvicorn.run(
        "src.api.main:app",
        host="127.0.0.1",
        port=port,
        reload=True,
    )
