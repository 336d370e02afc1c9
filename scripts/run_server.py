#!/usr/bin/env python
"""Run the recipe chat API with uvicorn."""
import argparse
import logging
import os
from pathlib import Path

import uvicorn
from dotenv import load_dotenv

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("run_server")


def main():
    # Load .env at repo root
    repo_root = Path(__file__).resolve().parents[1]
    env_path = repo_root / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--host", default=os.getenv("HOST", "127.0.0.1"))
    parser.add_argument("--port", type=int, default=int(os.getenv("PORT", "8000")))
    parser.add_argument("--reload", action="store_true")
    args = parser.parse_args()

    logger.info("Starting recipe chat on %s:%s", args.host, args.port)
    uvicorn.run("recipe_chat.app.main:app", host=args.host, port=args.port, reload=args.reload)


if __name__ == "__main__":
    main()
