import os
import logging
from typing import List

from dotenv import load_dotenv

load_dotenv()


class Settings:
    """Runtime configuration read from the environment (and a local .env file)."""

    def __init__(self):
        self.upload_dir = os.getenv("UPLOAD_DIR", "uploads")
        self.export_dir = os.getenv("EXPORT_DIR", "exports")
        self.log_level = os.getenv("LOG_LEVEL", "INFO").upper()
        self.cors_origins: List[str] = [
            origin.strip()
            for origin in os.getenv("CORS_ORIGINS", "*").split(",")
            if origin.strip()
        ]

        # GitHub Models inference endpoint used by the AI query passthrough
        self.github_token = os.getenv("GITHUB_TOKEN")
        self.github_ai_endpoint = os.getenv("GITHUB_AI_ENDPOINT", "https://models.github.ai/inference")
        self.github_ai_model = os.getenv("GITHUB_AI_MODEL", "openai/gpt-4.1")


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
