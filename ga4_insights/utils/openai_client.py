"""OpenAI client factory shared by the backend and the automation scripts."""

import os
from typing import Optional

import openai
from dotenv import load_dotenv

# Load environment variables from .env file (for local development)
load_dotenv()


def get_openai_client() -> openai.OpenAI:
    """Initialize and return an OpenAI client with proper API key configuration.

    Returns:
        openai.OpenAI: Configured OpenAI client

    Raises:
        ValueError: If no API key is found in the environment
    """
    api_key: Optional[str] = os.getenv("OPENAI_API_KEY")

    if not api_key:
        raise ValueError(
            "OpenAI API key not found. Please set OPENAI_API_KEY in the "
            "environment or in a local .env file."
        )

    return openai.OpenAI(api_key=api_key)
