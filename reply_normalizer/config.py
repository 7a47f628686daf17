# reply_normalizer/config.py
"""Global configuration for the reply normalizer.
All paths are absolute (via pathlib) so the code works regardless of cwd.
"""
import os
from pathlib import Path

# Load environment variables from .env file if it exists
from dotenv import load_dotenv
load_dotenv()

# ------------------- Paths -------------------
# Root of the repository (two levels up from this file)
REPO_ROOT = Path(__file__).resolve().parents[1]
LOG_DIR = REPO_ROOT / "results" / "logs"

# ------------------- Credentials -------------------
# API keys loaded from .env file or environment variables
DEEPSEEK_API_KEY = os.getenv("DEEPSEEK_API_KEY")
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")

# ------------------- Endpoint -------------------
DEEPSEEK_API_URL = os.getenv("DEEPSEEK_API_URL", "https://api.deepseek.com/chat/completions")

# Sent as HTTP-Referer / X-Title so the upstream dashboard can attribute traffic
APP_REFERER = os.getenv("APP_REFERER", "https://nimc-bot.vercel.app/")
APP_TITLE = os.getenv("APP_TITLE", "HR AI Assistant")

SYSTEM_PROMPT = "You are a helpful AI assistant."

REQUEST_TIMEOUT = 120  # seconds

# ------------------- Retry Configuration -------------------
RETRY_CONFIG = {
    "max_retries": 3,
    "initial_delay": 1.0,  # seconds
    "max_delay": 60.0,  # seconds
    "exponential_base": 2,
}

# ------------------- Models -------------------
MODELS = {
    # DeepSeek over plain HTTP
    "deepseek_chat": {
        "provider": "deepseek",
        "model_name": "deepseek-chat",
        "max_tokens": 2000,
        "temperature": 0.7,
        "top_p": 0.9,
    },
    "deepseek_reasoner": {
        "provider": "deepseek",
        "model_name": "deepseek-reasoner",
        "max_tokens": 2000,
        "temperature": 0.7,
        "top_p": 0.9,
    },
    # OpenAI-compatible models through the SDK
    "gpt4o": {
        "provider": "openai",
        "model_name": "gpt-4o-mini",
        "max_tokens": 2000,
        "temperature": 0.7,
        "top_p": 0.9,
    },
}

DEFAULT_MODEL = "deepseek_chat"
