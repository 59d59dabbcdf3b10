"""Configuration loader."""
import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv(Path(__file__).parent.parent / ".env")


def _float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def _list(name: str, default: str) -> list[str]:
    return [s.strip() for s in os.getenv(name, default).split(",") if s.strip()]


APP_ENV = os.getenv("APP_ENV", "production")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# ── AI providers ──────────────────────────────────────────────────────────────
ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY", "")
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
DEEPSEEK_API_KEY = os.getenv("DEEPSEEK_API_KEY", "")
GOOGLE_AI_API_KEY = os.getenv("GOOGLE_AI_API_KEY", "")
GROK_API_KEY = os.getenv("GROK_API_KEY", "")

PROVIDER_MODELS = {
    "claude":   os.getenv("CLAUDE_MODEL", "claude-sonnet-4-20250514"),
    "gpt4":     os.getenv("OPENAI_MODEL", "gpt-4-turbo-preview"),
    "deepseek": os.getenv("DEEPSEEK_MODEL", "deepseek-chat"),
    "gemini":   os.getenv("GEMINI_MODEL", "gemini-pro"),
    "grok":     os.getenv("GROK_MODEL", "grok-beta"),
}

PROVIDER_BASE_URLS = {
    "claude":   "https://api.anthropic.com/v1",
    "gpt4":     "https://api.openai.com/v1",
    "deepseek": "https://api.deepseek.com/v1",
    "gemini":   "https://generativelanguage.googleapis.com/v1beta",
    "grok":     "https://api.x.ai/v1",
}

# Declaration order is the order of analyses in every signal
AI_PROVIDERS = _list("AI_PROVIDERS", "claude,gpt4,deepseek")
PROVIDER_TIMEOUT_SECONDS = _float("PROVIDER_TIMEOUT_SECONDS", 15.0)
INCLUDE_PLACEHOLDER_ANALYSES = os.getenv("INCLUDE_PLACEHOLDER_ANALYSES", "true").lower() == "true"

# ── Signal risk levels ────────────────────────────────────────────────────────
STOP_LOSS_PCT = _float("STOP_LOSS_PCT", 0.03)
TAKE_PROFIT_PCT = _float("TAKE_PROFIT_PCT", 0.05)

# ── Market data ───────────────────────────────────────────────────────────────
PRICE_SYMBOLS = _list("PRICE_SYMBOLS", "BTC,ETH,SOL,LINK,ARB")
QUOTE_CURRENCY = "EUR"
TRADING_PAIRS = [f"{s}/{QUOTE_CURRENCY}" for s in PRICE_SYMBOLS]
MACRO_SOURCE = os.getenv("MACRO_SOURCE", "simulated")  # "simulated" | "yfinance"
PRICE_POLL_SECONDS = _float("PRICE_POLL_SECONDS", 5.0)
PRICE_LOOP_ENABLED = os.getenv("PRICE_LOOP_ENABLED", "true").lower() == "true"

# ── Paper trading ─────────────────────────────────────────────────────────────
PAPER_STARTING_BALANCE = _float("PAPER_STARTING_BALANCE", 10000.0)
MAX_OPEN_POSITIONS = int(os.getenv("MAX_OPEN_POSITIONS", "3"))
MAX_TRADE_SIZE = _float("MAX_TRADE_SIZE", 2000.0)
TRADE_FEE_RATE = _float("TRADE_FEE_RATE", 0.001)
TRAILING_STOP_ENABLED = os.getenv("TRAILING_STOP_ENABLED", "false").lower() == "true"
TRAILING_STOP_PCT = _float("TRAILING_STOP_PCT", 0.02)

DEFAULT_USER_ID = os.getenv("DEFAULT_USER_ID", "user-1")
