"""Constants used throughout the application."""

# Conversation context defaults
DEFAULT_MAX_CONTEXT_MESSAGES = 20
DEFAULT_MAX_ESTIMATED_TOKENS = 100_000
# Approximation only: one token is assumed to span four characters.
CHARS_PER_TOKEN_ESTIMATE = 4

# Provider request defaults
DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_TEMPERATURE = 0.3
DEFAULT_MAX_OUTPUT_TOKENS = 4096
DEFAULT_REQUEST_TIMEOUT = 120.0
ANTHROPIC_API_VERSION = "2023-06-01"
HIGH_TOKEN_USAGE_THRESHOLD = 50_000

# Multi-turn formats may only report a total, so usage is split by estimate.
INPUT_TOKEN_SHARE = 0.7
OUTPUT_TOKEN_SHARE = 0.3

# Queue defaults
DEFAULT_LEASE_SECONDS = 300
DEFAULT_PURGE_AFTER_SECONDS = 24 * 60 * 60
DEFAULT_MAX_WORKERS = 4
