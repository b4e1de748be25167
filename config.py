"""Configuration module for the Book X-Ray engine."""
import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Provider Configuration
AI_PROVIDER = os.getenv("AI_PROVIDER", "ollama")

ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY")
ANTHROPIC_MODEL = os.getenv("ANTHROPIC_MODEL", "claude-sonnet-4-5-20250929")

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4.1-nano")
OPENAI_EMBEDDING_MODEL = os.getenv("OPENAI_EMBEDDING_MODEL", "text-embedding-3-small")

OPENAI_COMPATIBLE_API_KEY = os.getenv("OPENAI_COMPATIBLE_API_KEY")
OPENAI_COMPATIBLE_BASE_URL = os.getenv("OPENAI_COMPATIBLE_BASE_URL", "")
OPENAI_COMPATIBLE_MODEL = os.getenv("OPENAI_COMPATIBLE_MODEL", "")

OLLAMA_BASE_URL = os.getenv("OLLAMA_BASE_URL", "http://127.0.0.1:11434")
OLLAMA_MODEL = os.getenv("OLLAMA_MODEL", "llama3.2")
OLLAMA_EMBEDDING_MODEL = os.getenv("OLLAMA_EMBEDDING_MODEL", "nomic-embed-text")

LLM_TEMPERATURE = 0  # For structured extraction consistency
LLM_MAX_TOKENS = 4096
LLM_TIMEOUT_SECONDS = 120.0
EMBEDDING_TIMEOUT_SECONDS = 60.0

# Chunking Configuration
PAGE_SIZE_CHARS = 1500
MIN_SECTION_CHARS = 100
CHUNK_MAX_CHARS = int(os.getenv("CHUNK_MAX_CHARS", "1000"))

# Search Configuration
DEFAULT_TOP_K = 10
VECTOR_WEIGHT = 1.0
KEYWORD_WEIGHT = 0.8
DEDUP_KEY_CHARS = 100
BM25_ONLY_MODEL = "bm25-only"

# Entity Extraction Configuration
MAX_PASS_CHARS = 25_000
PASS_COUNT = 5
RELEVANT_SECTION_WINDOW = 3
MAX_RELEVANT_ENTITIES = 25
# Pause between passes; raise on constrained runtimes (0.5 was enough on mobile webviews)
PASS_DELAY_SECONDS = float(os.getenv("PASS_DELAY_SECONDS", "0.05"))
ENTITY_INDEX_VERSION = 1

# Retry Configuration
MAX_RETRIES = 3
RETRY_BACKOFF_MULTIPLIER = 2
PERSISTENCE_RETRIES = 2
PERSISTENCE_BACKOFF_SECONDS = 0.2

# Storage Configuration
DB_PATH = Path(os.getenv("DB_PATH", "./output/xray.db"))
