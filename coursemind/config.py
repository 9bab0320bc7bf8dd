"""Application configuration with sensible defaults."""
import os
from pathlib import Path

# Paths
BASE_DIR = Path(__file__).parent.parent
DATA_DIR = Path(os.getenv("DATA_DIR", str(BASE_DIR / "data")))

# Ensure data directory exists
DATA_DIR.mkdir(parents=True, exist_ok=True)

# Ollama configuration (used for optional content structuring)
OLLAMA_BASE_URL = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
STRUCTURE_MODEL = os.getenv("STRUCTURE_MODEL", "gemma3:12b")
OLLAMA_TIMEOUT = float(os.getenv("OLLAMA_TIMEOUT", "120.0"))
STRUCTURE_MIN_CHARS = int(os.getenv("STRUCTURE_MIN_CHARS", "100"))

# Chunking parameters (character-based to avoid tokenizer inconsistencies)
CHUNK_SIZE = int(os.getenv("CHUNK_SIZE", "2000"))
CHUNK_OVERLAP = int(os.getenv("CHUNK_OVERLAP", "200"))
CHUNK_MIN_TAIL = int(os.getenv("CHUNK_MIN_TAIL", "10"))

# Local hash embeddings
EMBEDDING_DIM = int(os.getenv("EMBEDDING_DIM", "384"))
MAX_EMBEDDING_CHUNKS = int(os.getenv("MAX_EMBEDDING_CHUNKS", "20"))  # 0 = no cap
SKIP_EMBEDDINGS = os.getenv("SKIP_EMBEDDINGS", "false").lower() == "true"

# Retrieval
RETRIEVAL_TOP_K = int(os.getenv("RETRIEVAL_TOP_K", "5"))
MAX_CONTEXT_CHARS = int(os.getenv("MAX_CONTEXT_CHARS", "4000"))

# Databases
MATERIALS_DB_PATH = os.getenv("MATERIALS_DB_PATH", str(DATA_DIR / "coursemind.sqlite"))
VECTOR_DB_PATH = os.getenv("VECTOR_DB_PATH", str(DATA_DIR / "vectors.sqlite"))

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
