"""Configuration loaded from environment variables."""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


# Paths
DATA_DIR: Path = Path(os.getenv("DATA_DIR", "./data"))

# GitHub
GITHUB_TOKEN: str = os.getenv("GITHUB_TOKEN", "")
GITHUB_API_URL: str = os.getenv("GITHUB_API_URL", "https://api.github.com").rstrip("/")

# Embeddings
GEMINI_API_KEY: str = os.getenv("GEMINI_API_KEY", "")
EMBEDDING_MODEL: str = os.getenv("EMBEDDING_MODEL", "gemini-embedding-001")
EMBEDDING_DIMS: int = int(os.getenv("EMBEDDING_DIMS", "768"))

# Ingestion
INGEST_CONCURRENCY: int = int(os.getenv("INGEST_CONCURRENCY", "8"))
CHUNK_TARGET_SIZE: int = int(os.getenv("CHUNK_TARGET_SIZE", "1000"))
CHUNK_MAX_SIZE: int = int(os.getenv("CHUNK_MAX_SIZE", "2000"))
CHUNK_OVERLAP: int = int(os.getenv("CHUNK_OVERLAP", "150"))
JOB_HISTORY_LIMIT: int = int(os.getenv("JOB_HISTORY_LIMIT", "200"))

# Server
HOST: str = os.getenv("HOST", "0.0.0.0")
PORT: int = int(os.getenv("PORT", "8000"))
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
CORS_ORIGINS: list[str] = [
    o.strip()
    for o in os.getenv("CORS_ORIGINS", "http://localhost:5173").split(",")
    if o.strip()
]

# Derived paths
SQLITE_PATH: Path = DATA_DIR / "repolens.db"
LANCEDB_PATH: Path = DATA_DIR / "lancedb"
CHUNKS_TABLE: str = os.getenv("CHUNKS_TABLE", "chunks")
