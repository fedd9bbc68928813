"""Configuration for the feed orchestrator service."""

import os

# GCP Project
PROJECT_ID = os.getenv("GCP_PROJECT_ID", "feed-orchestrator")
REGION = os.getenv("GCP_REGION", "europe-west1")

# Firestore collections
JOBS_COLLECTION = os.getenv("JOBS_COLLECTION", "sync_jobs")
JOB_DATA_COLLECTION = os.getenv("JOB_DATA_COLLECTION", "job_data")
RESOURCE_LOCKS_COLLECTION = os.getenv("RESOURCE_LOCKS_COLLECTION", "job_locks")
PRODUCTS_COLLECTION = os.getenv("PRODUCTS_COLLECTION", "products")
FEEDS_COLLECTION = os.getenv("FEEDS_COLLECTION", "feeds")
WEBHOOKS_COLLECTION = os.getenv("WEBHOOKS_COLLECTION", "webhooks")

# Job queue settings
MAX_CONCURRENT_JOBS = int(os.getenv("MAX_CONCURRENT_JOBS", "5"))
PENDING_FETCH_LIMIT = int(os.getenv("PENDING_FETCH_LIMIT", "10"))
REQUEUE_DELAY_SECS = float(os.getenv("REQUEUE_DELAY_SECS", "1.0"))

# Batch processing
SYNC_BATCH_SIZE = int(os.getenv("SYNC_BATCH_SIZE", "50"))
CATEGORIZE_BATCH_SIZE = int(os.getenv("CATEGORIZE_BATCH_SIZE", "50"))
CHUNK_DELAY_SECS = float(os.getenv("CHUNK_DELAY_SECS", "0.5"))
SNAPSHOT_TTL_HOURS = int(os.getenv("SNAPSHOT_TTL_HOURS", "24"))
CATEGORIZE_AFTER_SYNC = os.getenv("CATEGORIZE_AFTER_SYNC", "true").lower() == "true"
DEFAULT_CATEGORIZE_LIMIT = int(os.getenv("DEFAULT_CATEGORIZE_LIMIT", "200"))

# Stall reaper
STALL_MAX_AGE_MINUTES = int(os.getenv("STALL_MAX_AGE_MINUTES", "15"))
MAX_RESUMES = int(os.getenv("MAX_RESUMES", "3"))

# Categorization
CATEGORIZATION_STRATEGY = os.getenv("CATEGORIZATION_STRATEGY", "hybrid")  # ai | index | hybrid
ORACLE_BATCH_SIZE = int(os.getenv("ORACLE_BATCH_SIZE", "20"))
ORACLE_BATCH_DELAY_SECS = float(os.getenv("ORACLE_BATCH_DELAY_SECS", "10"))
ORACLE_MAX_ATTEMPTS = int(os.getenv("ORACLE_MAX_ATTEMPTS", "3"))
ORACLE_MIN_CONFIDENCE = float(os.getenv("ORACLE_MIN_CONFIDENCE", "0.3"))
UNCATEGORIZED_TITLE = "Uncategorized"

# Taxonomy data
TAXONOMY_PATH = os.getenv("TAXONOMY_PATH", "data/taxonomy.json")
CATEGORY_INDEX_PATH = os.getenv("CATEGORY_INDEX_PATH", "data/category_index.json")

# LLM models
MODEL_FLASH = os.getenv("MODEL_FLASH", "gemini-2.5-flash")  # Batch classification

# Feeds
FETCH_TIMEOUT_SECS = int(os.getenv("FETCH_TIMEOUT_SECS", "60"))
BORIBON_FEED_URL = os.getenv(
    "BORIBON_FEED_URL", "https://www.boribon.ro/feed/products/{uuid}"
)
DEFAULT_SYNC_INTERVAL_SECS = int(os.getenv("DEFAULT_SYNC_INTERVAL_SECS", "3600"))

# Webhooks
WEBHOOK_TIMEOUT_SECS = int(os.getenv("WEBHOOK_TIMEOUT_SECS", "10"))
