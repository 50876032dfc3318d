"""
Log codes for configuration and delivery operations.
"""

CONFIG = "config"

# Client configuration
CONFIG_RESOLVED = f"{CONFIG}.resolved"
CONFIG_FILE_UNREADABLE = f"{CONFIG}.file_unreadable"

INGESTION = "ingestion"

# Batch delivery
INGESTION_BATCH_SENT = f"{INGESTION}.batch_sent"
INGESTION_BATCH_PARTIAL = f"{INGESTION}.batch_partial"
INGESTION_BATCH_FAILED = f"{INGESTION}.batch_failed"
INGESTION_BATCH_REJECTED = f"{INGESTION}.batch_rejected"
INGESTION_EVENT_DROPPED = f"{INGESTION}.event_dropped"

QUEUE = "queue"

# Queue persistence
QUEUE_RESTORED = f"{QUEUE}.restored"
QUEUE_RESTORE_SKIPPED = f"{QUEUE}.restore_skipped"
QUEUE_PERSIST_FAILED = f"{QUEUE}.persist_failed"
QUEUE_PERSIST_RECOVERED = f"{QUEUE}.persist_recovered"

STORAGE = "storage"

STORAGE_FILE_CORRUPT = f"{STORAGE}.file_corrupt"
