"""Shared schema keys to avoid magic strings across QuietCapture modules."""

from __future__ import annotations

# Proxy / cache payload keys
K_URL = "url"
K_TITLE = "title"
K_IMAGE = "image"
K_SITE = "site"
K_ERROR = "error"

# Persisted item keys
K_ID = "id"
K_BUCKET_ID = "bucket_id"
K_META_STATUS = "meta_status"
K_META_ATTEMPTS = "meta_attempts"
K_ENRICH_FLASH = "enrich_flash"

# Persisted document keys
K_BUCKETS = "buckets"
K_ITEMS = "items"
K_LAST_USED_BUCKET_ID = "last_used_bucket_id"
