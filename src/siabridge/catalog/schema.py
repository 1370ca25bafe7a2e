"""SQLite schema for the bridge metadata catalog.

Timestamps are stored as integer Unix seconds.
"""

# Value of objects.uploaded until the remote network confirms durability
NOT_UPLOADED = 0

# Value of objects.last_fetch until the first successful fetch
NEVER_FETCHED = -1

CREATE_BUCKETS_TABLE = """
CREATE TABLE IF NOT EXISTS buckets (
    name    TEXT PRIMARY KEY,
    created INTEGER NOT NULL
)
"""

CREATE_OBJECTS_TABLE = """
CREATE TABLE IF NOT EXISTS objects (
    bucket         TEXT NOT NULL,
    name           TEXT NOT NULL,
    size           INTEGER NOT NULL,
    queued         INTEGER NOT NULL,
    uploaded       INTEGER NOT NULL DEFAULT 0,
    purge_after    INTEGER NOT NULL DEFAULT 0,
    cached_fetches INTEGER NOT NULL DEFAULT 0,
    sia_fetches    INTEGER NOT NULL DEFAULT 0,
    last_fetch     INTEGER NOT NULL DEFAULT -1,
    PRIMARY KEY (bucket, name),
    FOREIGN KEY (bucket) REFERENCES buckets(name) ON DELETE CASCADE
)
"""

CREATE_PENDING_INDEX = """
CREATE INDEX IF NOT EXISTS idx_objects_uploaded ON objects(uploaded)
"""

ALL_SCHEMA_STATEMENTS = [
    CREATE_BUCKETS_TABLE,
    CREATE_OBJECTS_TABLE,
    CREATE_PENDING_INDEX,
]

OBJECT_COLUMNS = (
    "bucket, name, size, queued, uploaded, purge_after, "
    "cached_fetches, sia_fetches, last_fetch"
)
