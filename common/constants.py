"""Project-wide constants (table names, section layout, queue defaults)."""

METADATA_TABLE_NAME: str = "metadata"
REPLICATION_TABLE_NAME: str = "replication"

# Closed-file markers live in the metadata table under this row prefix
REPLICATION_SECTION_ROW_PREFIX: str = "~repl"
REPLICATION_SECTION_COLF: str = "stat"

# Per-(file, target) status records in the replication table
WORK_SECTION_COLF: str = "work"

WORK_KEY_SEPARATOR: str = "|"

DEFAULT_MAX_WORK_QUEUE: int = 1000
DEFAULT_WORK_ASSIGNER_THREADS: int = 4

WORK_QUEUE_ZNODE: str = "/replication/workqueue"
