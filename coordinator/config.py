"""Configuration settings for the replication coordinator."""

import os

from common.constants import METADATA_TABLE_NAME


TABLE_STORE_PATH = os.environ.get("REPL_TABLE_STORE_PATH", "/app/data/tables.db")

COORDINATION_STORE_PATH = os.environ.get("REPL_COORDINATION_STORE_PATH", "/app/data/coordination.db")

REPLICATION_CONFIG_PATH = os.environ.get("REPL_CONFIG_PATH", "/app/data/replication.json")

SOURCE_TABLE_NAME = os.environ.get("REPL_SOURCE_TABLE", METADATA_TABLE_NAME)

COORDINATOR_HOST = os.environ.get("REPL_COORDINATOR_HOST", "0.0.0.0")

COORDINATOR_PORT = int(os.environ.get("REPL_COORDINATOR_PORT", "8000"))

SQLITE_TIMEOUT_SECONDS = float(os.environ.get("REPL_SQLITE_TIMEOUT", "5"))
