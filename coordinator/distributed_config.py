"""Distributed system configuration for the replication coordinator."""

import os
import socket
import time

from common.constants import WORK_QUEUE_ZNODE


COORDINATOR_NODE_ID = os.getenv("COORDINATOR_NODE_ID") or f"{socket.gethostname()}-{int(time.time())}"

INSTANCE_ID = os.getenv("REPL_INSTANCE_ID", "default")

# Root of the work queue nodes in the coordination store
WORK_QUEUE_ROOT = f"/instances/{INSTANCE_ID}{WORK_QUEUE_ZNODE}"

STATUS_PROJECTOR_INTERVAL = float(os.getenv("STATUS_PROJECTOR_INTERVAL", "30"))
WORK_ASSIGNER_INTERVAL = float(os.getenv("WORK_ASSIGNER_INTERVAL", "5"))
