from __future__ import annotations

import os

# Settings are cached on first import; pin the test backends before any app module loads.
os.environ.setdefault("GRAPH_STORE_BACKEND", "memory")
os.environ.setdefault("QUEUE_MODE", "inline")
os.environ.setdefault("NEON_PG_DSN", "sqlite:///./relgraph_test.db")
os.environ.setdefault("WEBHOOK_SECRET", "")
