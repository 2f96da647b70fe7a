# MongoDB connection, index set and executor helpers

import asyncio
import logging
import uuid
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from functools import partial

from pymongo import ASCENDING, DESCENDING, MongoClient

from .config import MONGODB_URL, MONGODB_DB, DB_WORKERS

logger = logging.getLogger(__name__)

db_client = None
db = None
executor = ThreadPoolExecutor(max_workers=DB_WORKERS)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def new_id() -> str:
    return str(uuid.uuid4())

def now_utc() -> datetime:
    return datetime.now(timezone.utc)

async def run_db(fn, *args, **kwargs):
    """Run a blocking pymongo call on the shared executor."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(executor, partial(fn, *args, **kwargs))

# ---------------------------------------------------------------------------
# Indexes
# ---------------------------------------------------------------------------
def ensure_indexes(database) -> None:
    database.users.create_index([("username", ASCENDING)], unique=True)
    for field in ("municipality", "category", "status"):
        database.grievances.create_index(field)
    database.grievances.create_index([("created_at", DESCENDING)])
    database.grievances.create_index("author_id")
    database.comments.create_index("grievance_id")
    database.departments.create_index("municipality")
    database.assignments.create_index("grievance_id")
    # One vote per (user, grievance) and one per (user, comment). The partial
    # filters keep grievance votes and comment votes out of each other's index.
    database.user_votes.create_index(
        [("user_id", ASCENDING), ("grievance_id", ASCENDING)], unique=True,
        name="unique_user_grievance_vote",
        partialFilterExpression={"grievance_id": {"$exists": True}})
    database.user_votes.create_index(
        [("user_id", ASCENDING), ("comment_id", ASCENDING)], unique=True,
        name="unique_user_comment_vote",
        partialFilterExpression={"comment_id": {"$exists": True}})
    database.user_votes.create_index("grievance_id")
    database.user_votes.create_index("comment_id")

# ---------------------------------------------------------------------------
# Startup / Shutdown
# ---------------------------------------------------------------------------
async def startup_db():
    global db_client, db
    db_client = MongoClient(MONGODB_URL)
    db = db_client[MONGODB_DB]
    await run_db(ensure_indexes, db)
    logger.info("Database initialized: %s", MONGODB_DB)

def shutdown_db():
    global db_client, db
    if db_client:
        db_client.close()
    db_client = None
    db = None

# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------
async def get_db():
    return db
