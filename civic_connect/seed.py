"""
Seed script to populate MongoDB with demo users, departments, grievances,
comments and votes. Votes go through the toggle protocol so every counter
matches its vote rows.

Usage:  civic-connect-seed            (after pip install)
    or: python -m civic_connect.seed
"""
from datetime import timedelta

from pymongo import MongoClient

from .config import MONGODB_URL, MONGODB_DB
from .auth import hash_password
from .database import ensure_indexes, new_id, now_utc
from .votes import VoteTarget, apply_vote

# ---------------------------------------------------------------------------
# Raw definitions
# ---------------------------------------------------------------------------
USERS = [
    {"username": "citizen1", "password": "citizen123", "email": "citizen1@example.com",
     "phone": "9876543210", "municipality": "Springfield", "role": "citizen"},
    {"username": "citizen2", "password": "citizen123", "email": "citizen2@example.com",
     "phone": "9876543211", "municipality": "Springfield", "role": "citizen"},
    {"username": "citizen3", "password": "citizen123", "email": "citizen3@example.com",
     "phone": None, "municipality": "Shelbyville", "role": "citizen"},
    {"username": "admin", "password": "admin123", "email": "admin@example.com",
     "phone": None, "municipality": "Springfield", "role": "admin",
     "department": "Public Works"},
]

DEPARTMENTS = [
    {"name": "Public Works", "municipality": "Springfield", "head": "admin"},
    {"name": "Sanitation", "municipality": "Springfield", "head": None},
    {"name": "Parks & Recreation", "municipality": "Shelbyville", "head": None},
]

# (author, title, description, category, municipality, location, status, age_hours)
GRIEVANCES = [
    ("citizen1", "Pothole on Main Street",
     "A deep pothole near the bus stop has damaged several car tyres this week.",
     "roads", "Springfield", "Main St & 5th Ave", "urgent", 50),
    ("citizen2", "Streetlight out in Elm Park",
     "The streetlight at the park entrance has been off for ten days; the path is dark at night.",
     "lighting", "Springfield", "Elm Park north gate", "pending", 240),
    ("citizen1", "Overflowing garbage bins",
     "Bins behind the market are overflowing and attracting stray animals.",
     "sanitation", "Springfield", "Central Market", "in-progress", 120),
    ("citizen3", "Broken swing at playground",
     "One of the swings has a snapped chain and is dangerous for children.",
     "parks", "Shelbyville", "Riverside Playground", "pending", 8),
    ("citizen2", "Water leak on Oak Road",
     "Clean water has been leaking from a pipe under the pavement for two days.",
     "water", "Springfield", "14 Oak Road", "resolved", 400),
]

# (voter, grievance index, kind)
VOTES = [
    ("citizen1", 1, "up"), ("citizen2", 0, "up"), ("citizen3", 0, "up"),
    ("citizen3", 1, "down"), ("citizen2", 3, "up"), ("citizen1", 4, "down"),
]

# (author, grievance index, text, upvoters)
COMMENTS = [
    ("citizen2", 0, "Same here, my bike tyre burst on this one.", ["citizen1", "citizen3"]),
    ("admin", 2, "Crew scheduled for Thursday morning.", ["citizen1"]),
    ("citizen1", 1, "Reported this to the council hotline too.", []),
]

# ---------------------------------------------------------------------------
# Import functions
# ---------------------------------------------------------------------------
def import_users(db) -> dict:
    """Insert seed users, skipping existing usernames. Returns {username: _id}."""
    user_ids = {}
    for u in USERS:
        existing = db.users.find_one({"username": u["username"]})
        if existing:
            print(f"  SKIP  {u['username']} (already exists)")
            user_ids[u["username"]] = existing["_id"]
            continue
        doc = {
            "_id": new_id(), "username": u["username"],
            "hashed_password": hash_password(u["password"]),
            "email": u["email"], "phone": u["phone"],
            "municipality": u["municipality"], "role": u["role"],
            "department": u.get("department"), "created_at": now_utc(),
        }
        db.users.insert_one(doc)
        user_ids[u["username"]] = doc["_id"]
        print(f"  OK    {u['username']:12s} (role: {u['role']})")
    return user_ids

def import_departments(db, user_ids: dict) -> None:
    for d in DEPARTMENTS:
        if db.departments.find_one({"name": d["name"], "municipality": d["municipality"]}):
            continue
        db.departments.insert_one({
            "_id": new_id(), "name": d["name"], "municipality": d["municipality"],
            "head_id": user_ids.get(d["head"]) if d["head"] else None,
            "created_at": now_utc()})
    print(f"  => {len(DEPARTMENTS)} departments")

def import_grievances(db, user_ids: dict) -> list:
    grievance_ids = []
    now = now_utc()
    for author, title, description, category, municipality, location, status, age in GRIEVANCES:
        created = now - timedelta(hours=age)
        doc = {
            "_id": new_id(), "title": title, "description": description,
            "category": category, "municipality": municipality, "location": location,
            "image_url": None, "author_id": user_ids[author], "status": status,
            "upvotes": 0, "downvotes": 0, "created_at": created, "updated_at": created,
        }
        db.grievances.insert_one(doc)
        grievance_ids.append(doc["_id"])
    print(f"  => {len(GRIEVANCES)} grievances")
    return grievance_ids

def import_votes_and_comments(db, user_ids: dict, grievance_ids: list) -> None:
    for voter, index, kind in VOTES:
        apply_vote(db, user_ids[voter], VoteTarget.grievance(grievance_ids[index]), kind)
    for author, index, text, upvoters in COMMENTS:
        doc = {"_id": new_id(), "grievance_id": grievance_ids[index],
               "author_id": user_ids[author], "text": text, "upvotes": 0,
               "created_at": now_utc()}
        db.comments.insert_one(doc)
        for voter in upvoters:
            apply_vote(db, user_ids[voter], VoteTarget.comment(doc["_id"]), "up")
    print(f"  => {len(VOTES)} grievance votes, {len(COMMENTS)} comments")

def seed(db) -> None:
    ensure_indexes(db)
    user_ids = import_users(db)
    import_departments(db, user_ids)
    if db.grievances.count_documents({}) == 0:
        grievance_ids = import_grievances(db, user_ids)
        import_votes_and_comments(db, user_ids, grievance_ids)
    else:
        print("  SKIP  grievances (collection not empty)")

def main():
    print(f"Connecting to: {MONGODB_URL}")
    print(f"Database: {MONGODB_DB}\n")
    client = MongoClient(MONGODB_URL)
    try:
        seed(client[MONGODB_DB])
    finally:
        client.close()
    print("\nDone!")

if __name__ == "__main__":
    main()
