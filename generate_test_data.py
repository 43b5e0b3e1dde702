import argparse
import random
from datetime import datetime, timedelta, timezone

import requests

import db

BASE_URL = "http://127.0.0.1:8000"

# Correctness rate per category, per demo user
USERS = {
    "alice": {"Math": 0.45, "Science": 0.7, "English": 0.9},
    "peter": {"Math": 0.85, "Science": 0.5, "History": 0.6},
    "marco": {"Math": 0.6, "English": 0.35, "Chemistry": 0.75},
}

JOURNAL_LINES = [
    "Fractions finally clicked today.",
    "Felt tired during the science quiz, need more sleep.",
    "Struggled with essay structure again.",
    "Good practice session, got most questions right.",
    "Anxious about the upcoming exam.",
    "Reviewed my notes and feel more confident.",
]

KINDS = ("question", "question", "practice", "exam")


def seed_user(user_id, accuracy, days=60, per_day=4, rng=None):
    rng = rng or random.Random()
    now = datetime.now(timezone.utc)
    activities = 0
    for offset in range(days, 0, -1):
        day = now - timedelta(days=offset)
        for _ in range(rng.randint(0, per_day)):
            category = rng.choice(list(accuracy))
            is_correct = rng.random() < accuracy[category]
            db.log_activity(
                user_id,
                rng.choice(KINDS),
                is_correct=is_correct,
                score=100.0 if is_correct else 0.0,
                time_spent_ms=rng.randint(20, 300) * 1000,
                category=category,
                difficulty=rng.choice(["easy", "medium", "hard"]),
                occurred_at=day + timedelta(minutes=rng.randint(0, 600)),
            )
            activities += 1

    for offset in range(14, 0, -2):
        db.save_mood_rating(
            user_id,
            rng.randint(1, 5),
            session_id=f"session-{offset}",
            created_at=now - timedelta(days=offset),
        )

    for offset in range(10, 0, -1):
        db.save_journal_entry(
            user_id,
            rng.choice(JOURNAL_LINES),
            tags=["reflection"],
            created_at=now - timedelta(days=offset),
        )
    return activities


def check_server(user_id):
    try:
        r = requests.get(f"{BASE_URL}/analytics", params={"timeframe": "1month"}, headers={"X-User-Id": user_id}, timeout=10)
    except requests.RequestException as e:
        print(f"Server connection error: {e}")
        return False
    if not r.ok:
        print(f"Analytics request failed for {user_id}: {r.status_code}")
        return False
    snapshot = r.json()
    print(f"[{user_id}] {len(snapshot['categories'])} categories, {len(snapshot['series'])} buckets")
    return True


def main(argv=None):
    parser = argparse.ArgumentParser(description="Seed demo study activity into the SQLite database.")
    parser.add_argument("--days", type=int, default=60, help="days of activity history per user")
    parser.add_argument("--seed", type=int, default=None, help="random seed for reproducible data")
    parser.add_argument("--check", action="store_true", help=f"query {BASE_URL}/analytics afterwards")
    args = parser.parse_args(argv)

    db.init()
    rng = random.Random(args.seed)
    total = 0
    for user_id, accuracy in USERS.items():
        count = seed_user(user_id, accuracy, days=args.days, rng=rng)
        print(f"Seeded {count} activities for {user_id}")
        total += count
    print(f"\nTotal activities seeded: {total}")

    if args.check:
        for user_id in USERS:
            check_server(user_id)


if __name__ == "__main__":
    main()
