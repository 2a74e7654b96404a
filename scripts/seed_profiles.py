"""Seed demo profiles around a few cities so the discovery feed has content.

Usage: python -m scripts.seed_profiles [--count 40] [--seed 7]
Re-running is safe: emails are deterministic and existing profiles are kept.
"""
import argparse
import asyncio
import random
import sys
import uuid
sys.path.insert(0, ".")

from drift_engine.database import dispose_engine, session_scope
from drift_engine.errors import ValidationError
from drift_engine.models.enums import LookingFor
from drift_engine.services.profile_service import ProfileService


CITIES = [
    ("London", 51.5074, -0.1278),
    ("Manchester", 53.4808, -2.2426),
    ("Edinburgh", 55.9533, -3.1883),
    ("Bristol", 51.4545, -2.5879),
]

FIRST_NAMES = [
    "Alex", "Sam", "Jordan", "Robin", "Charlie", "Jamie", "Morgan", "Casey",
    "Riley", "Avery", "Quinn", "Rowan", "Sasha", "Taylor", "Elliot", "Noor",
]

INTERESTS = [
    "climbing", "jazz", "board games", "running", "cooking", "film",
    "photography", "hiking", "yoga", "travel", "coffee", "museums",
]

# Fixed namespace so the same index always maps to the same user id.
SEED_NAMESPACE = uuid.UUID("6f1c1c7e-58a4-4b0e-9a63-1c5d0a4d2f10")


def build_profile(index: int, rng: random.Random) -> dict:
    city, lat, lon = rng.choice(CITIES)
    return {
        "user_id": uuid.uuid5(SEED_NAMESPACE, str(index)),
        "email": f"seed_{index}@drift.test",
        "display_name": f"{rng.choice(FIRST_NAMES)} ({city})",
        "age": rng.randint(21, 45),
        "bio": f"Seed profile #{index} from {city}.",
        # Jitter within ~5 miles of the city centre
        "latitude": round(lat + rng.uniform(-0.07, 0.07), 5),
        "longitude": round(lon + rng.uniform(-0.1, 0.1), 5),
        "interests": rng.sample(INTERESTS, 3),
        "looking_for": rng.choice(list(LookingFor)),
        "preferred_max_distance_miles": rng.choice([None, 10, 25, 50]),
    }


async def seed(count: int, seed_value: int):
    rng = random.Random(seed_value)
    service = ProfileService()
    created = 0
    for index in range(count):
        fields = build_profile(index, rng)
        try:
            async with session_scope() as session:
                profile, was_created = await service.create_profile(session, **fields)
        except ValidationError as exc:
            print(f"  Profile {index} skipped: {exc.message}")
            continue
        if was_created:
            created += 1
            print(f"  Seeded {profile.display_name} ({profile.user_id})")
        else:
            print(f"  Profile {index} already exists, skipping.")
    await dispose_engine()
    print(f"Done seeding profiles ({created} new).")


def main():
    parser = argparse.ArgumentParser(description="Seed demo profiles")
    parser.add_argument("--count", type=int, default=40, help="Number of profiles")
    parser.add_argument("--seed", type=int, default=7, help="Random seed")
    args = parser.parse_args()
    asyncio.run(seed(args.count, args.seed))


if __name__ == "__main__":
    main()
