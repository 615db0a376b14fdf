"""
Locust Load Test Suite

Run scenarios:
  locust -f locustfile.py --tags contention   # Last-slot registration race
  locust -f locustfile.py --tags slots        # Cached slot reads
  locust -f locustfile.py --tags edge         # Bad input
  locust -f locustfile.py                     # All tests
"""

import random
from locust import HttpUser, task, between, tag, events
from datetime import datetime, timezone, timedelta

# Shared state
EVENT_IDS = []
CONTENTION_EVENT_ID = None


def random_user_id():
    return random.randint(1, 10_000_000)


@events.test_start.add_listener
def on_test_start(environment, **kwargs):
    print("\n" + "=" * 60)
    print("SETUP: Creating contention test event...")
    print("=" * 60)


class ContentionUser(HttpUser):
    """
    TEST 1: Contention - 100 users -> 10 slots

    Run: locust -f locustfile.py --tags contention -u 100 -r 50 --run-time 30s

    After test, verify:
      SELECT COUNT(*) FROM registrations WHERE event_id = X;  -- must be <= 10
      GET /api/v1/events/X/slots?verify=true                  -- available must be 0
    """
    wait_time = between(0, 0.1)

    def on_start(self):
        global CONTENTION_EVENT_ID
        self.user_id = random_user_id()

        if not CONTENTION_EVENT_ID:
            future = (datetime.now(timezone.utc) + timedelta(days=30)).isoformat()
            resp = self.client.post("/api/v1/events/", json={
                "title": "Contention Test Event",
                "description": "10 slots only",
                "schedule": future,
                "venue": "Test",
                "max_slots": 10,
            })
            if resp.status_code == 201:
                CONTENTION_EVENT_ID = resp.json()["id"]
                print(f"\nCreated event {CONTENTION_EVENT_ID} with 10 slots\n")

    @tag("contention")
    @task
    def register_for_last_slots(self):
        """All users fight for the same 10 slots."""
        if not CONTENTION_EVENT_ID:
            return

        with self.client.post("/api/v1/registrations/",
            json={"user_id": self.user_id, "event_id": CONTENTION_EVENT_ID},
            catch_response=True
        ) as resp:
            if resp.status_code in (201, 409):
                resp.success()  # 409: full or already registered
            else:
                resp.failure(f"Unexpected: {resp.status_code}")


class SlotReader(HttpUser):
    """
    TEST 2: Slot reads - cache effectiveness

    Run twice:
      1. With Redis: locust -f locustfile.py --tags slots -u 100 -r 20 --run-time 60s
      2. Without Redis (REDIS_ENABLED=false), run again

    Compare avg latency and P95/P99 of /slots between the runs.
    """
    wait_time = between(0.1, 0.5)

    def on_start(self):
        resp = self.client.get("/api/v1/events/?page=1&page_size=100")
        if resp.status_code == 200:
            for event in resp.json().get("events", []):
                if event["id"] not in EVENT_IDS:
                    EVENT_IDS.append(event["id"])

    @tag("slots")
    @task(10)
    def read_slots(self):
        if EVENT_IDS:
            self.client.get(f"/api/v1/events/{random.choice(EVENT_IDS)}/slots",
                name="/api/v1/events/{id}/slots")

    @tag("slots")
    @task(1)
    def read_slots_verified(self):
        if EVENT_IDS:
            self.client.get(f"/api/v1/events/{random.choice(EVENT_IDS)}/slots?verify=true",
                name="/api/v1/events/{id}/slots?verify")

    @tag("slots")
    @task(1)
    def readiness(self):
        self.client.get("/health/ready")


class EdgeCaseUser(HttpUser):
    """
    TEST 3: Edge cases - Bad input handling

    Run: locust -f locustfile.py --tags edge -u 20 -r 5 --run-time 30s

    System should NOT crash, return proper error codes.
    """
    wait_time = between(0.5, 1.5)

    @tag("edge")
    @task
    def unknown_event_slots(self):
        with self.client.get("/api/v1/events/999999/slots",
            name="/api/v1/events/{id}/slots [missing]",
            catch_response=True
        ) as resp:
            if resp.status_code == 404:
                resp.success()
            else:
                resp.failure(f"Expected 404, got {resp.status_code}")

    @tag("edge")
    @task
    def unknown_event_registration(self):
        with self.client.post("/api/v1/registrations/",
            json={"user_id": random_user_id(), "event_id": 999999},
            catch_response=True
        ) as resp:
            if resp.status_code == 404:
                resp.success()
            else:
                resp.failure(f"Expected 404, got {resp.status_code}")

    @tag("edge")
    @task
    def invalid_user_id(self):
        with self.client.post("/api/v1/registrations/",
            json={"user_id": -5, "event_id": 1},
            catch_response=True
        ) as resp:
            if resp.status_code == 422:
                resp.success()
            else:
                resp.failure(f"Expected 422, got {resp.status_code}")

    @tag("edge")
    @task
    def malformed_json(self):
        with self.client.post("/api/v1/registrations/",
            data="not json at all",
            catch_response=True
        ) as resp:
            if resp.status_code in [400, 422]:
                resp.success()
            else:
                resp.failure(f"Expected 400/422, got {resp.status_code}")


class RealisticUser(HttpUser):
    """
    TEST 4: Realistic mixed workload

    Run: locust -f locustfile.py -u 200 -r 20 --run-time 120s

    Mostly slot reads, some registrations, rare event creation.
    """
    wait_time = between(1, 3)

    def on_start(self):
        self.user_id = random_user_id()

    @task(30)
    def browse_events(self):
        resp = self.client.get("/api/v1/events/?page=1&page_size=20")
        if resp.status_code == 200:
            for event in resp.json().get("events", []):
                if event["id"] not in EVENT_IDS:
                    EVENT_IDS.append(event["id"])

    @task(50)
    def view_slots(self):
        if EVENT_IDS:
            self.client.get(f"/api/v1/events/{random.choice(EVENT_IDS)}/slots",
                name="/api/v1/events/{id}/slots")

    @task(10)
    def register(self):
        if EVENT_IDS:
            self.client.post("/api/v1/registrations/",
                json={"user_id": self.user_id, "event_id": random.choice(EVENT_IDS)})

    @task(3)
    def create_event(self):
        future = (datetime.now(timezone.utc) + timedelta(days=random.randint(1, 90))).isoformat()
        resp = self.client.post("/api/v1/events/", json={
            "title": f"Event {random.randint(1, 10000)}",
            "description": "Test event",
            "schedule": future,
            "venue": "Venue",
            "max_slots": random.randint(10, 500),
        })
        if resp.status_code == 201:
            EVENT_IDS.append(resp.json()["id"])
