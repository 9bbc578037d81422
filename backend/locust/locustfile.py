"""
Locust Load Test Suite

Run scenarios:
  locust -f locustfile.py --tags votes        # Concurrent votes on one candidate
  locust -f locustfile.py --tags lobby        # Race for the second lobby slot
  locust -f locustfile.py --tags tournament   # 100 players -> 8 bracket slots
  locust -f locustfile.py --tags throughput   # Cached event list
  locust -f locustfile.py --tags edge         # Bad input
  locust -f locustfile.py                     # All tests

The votes scenario needs an open weekly round (POST /api/events/rounds/start as
a founder). The tournament scenario needs a Pro account's token in
APOXER_PRO_TOKEN to create the tournament.
"""

import os
import random
import string
from datetime import datetime, timezone, timedelta

from locust import HttpUser, task, between, tag, events

# Shared state
EVENT_IDS = []
CANDIDATE_ID = None
TOURNAMENT_ID = None
OPEN_LOBBIES = []

PRO_TOKEN = os.environ.get("APOXER_PRO_TOKEN")


def random_email():
    return f"load_{random.randint(10000, 999999)}@test.com"


def random_username():
    return "u_" + "".join(random.choices(string.ascii_lowercase, k=10))


def sign_up(client) -> dict:
    email = random_email()
    client.post("/api/auth/register", json={
        "email": email,
        "username": random_username(),
        "password": "loadtest123",
    })
    resp = client.post("/api/auth/login", json={"email": email, "password": "loadtest123"})
    if resp.status_code != 200:
        return {}
    return {"Authorization": f"Bearer {resp.json()['access_token']}"}


@events.test_start.add_listener
def on_test_start(environment, **kwargs):
    print("\n" + "=" * 60)
    print("SETUP: shared candidate, tournament and lobbies are created lazily")
    print("=" * 60)


class VoteUser(HttpUser):
    """
    TEST 1: Concurrent votes on the same candidate

    Run: locust -f locustfile.py --tags votes -u 100 -r 50 --run-time 30s

    After test, verify the counter matches the rows:
      SELECT c.total_votes, COUNT(v.id) FROM weekly_game_candidates c
      LEFT JOIN weekly_game_votes v ON v.candidate_id = c.id GROUP BY c.id;
    """
    wait_time = between(0, 0.1)

    def on_start(self):
        self.headers = sign_up(self.client)
        if self.headers and not CANDIDATE_ID:
            resp = self.client.post("/api/events/candidates",
                json={"game_id": "load-1", "game_name": "Load Test Game"},
                headers=self.headers)
            if resp.status_code in (200, 201):
                globals()["CANDIDATE_ID"] = resp.json()["id"]

    @tag("votes")
    @task(3)
    def cast_vote(self):
        if not CANDIDATE_ID or not self.headers:
            return
        with self.client.post("/api/events/votes",
            json={
                "candidate_id": CANDIDATE_ID,
                "time_pref": random.choice(["afternoon", "late_night"]),
                "day_pref": random.choice(["friday", "saturday", "sunday"]),
            },
            headers=self.headers,
            catch_response=True
        ) as resp:
            if resp.status_code == 200:
                resp.success()
            elif resp.status_code == 400:
                resp.success()  # Expected: already voted
            else:
                resp.failure(f"Unexpected: {resp.status_code}")

    @tag("votes")
    @task(1)
    def remove_vote(self):
        if not CANDIDATE_ID or not self.headers:
            return
        with self.client.delete(f"/api/events/votes?candidate_id={CANDIDATE_ID}",
            headers=self.headers,
            catch_response=True
        ) as resp:
            if resp.status_code in (200, 404):
                resp.success()
            else:
                resp.failure(f"Unexpected: {resp.status_code}")


class LobbyUser(HttpUser):
    """
    TEST 2: Two-player lobbies under contention

    Run: locust -f locustfile.py --tags lobby -u 100 -r 50 --run-time 30s

    After test, verify no lobby went over capacity:
      SELECT lobby_id, COUNT(*) FROM lobby_members GROUP BY lobby_id HAVING COUNT(*) > 2;
    Should return no rows.
    """
    wait_time = between(0, 0.2)

    def on_start(self):
        self.headers = sign_up(self.client)

    @tag("lobby")
    @task(1)
    def host(self):
        if not self.headers:
            return
        resp = self.client.post("/api/lobbies/quick-create",
            json={"game_id": "730", "game_name": "Counter-Strike 2"},
            headers=self.headers)
        if resp.status_code == 201:
            OPEN_LOBBIES.append(resp.json()["lobby_id"])
            del OPEN_LOBBIES[:-20]

    @tag("lobby")
    @task(5)
    def join(self):
        if not OPEN_LOBBIES or not self.headers:
            return
        with self.client.post(f"/api/lobbies/{random.choice(OPEN_LOBBIES)}/join",
            headers=self.headers,
            name="/api/lobbies/{id}/join",
            catch_response=True
        ) as resp:
            if resp.status_code in (200, 400, 404):
                resp.success()  # 400: full, 404: closed by its host
            else:
                resp.failure(f"Unexpected: {resp.status_code}")


class TournamentUser(HttpUser):
    """
    TEST 3: Registration race - 100 players, 8 slots

    Run: APOXER_PRO_TOKEN=... locust -f locustfile.py --tags tournament -u 100 -r 50 --run-time 30s

    After test, verify:
      SELECT COUNT(*) FROM tournament_participants WHERE tournament_id = X AND status <> 'withdrawn';
    Should be <= 8, and equal to tournaments.participant_count.
    """
    wait_time = between(0, 0.1)

    def on_start(self):
        self.headers = sign_up(self.client)
        if PRO_TOKEN and not TOURNAMENT_ID:
            start = datetime.now(timezone.utc) + timedelta(days=7)
            resp = self.client.post("/api/tournaments",
                json={
                    "game_id": "730",
                    "game_name": "Counter-Strike 2",
                    "title": "Load Test Cup",
                    "max_participants": 8,
                    "platform": "pc",
                    "start_at": start.isoformat(),
                    "registration_deadline": (start - timedelta(days=1)).isoformat(),
                },
                headers={"Authorization": f"Bearer {PRO_TOKEN}"})
            if resp.status_code == 201:
                globals()["TOURNAMENT_ID"] = resp.json()["id"]
                print(f"\nCreated tournament {TOURNAMENT_ID} with 8 slots\n")

    @tag("tournament")
    @task
    def register(self):
        if not TOURNAMENT_ID or not self.headers:
            return
        with self.client.post(f"/api/tournaments/{TOURNAMENT_ID}/register",
            headers=self.headers,
            catch_response=True
        ) as resp:
            if resp.status_code in (201, 400):
                resp.success()  # 400: full or already registered
            else:
                resp.failure(f"Unexpected: {resp.status_code}")


class ThroughputUser(HttpUser):
    """
    TEST 4: Throughput - Cache effectiveness

    Run twice:
      1. With Redis: locust -f locustfile.py --tags throughput -u 100 -r 20 --run-time 60s
      2. Without Redis: REDIS_ENABLED=false, run again

    Compare:
      - Avg response time
      - Requests/sec
      - P95/P99 latency
    """
    wait_time = between(0.1, 0.5)

    @tag("throughput", "read")
    @task(10)
    def list_events_cached(self):
        resp = self.client.get("/api/events", name="/api/events [cached]")
        if resp.status_code == 200:
            for event in resp.json().get("events", []):
                if event["id"] not in EVENT_IDS:
                    EVENT_IDS.append(event["id"])

    @tag("throughput", "read")
    @task(3)
    def get_event_detail(self):
        if EVENT_IDS:
            self.client.get(f"/api/events/{random.choice(EVENT_IDS)}",
                name="/api/events/{id}")

    @tag("throughput", "read")
    @task(3)
    def current_round(self):
        self.client.get("/api/events/rounds/current")

    @tag("throughput")
    @task(1)
    def health_check(self):
        self.client.get("/health")


class EdgeCaseUser(HttpUser):
    """
    TEST 5: Edge cases - Bad input handling

    Run: locust -f locustfile.py --tags edge -u 20 -r 5 --run-time 30s

    System should NOT crash, return proper error codes.
    """
    wait_time = between(0.5, 1.5)

    def on_start(self):
        self.headers = sign_up(self.client)

    def expect(self, resp, codes):
        if resp.status_code in codes:
            resp.success()
        else:
            resp.failure(f"Expected {codes}, got {resp.status_code}")

    @tag("edge")
    @task
    def vote_unknown_candidate(self):
        with self.client.post("/api/events/votes",
            json={"candidate_id": 999999},
            headers=self.headers,
            catch_response=True
        ) as resp:
            self.expect(resp, (400, 404))

    @tag("edge")
    @task
    def bad_time_slot(self):
        with self.client.post("/api/events/votes",
            json={"candidate_id": 1, "time_pref": "dawn"},
            headers=self.headers,
            catch_response=True
        ) as resp:
            self.expect(resp, (422,))

    @tag("edge")
    @task
    def odd_bracket_size(self):
        with self.client.post("/api/tournaments",
            json={"game_id": "1", "game_name": "x", "title": "x", "max_participants": 12,
                  "platform": "pc", "start_at": "2030-01-01T00:00:00Z",
                  "registration_deadline": "2029-12-31T00:00:00Z"},
            headers=self.headers,
            catch_response=True
        ) as resp:
            self.expect(resp, (403, 422))

    @tag("edge")
    @task
    def malformed_json(self):
        with self.client.post("/api/lobbies/quick-create",
            data="not json at all",
            headers=self.headers,
            catch_response=True
        ) as resp:
            self.expect(resp, (400, 422))

    @tag("edge")
    @task
    def missing_auth(self):
        with self.client.post("/api/lobbies/quick-create",
            json={"game_id": "730", "game_name": "Counter-Strike 2"},
            catch_response=True
        ) as resp:
            self.expect(resp, (401,))
