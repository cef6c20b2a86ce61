# =============================================================================
# TESTS - Tournaments and first-round pairing
# =============================================================================

import random
from datetime import datetime, timedelta

from conftest import register

from synapse_note.models import Match, Quiz, TournamentParticipant
from synapse_note.routers.tournaments import pair_first_round


def _create(client, admin, **overrides):
    body = {"name": "Spring Cup", "description": "Friendly", **overrides}
    response = client.post("/tournaments", json=body, headers=admin)
    assert response.status_code == 201, response.text
    return response.json()


class TestPairing:
    """Pure pairing helper."""

    def test_even_count_pairs_everyone(self):
        pairs, bye = pair_first_round(["a", "b", "c", "d"], random.Random(1))

        assert bye is None
        assert sorted(p for pair in pairs for p in pair) == ["a", "b", "c", "d"]
        assert len(pairs) == 2

    def test_odd_count_leaves_one_bye(self):
        pairs, bye = pair_first_round(["a", "b", "c"], random.Random(7))

        assert len(pairs) == 1
        assert bye in {"a", "b", "c"}
        assert bye not in pairs[0]

    def test_seeded_rng_is_deterministic(self):
        ids = [str(i) for i in range(8)]

        assert pair_first_round(ids, random.Random(42)) == pair_first_round(ids, random.Random(42))


class TestTournamentFlow:
    """Create, join, start and play."""

    def test_create_requires_admin(self, client, alice):
        assert client.post("/tournaments", json={"name": "X"}, headers=alice).status_code == 403

    def test_create_defaults(self, client, admin):
        t = _create(client, admin)

        assert t["status"] == "upcoming"
        assert t["maxParticipants"] == 16
        assert t["entryFee"] == 0

    def test_list_newest_first(self, client, admin):
        _create(client, admin, name="First")
        _create(client, admin, name="Second")

        names = [t["name"] for t in client.get("/tournaments").json()]

        assert names[0] == "Second"

    def test_join_rules(self, client, admin, alice, bob):
        t = _create(client, admin, max_participants=2)
        carol = register(client, "@carol")

        assert client.post(f"/tournaments/{t['id']}/join", headers=alice).status_code == 200
        assert client.post(f"/tournaments/{t['id']}/join", headers=alice).status_code == 400
        assert client.post(f"/tournaments/{t['id']}/join", headers=bob).status_code == 200
        full = client.post(f"/tournaments/{t['id']}/join", headers=carol)
        assert full.status_code == 400
        assert "full" in full.json()["detail"]
        assert client.post("/tournaments/missing/join", headers=alice).status_code == 404

    def test_start_needs_two_participants(self, client, admin, alice):
        t = _create(client, admin)
        client.post(f"/tournaments/{t['id']}/join", headers=alice)

        assert client.post(f"/tournaments/{t['id']}/start", headers=admin).status_code == 400

    def test_start_generates_first_round(self, client, admin, alice, bob, db):
        db.add(Quiz(id="pub", title="Public", visibility="public", owner_id="x", questions=[]))
        db.add(Quiz(id="priv", title="Private", visibility="private", owner_id="x", questions=[]))
        db.commit()
        t = _create(client, admin)
        carol = register(client, "@carol")
        for headers in (alice, bob, carol):
            client.post(f"/tournaments/{t['id']}/join", headers=headers)

        response = client.post(f"/tournaments/{t['id']}/start", headers=admin)

        assert response.status_code == 200
        data = response.json()
        assert len(data["matches"]) == 1
        assert data["bye"] is not None
        match = data["matches"][0]
        assert match["round"] == 1
        assert match["status"] == "scheduled"
        assert match["quizId"] == "pub"
        scheduled = datetime.fromisoformat(match["scheduledAt"])
        assert datetime.utcnow() - timedelta(minutes=1) <= scheduled <= datetime.utcnow() + timedelta(days=7)
        assert db.query(TournamentParticipant).filter(TournamentParticipant.status == "active").count() == 3

        detail = client.get(f"/tournaments/{t['id']}").json()
        assert detail["tournament"]["status"] == "active"
        assert len(detail["participants"]) == 3
        assert len(detail["matches"]) == 1

        assert client.post(f"/tournaments/{t['id']}/start", headers=admin).status_code == 400
        assert client.post(f"/tournaments/{t['id']}/join", headers=register(client, "@late")).status_code == 400

    def test_match_detail_and_start(self, client, admin, alice, bob, db):
        t = _create(client, admin)
        client.post(f"/tournaments/{t['id']}/join", headers=alice)
        client.post(f"/tournaments/{t['id']}/join", headers=bob)
        match = client.post(f"/tournaments/{t['id']}/start", headers=admin).json()["matches"][0]
        outsider = register(client, "@outsider")

        detail = client.get(f"/tournaments/matches/{match['id']}").json()
        assert {detail["participant1"]["handle"], detail["participant2"]["handle"]} == {"@alice", "@bob"}
        assert detail["quiz"] is None

        assert client.post(f"/tournaments/matches/{match['id']}/start", headers=outsider).status_code == 403
        assert client.post(f"/tournaments/matches/{match['id']}/start", headers=alice).status_code == 200
        assert client.post(f"/tournaments/matches/{match['id']}/start", headers=bob).status_code == 400
        assert db.get(Match, match["id"]).status == "in_progress"

    def test_missing_match(self, client):
        assert client.get("/tournaments/matches/none").status_code == 404
