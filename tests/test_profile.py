# =============================================================================
# TESTS - Profile and Discord mapping endpoints
# =============================================================================

from conftest import user_id

from synapse_note.models import Quiz, QuizAttempt


def _mapping(nickname="Kai", discord_id="123456789012345678", description=""):
    return {"nickname": nickname, "discordId": discord_id, "description": description}


class TestProfile:
    """Own profile, public profile and updates."""

    def test_own_profile_stats(self, client, alice, db):
        me = user_id(client, alice)
        db.add(Quiz(title="Public", owner_id=me, visibility="public", questions=[]))
        db.add(Quiz(title="Private", owner_id=me, visibility="private", questions=[]))
        db.add(QuizAttempt(user_id=me, total_score=3, max_score=4))
        db.add(QuizAttempt(user_id=me, total_score=1, max_score=4))
        db.commit()

        data = client.get("/profile", headers=alice).json()

        assert data["stats"] == {"createdQuizzes": 2, "takenQuizzes": 2, "averageScore": 50}
        assert data["isOwnProfile"] is True

    def test_public_profile_counts_public_quizzes_only(self, client, alice, bob, db):
        me = user_id(client, alice)
        db.add(Quiz(title="Public", owner_id=me, visibility="public", questions=[]))
        db.add(Quiz(title="Private", owner_id=me, visibility="private", questions=[]))
        db.commit()

        data = client.get("/profile/alice", headers=bob).json()

        assert data["user"]["handle"] == "@alice"
        assert data["stats"]["createdQuizzes"] == 1
        assert data["stats"]["averageScore"] == 0
        assert data["isOwnProfile"] is False

    def test_public_profile_accepts_at_and_anonymous(self, client, alice):
        assert client.get("/profile/@alice").status_code == 200
        assert client.get("/profile/nobody").status_code == 404

    def test_update_profile(self, client, alice):
        response = client.put("/profile", json={"username": "  Alice L.  ", "bio": "Hi"}, headers=alice)

        assert response.status_code == 200
        assert response.json()["username"] == "Alice L."
        assert response.json()["bio"] == "Hi"

    def test_update_validation(self, client, alice):
        assert client.put("/profile", json={"username": " "}, headers=alice).status_code == 400
        assert client.put("/profile", json={"username": "x" * 51}, headers=alice).status_code == 400
        assert client.put("/profile", json={"username": "ok", "bio": "b" * 501}, headers=alice).status_code == 400


class TestDiscordMappings:
    """CRUD for nickname to Discord id mappings."""

    def test_add_and_list(self, client, alice):
        response = client.post("/profile/discord", json=_mapping(description="captain"), headers=alice)

        assert response.status_code == 201
        mappings = client.get("/profile/discord", headers=alice).json()["mappings"]
        assert mappings[0]["nickname"] == "Kai"
        assert mappings[0]["description"] == "captain"

    def test_validation(self, client, alice):
        assert client.post("/profile/discord", json=_mapping(discord_id="12345"), headers=alice).status_code == 400
        assert client.post("/profile/discord", json=_mapping(nickname="n" * 31), headers=alice).status_code == 400
        assert client.post("/profile/discord", json=_mapping(description="d" * 101), headers=alice).status_code == 400

    def test_duplicates_are_rejected(self, client, alice):
        client.post("/profile/discord", json=_mapping(), headers=alice)

        same_nick = client.post("/profile/discord", json=_mapping(discord_id="223456789012345678"), headers=alice)
        same_id = client.post("/profile/discord", json=_mapping(nickname="Other"), headers=alice)

        assert same_nick.status_code == 409
        assert same_id.status_code == 409

    def test_at_most_ten(self, client, alice):
        for i in range(10):
            response = client.post("/profile/discord", json=_mapping(f"nick{i}", f"1234567890123456{i:02d}"), headers=alice)
            assert response.status_code == 201

        response = client.post("/profile/discord", json=_mapping("extra", "999999999999999999"), headers=alice)

        assert response.status_code == 400

    def test_update_and_delete_by_index(self, client, alice):
        client.post("/profile/discord", json=_mapping(), headers=alice)
        client.post("/profile/discord", json=_mapping("Mia", "223456789012345678"), headers=alice)

        updated = client.put("/profile/discord/0", json=_mapping("Kai2"), headers=alice)
        clash = client.put("/profile/discord/0", json=_mapping("Mia"), headers=alice)
        missing = client.put("/profile/discord/5", json=_mapping(), headers=alice)

        assert updated.status_code == 200
        assert updated.json()["mappings"][0]["nickname"] == "Kai2"
        assert clash.status_code == 409
        assert missing.status_code == 404

        remaining = client.delete("/profile/discord/0", headers=alice).json()["mappings"]
        assert [m["nickname"] for m in remaining] == ["Mia"]

    def test_resolve(self, client, alice):
        client.post("/profile/discord", json=_mapping(), headers=alice)

        data = client.post("/profile/discord/resolve", json={"text": "ping @kai please"}, headers=alice).json()

        assert data["resolvedText"] == "ping [Discord:Kai(123456789012345678)] please"
        assert data["hasDiscordReferences"] is True
