# =============================================================================
# TESTS - Team roster and match results
# =============================================================================


def _member(client, admin, name="Kai", discord_id="111", **extra):
    body = {"name": name, "discordId": discord_id, **extra}
    return client.post("/matches/members", json=body, headers=admin)


class TestRoster:
    """Admin CRUD on team members."""

    def test_requires_admin(self, client, alice):
        assert _member(client, alice).status_code == 403
        assert client.get("/matches/members", headers=alice).status_code == 403

    def test_add_list_sorted_by_name(self, client, admin):
        _member(client, admin, "Zed", "1")
        _member(client, admin, "Amy", "2")

        names = [m["name"] for m in client.get("/matches/members", headers=admin).json()]

        assert names == ["Amy", "Zed"]

    def test_duplicate_discord_id(self, client, admin):
        _member(client, admin, "A", "1")

        assert _member(client, admin, "B", "1").status_code == 409

    def test_required_fields(self, client, admin):
        assert _member(client, admin, " ", "1").status_code == 400

    def test_update(self, client, admin):
        first = _member(client, admin, "A", "1").json()
        second = _member(client, admin, "B", "2").json()

        clash = client.put(f"/matches/members/{second['id']}", json={"name": "B", "discordId": "1"}, headers=admin)
        ok = client.put(
            f"/matches/members/{first['id']}",
            json={"name": "A2", "discordId": "1", "position": "support", "isActive": False},
            headers=admin,
        )

        assert clash.status_code == 409
        assert ok.json() == {"id": first["id"], "name": "A2", "discordId": "1", "position": "support", "isActive": False}

    def test_active_members_api(self, client, admin, alice):
        _member(client, admin, "On", "1")
        _member(client, admin, "Off", "2", isActive=False)

        members = client.get("/matches/api/members", headers=alice).json()

        assert [m["name"] for m in members] == ["On"]


class TestResults:
    """Match result records."""

    def test_create_and_list_with_player_names(self, client, admin, alice):
        kai = _member(client, admin, "Kai", "1").json()

        created = client.post(
            "/matches",
            json={"matchDate": "2026-05-01T20:00:00", "opponent": "Rivals", "players": [kai["id"], "ghost"], "result": "win"},
            headers=alice,
        )

        assert created.status_code == 201
        rows = client.get("/matches", headers=alice).json()
        assert rows[0]["playerNames"] == ["Kai", "Unknown player"]
        assert rows[0]["result"] == "win"

    def test_invalid_result_is_rejected(self, client, alice):
        response = client.post(
            "/matches",
            json={"matchDate": "2026-05-01T20:00:00", "opponent": "Rivals", "players": ["x"], "result": "tie"},
            headers=alice,
        )

        assert response.status_code == 422

    def test_missing_players_is_rejected(self, client, alice):
        response = client.post(
            "/matches",
            json={"matchDate": "2026-05-01T20:00:00", "opponent": "Rivals", "players": [], "result": "draw"},
            headers=alice,
        )

        assert response.status_code == 400

    def test_member_in_results_cannot_be_deleted(self, client, admin):
        kai = _member(client, admin, "Kai", "1").json()
        spare = _member(client, admin, "Spare", "2").json()
        client.post(
            "/matches",
            json={"matchDate": "2026-05-01T20:00:00", "opponent": "Rivals", "players": [kai["id"]], "result": "lose"},
            headers=admin,
        )

        assert client.delete(f"/matches/members/{kai['id']}", headers=admin).status_code == 400
        assert client.delete(f"/matches/members/{spare['id']}", headers=admin).status_code == 200
        assert client.delete(f"/matches/members/{spare['id']}", headers=admin).status_code == 404
