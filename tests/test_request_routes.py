"""Endpoint tests for /api/requests."""


class TestCreateRequest:
    def test_creates_request(self, client, auth, owner, requester, make_book):
        book = make_book(owner)

        response = client.post("/api/requests", json={"book": book["id"], "type": "free"}, headers=auth(requester))

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "success"
        assert body["data"]["request"]["status"] == "pending"
        assert body["data"]["request"]["owner"] == owner["id"]

    def test_requires_token(self, client, owner, make_book):
        book = make_book(owner)

        response = client.post("/api/requests", json={"book": book["id"], "type": "free"})

        assert response.status_code == 401
        assert response.json() == {"status": "error", "message": "Access denied. No token provided."}

    def test_invalid_token(self, client, owner, make_book):
        book = make_book(owner)

        response = client.post(
            "/api/requests",
            json={"book": book["id"], "type": "free"},
            headers={"Authorization": "Bearer not-a-token"},
        )

        assert response.status_code == 401

    def test_deactivated_account(self, client, auth, owner, make_user, make_book):
        book = make_book(owner)
        gone = make_user("Gone", isActive=False)

        response = client.post("/api/requests", json={"book": book["id"], "type": "free"}, headers=auth(gone))

        assert response.status_code == 401
        assert response.json()["message"] == "Account is deactivated."

    def test_unknown_kind_is_validation_error(self, client, auth, owner, requester, make_book):
        book = make_book(owner)

        response = client.post("/api/requests", json={"book": book["id"], "type": "loan"}, headers=auth(requester))

        assert response.status_code == 400
        assert response.json()["status"] == "error"

    def test_missing_book_is_404(self, client, auth, requester):
        response = client.post("/api/requests", json={"book": "nope", "type": "free"}, headers=auth(requester))

        assert response.status_code == 404
        assert response.json() == {"status": "error", "message": "Book not found"}

    def test_duplicate_pending_is_400(self, client, auth, owner, requester, make_book):
        book = make_book(owner)
        client.post("/api/requests", json={"book": book["id"], "type": "free"}, headers=auth(requester))

        response = client.post("/api/requests", json={"book": book["id"], "type": "free"}, headers=auth(requester))

        assert response.status_code == 400
        assert response.json()["code"] == "duplicate_request"

    def test_exchange_with_foreign_book_is_400(self, client, auth, owner, requester, make_book):
        book = make_book(owner)
        foreign = make_book(owner, title="Emma")

        response = client.post(
            "/api/requests",
            json={"book": book["id"], "type": "exchange", "offeredBooks": foreign["id"]},
            headers=auth(requester),
        )

        assert response.status_code == 400


class TestLifecycleEndpoints:
    def _create(self, client, auth, requester, book):
        response = client.post("/api/requests", json={"book": book["id"], "type": "free"}, headers=auth(requester))
        return response.json()["data"]["request"]["id"]

    def test_accept_complete_rate(self, client, store, auth, owner, requester, make_book):
        book = make_book(owner)
        request_id = self._create(client, auth, requester, book)

        accepted = client.put(f"/api/requests/{request_id}", json={"status": "accepted"}, headers=auth(owner))
        assert accepted.status_code == 200
        assert accepted.json()["message"] == "Request accepted successfully"

        completed = client.put(f"/api/requests/{request_id}", json={"status": "completed"}, headers=auth(requester))
        assert completed.status_code == 200
        assert completed.json()["data"]["request"]["completedAt"]
        assert store.get("books", book["id"])["owner"] == requester["id"]

        rated = client.post(f"/api/requests/{request_id}/rate", json={"rating": 5, "review": "Lovely"},
                            headers=auth(requester))
        assert rated.status_code == 200
        assert rated.json()["data"]["rating"]["requesterRating"] == 5
        assert store.get("users", owner["id"])["rating"] == {"average": 5, "count": 1}

        again = client.post(f"/api/requests/{request_id}/rate", json={"rating": 1}, headers=auth(requester))
        assert again.status_code == 400
        assert again.json()["code"] == "already_rated"

    def test_invalid_transition_reports_both_statuses(self, client, auth, owner, requester, make_book):
        book = make_book(owner)
        request_id = self._create(client, auth, requester, book)

        response = client.put(f"/api/requests/{request_id}", json={"status": "completed"}, headers=auth(owner))

        assert response.status_code == 400
        body = response.json()
        assert body["message"] == "Cannot change status from pending to completed"
        assert body["details"] == {"current": "pending", "requested": "completed"}

    def test_requester_cannot_accept(self, client, auth, owner, requester, make_book):
        book = make_book(owner)
        request_id = self._create(client, auth, requester, book)

        response = client.put(f"/api/requests/{request_id}", json={"status": "accepted"}, headers=auth(requester))

        assert response.status_code == 403

    def test_unknown_status_value(self, client, auth, owner, requester, make_book):
        book = make_book(owner)
        request_id = self._create(client, auth, requester, book)

        response = client.put(f"/api/requests/{request_id}", json={"status": "archived"}, headers=auth(owner))

        assert response.status_code == 400

    def test_rating_out_of_range(self, client, auth, owner, requester, make_book):
        book = make_book(owner)
        request_id = self._create(client, auth, requester, book)

        response = client.post(f"/api/requests/{request_id}/rate", json={"rating": 6}, headers=auth(requester))

        assert response.status_code == 400

    def test_cancel_and_delete(self, client, store, auth, owner, requester, make_book):
        book = make_book(owner)
        request_id = self._create(client, auth, requester, book)
        client.put(f"/api/requests/{request_id}", json={"status": "cancelled"}, headers=auth(requester))

        by_owner = client.delete(f"/api/requests/{request_id}", headers=auth(owner))
        by_requester = client.delete(f"/api/requests/{request_id}", headers=auth(requester))
        missing = client.delete(f"/api/requests/{request_id}", headers=auth(requester))

        assert by_owner.status_code == 403
        assert by_requester.status_code == 200
        assert missing.status_code == 404
        assert store.get("requests", request_id) is None


class TestReadRequests:
    def test_list_sent_and_received(self, client, auth, owner, requester, make_book):
        book = make_book(owner)
        client.post("/api/requests", json={"book": book["id"], "type": "free"}, headers=auth(requester))

        sent = client.get("/api/requests", params={"type": "sent"}, headers=auth(requester)).json()
        received = client.get("/api/requests", params={"type": "received"}, headers=auth(requester)).json()
        owners_view = client.get("/api/requests", params={"status": "pending"}, headers=auth(owner)).json()

        assert sent["data"]["pagination"]["total"] == 1
        assert received["data"]["pagination"]["total"] == 0
        assert len(owners_view["data"]["requests"]) == 1

    def test_get_request_by_party_and_stranger(self, client, auth, owner, requester, make_user, make_book):
        book = make_book(owner)
        created = client.post("/api/requests", json={"book": book["id"], "type": "free"}, headers=auth(requester))
        request_id = created.json()["data"]["request"]["id"]
        stranger = make_user("Sam")

        mine = client.get(f"/api/requests/{request_id}", headers=auth(owner))
        theirs = client.get(f"/api/requests/{request_id}", headers=auth(stranger))

        assert mine.status_code == 200
        assert mine.json()["data"]["request"]["book"]["title"] == "Dune"
        assert theirs.status_code == 403
