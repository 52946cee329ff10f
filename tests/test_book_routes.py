"""Endpoint tests for /api/books."""

NEW_BOOK = {
    "title": "The Hobbit",
    "author": "J.R.R. Tolkien",
    "genre": "Fantasy",
    "condition": "Like New",
    "tags": [" Classic ", "ADVENTURE"],
}


class TestListBooks:
    def test_public_listing_shows_only_available_active(self, client, owner, make_book):
        make_book(owner, title="Dune")
        make_book(owner, title="Emma", status="Not Available")
        make_book(owner, title="Ulysses", isActive=False)

        response = client.get("/api/books")

        assert response.status_code == 200
        titles = [book["title"] for book in response.json()["data"]["books"]]
        assert titles == ["Dune"]

    def test_excludes_callers_own_books(self, client, auth, owner, requester, make_book):
        make_book(owner, title="Dune")
        make_book(requester, title="Emma")

        response = client.get("/api/books", headers=auth(requester))

        titles = [book["title"] for book in response.json()["data"]["books"]]
        assert titles == ["Dune"]

    def test_filters_and_search(self, client, owner, make_book):
        make_book(owner, title="Dune", genre="Sci-Fi")
        make_book(owner, title="Emma", author="Jane Austen", genre="Romance")

        by_genre = client.get("/api/books", params={"genre": "Romance"}).json()
        by_search = client.get("/api/books", params={"search": "austen"}).json()

        assert [b["title"] for b in by_genre["data"]["books"]] == ["Emma"]
        assert [b["title"] for b in by_search["data"]["books"]] == ["Emma"]

    def test_pagination(self, client, owner, make_book):
        for title in ("A", "B", "C"):
            make_book(owner, title=title)

        body = client.get("/api/books", params={"page": 2, "limit": 2}).json()

        assert body["data"]["pagination"] == {"page": 2, "limit": 2, "total": 3, "pages": 2}
        assert [b["title"] for b in body["data"]["books"]] == ["A"]


class TestManageBooks:
    def test_create_book(self, client, store, auth, owner):
        response = client.post("/api/books", json=NEW_BOOK, headers=auth(owner))

        assert response.status_code == 201
        book = response.json()["data"]["book"]
        assert book["owner"] == owner["id"]
        assert book["status"] == "Available"
        assert book["tags"] == ["classic", "adventure"]
        assert store.get("books", book["id"])["isActive"] is True

    def test_create_book_rejects_unknown_genre(self, client, auth, owner):
        response = client.post("/api/books", json={**NEW_BOOK, "genre": "Poetry"}, headers=auth(owner))

        assert response.status_code == 400
        assert response.json()["message"].startswith("genre")

    def test_get_book(self, client, owner, make_book):
        book = make_book(owner)

        response = client.get(f"/api/books/{book['id']}")

        assert response.status_code == 200
        assert response.json()["data"]["book"]["ownerInfo"]["name"] == "Alice"

    def test_my_books(self, client, auth, owner, make_book):
        make_book(owner, title="Dune")
        make_book(owner, title="Emma", status="Not Available")

        response = client.get("/api/books/my-books", headers=auth(owner))

        assert response.json()["data"]["pagination"]["total"] == 2

    def test_only_owner_updates(self, client, auth, owner, requester, make_book):
        book = make_book(owner)

        forbidden = client.put(f"/api/books/{book['id']}", json={"title": "Dune Messiah"}, headers=auth(requester))
        allowed = client.put(f"/api/books/{book['id']}", json={"title": "Dune Messiah"}, headers=auth(owner))

        assert forbidden.status_code == 403
        assert allowed.json()["data"]["book"]["title"] == "Dune Messiah"

    def test_cannot_release_book_held_by_accepted_request(self, client, store, auth, owner, requester, make_book):
        book = make_book(owner, status="Not Available")
        store.seed("requests", requester=requester["id"], owner=owner["id"], book=book["id"],
                   type="free", status="accepted", rating={})

        response = client.put(f"/api/books/{book['id']}", json={"status": "Available"}, headers=auth(owner))

        assert response.status_code == 400
        assert store.get("books", book["id"])["status"] == "Not Available"

    def test_delete_refused_with_pending_requests(self, client, auth, owner, requester, make_book):
        book = make_book(owner)
        client.post("/api/requests", json={"book": book["id"], "type": "free"}, headers=auth(requester))

        response = client.delete(f"/api/books/{book['id']}", headers=auth(owner))

        assert response.status_code == 400
        assert response.json()["message"] == "Cannot delete book with pending requests"

    def test_delete_is_soft(self, client, store, auth, owner, make_book):
        book = make_book(owner)

        response = client.delete(f"/api/books/{book['id']}", headers=auth(owner))

        assert response.status_code == 200
        assert store.get("books", book["id"])["isActive"] is False
        assert client.get(f"/api/books/{book['id']}").status_code == 404

    def test_null_fields_are_ignored(self, client, store, auth, owner, make_book):
        book = make_book(owner, title="Dune")

        only_nulls = client.put(f"/api/books/{book['id']}", json={"status": None, "title": None}, headers=auth(owner))
        mixed = client.put(f"/api/books/{book['id']}", json={"status": None, "author": "F. Herbert"}, headers=auth(owner))

        assert only_nulls.status_code == 400
        assert mixed.status_code == 200
        stored = store.get("books", book["id"])
        assert stored["status"] == "Available"
        assert stored["title"] == "Dune"
        assert stored["author"] == "F. Herbert"


class TestRecommendations:
    def test_prefers_caller_genres(self, client, auth, owner, make_user, make_book):
        reader = make_user("Bea", preferences={"genres": ["Romance"], "languages": ["English"], "exchangeRadius": 10})
        make_book(owner, title="Dune", genre="Sci-Fi")
        make_book(owner, title="Emma", genre="Romance")
        make_book(reader, title="Persuasion", genre="Romance")

        response = client.get("/api/books/recommendations", headers=auth(reader))

        assert response.status_code == 200
        assert [b["title"] for b in response.json()["data"]["recommendations"]] == ["Emma"]

    def test_best_rated_first_without_preferences(self, client, auth, owner, requester, make_book):
        make_book(owner, title="Dune", rating={"average": 3, "count": 2})
        make_book(owner, title="Emma", rating={"average": 5, "count": 1})
        make_book(owner, title="Ulysses", status="Not Available")

        response = client.get("/api/books/recommendations", headers=auth(requester))

        assert [b["title"] for b in response.json()["data"]["recommendations"]] == ["Emma", "Dune"]

    def test_requires_token(self, client):
        assert client.get("/api/books/recommendations").status_code == 401


class TestRateBook:
    def test_rate_after_completed_exchange(self, client, auth, owner, requester, make_book):
        book = make_book(owner)
        created = client.post("/api/requests", json={"book": book["id"], "type": "free"}, headers=auth(requester))
        request_id = created.json()["data"]["request"]["id"]
        client.put(f"/api/requests/{request_id}", json={"status": "accepted"}, headers=auth(owner))
        client.put(f"/api/requests/{request_id}", json={"status": "completed"}, headers=auth(requester))

        first = client.post(f"/api/books/{book['id']}/rate", json={"rating": 4.5}, headers=auth(requester))
        second = client.post(f"/api/books/{book['id']}/rate", json={"rating": 1}, headers=auth(requester))

        assert first.status_code == 200
        assert first.json()["data"]["rating"] == {"average": 4.5, "count": 1}
        assert second.status_code == 400
        assert second.json()["code"] == "already_rated"

    def test_rate_without_completed_request(self, client, auth, owner, requester, make_book):
        book = make_book(owner)

        response = client.post(f"/api/books/{book['id']}/rate", json={"rating": 5}, headers=auth(requester))

        assert response.status_code == 400
        assert response.json()["message"] == "You can only rate books you have received through completed requests"

    def test_rating_out_of_range(self, client, auth, requester, owner, make_book):
        book = make_book(owner)

        response = client.post(f"/api/books/{book['id']}/rate", json={"rating": 6}, headers=auth(requester))

        assert response.status_code == 400
