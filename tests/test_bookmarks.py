"""Bookmark listing and toggling."""


def test_toggle_twice_returns_to_unbookmarked(client, headers, user, make_post):
    post = make_post(user)

    first = client.post(f"/bookmarks/{post.id}", headers=headers)
    assert first.status_code == 200
    assert first.json()["message"] == "Post bookmarked"
    assert [p["id"] for p in first.json()["data"]] == [post.id]

    second = client.post(f"/bookmarks/{post.id}", headers=headers)
    assert second.json()["message"] == "Bookmark removed"
    assert second.json()["data"] == []

    assert client.get("/bookmarks", headers=headers).json()["data"] == []


def test_list_bookmarks(client, headers, user, make_post):
    first, second, _ = make_post(user, title="A"), make_post(user, title="B"), make_post(user, title="C")
    client.post(f"/bookmarks/{second.id}", headers=headers)
    client.post(f"/bookmarks/{first.id}", headers=headers)

    res = client.get("/bookmarks", headers=headers)

    assert res.status_code == 200
    assert res.json()["message"] == "Bookmarks retrieved successfully"
    assert [p["title"] for p in res.json()["data"]] == ["A", "B"]


def test_bookmarks_are_per_user(client, headers, user, make_user, auth_headers, make_post):
    post = make_post(user)
    client.post(f"/bookmarks/{post.id}", headers=headers)

    assert client.get("/bookmarks", headers=auth_headers(make_user())).json()["data"] == []


def test_toggle_unknown_post(client, headers):
    res = client.post("/bookmarks/999", headers=headers)

    assert res.status_code == 404
    assert res.json() == {"success": False, "message": "Post not found"}
