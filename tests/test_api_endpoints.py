from __future__ import annotations


def _register(api_client, username: str) -> str:
    r = api_client.post(
        "/api/users/register",
        json={"username": username, "email": f"{username}@example.com", "full_name": username.title()},
    )
    assert r.status_code == 201, r.text
    return r.json()["id"]


def test_health_metrics_and_request_id(api_client) -> None:
    r = api_client.get("/api/health", headers={"X-Request-Id": "req_fixed"})
    assert r.status_code == 200
    assert r.json()["status"] == "ok"
    assert r.headers["X-Request-Id"] == "req_fixed"

    m = api_client.get("/api/metrics")
    assert m.status_code == 200
    assert 'murmur_http_requests_total{path="/api/health",method="GET",status="200"} 1' in m.text


def test_auth_is_required(api_client) -> None:
    assert api_client.get("/api/users/me").status_code == 401
    bad = api_client.get("/api/users/me", headers={"Authorization": "Bearer not-a-token"})
    assert bad.status_code == 401
    assert api_client.get("/api/posts", headers={"Authorization": "Basic abc"}).status_code == 401


def test_register_profile_and_update(api_client, auth_headers) -> None:
    ada = _register(api_client, "ada")
    dup = api_client.post(
        "/api/users/register",
        json={"username": "ADA", "email": "x@example.com", "full_name": "X"},
    )
    assert dup.status_code == 409
    assert dup.json() == {"error": "already_exists", "detail": "User with email or username already exists!"}
    assert "Retry-After" not in dup.headers

    me = api_client.get("/api/users/me", headers=auth_headers(ada))
    assert me.status_code == 200
    assert me.json()["username"] == "ada"
    assert me.json()["followers_count"] == 0

    upd = api_client.patch("/api/users/me", json={"full_name": "Ada L."}, headers=auth_headers(ada))
    assert upd.status_code == 200
    assert upd.json()["full_name"] == "Ada L."

    empty = api_client.patch("/api/users/me", json={}, headers=auth_headers(ada))
    assert empty.status_code == 400
    assert empty.json()["error"] == "invalid_input"

    missing = api_client.get("/api/users/profile/nobody", headers=auth_headers(ada))
    assert missing.status_code == 404


def test_follow_endpoints(api_client, auth_headers) -> None:
    ada = _register(api_client, "ada")
    bea = _register(api_client, "bea")
    h = auth_headers(ada)

    r = api_client.put(f"/api/follows/{bea}", json={"follow": True}, headers=h)
    assert r.status_code == 200
    assert r.json() == {
        "ok": True,
        "following": True,
        "changed": True,
        "follower_count": 1,
        "following_count": 1,
    }
    again = api_client.put(f"/api/follows/{bea}", json={"follow": True}, headers=h)
    assert again.json()["changed"] is False

    followers = api_client.get("/api/follows/followers/bea", headers=h)
    assert [u["username"] for u in followers.json()] == ["ada"]
    following = api_client.get("/api/follows/following/ada", headers=h)
    assert [u["id"] for u in following.json()] == [bea]

    profile = api_client.get("/api/users/profile/bea", headers=h).json()
    assert profile["followers_count"] == 1
    assert profile["is_following"] is True

    toggled = api_client.post(f"/api/follows/{bea}/toggle", headers=h)
    assert toggled.json()["following"] is False

    self_follow = api_client.put(f"/api/follows/{ada}", json={"follow": True}, headers=h)
    assert self_follow.status_code == 400
    assert self_follow.json() == {"error": "self_reference", "detail": "User cannot follow self!"}

    ghost = api_client.put("/api/follows/u_ghost", json={"follow": True}, headers=h)
    assert ghost.status_code == 404

    bad_body = api_client.put(f"/api/follows/{bea}", json={}, headers=h)
    assert bad_body.status_code == 422


def test_post_comment_and_like_flow(api_client, auth_headers) -> None:
    ada = _register(api_client, "ada")
    bea = _register(api_client, "bea")
    ha, hb = auth_headers(ada), auth_headers(bea)

    created = api_client.post("/api/posts", json={"message": "hello world"}, headers=ha)
    assert created.status_code == 201
    post = created.json()
    assert post["posted_by"]["username"] == "ada"
    pid = post["id"]

    liked = api_client.put(f"/api/posts/{pid}/like", json={"like": True}, headers=hb)
    assert liked.json() == {"ok": True, "liked": True, "changed": True, "likes": 1}
    toggled = api_client.patch(f"/api/posts/{pid}/like", headers=hb)
    assert toggled.json()["liked"] is False

    c = api_client.post(f"/api/posts/{pid}/comments", json={"text": "nice"}, headers=hb)
    assert c.status_code == 201
    cid = c.json()["id"]
    assert c.json()["user"]["username"] == "bea"

    clike = api_client.put(
        f"/api/posts/{pid}/comments/{cid}/like", json={"like": True}, headers=ha
    )
    assert clike.json()["likes"] == 1
    ctoggle = api_client.patch(f"/api/posts/{pid}/comments/{cid}/like", headers=ha)
    assert ctoggle.json()["likes"] == 0

    listed = api_client.get(f"/api/posts/{pid}/comments", headers=ha).json()
    assert [x["id"] for x in listed] == [cid]

    feed = api_client.get("/api/posts", params={"username": "ada", "limit": 5}, headers=hb)
    assert feed.status_code == 200
    assert [p["id"] for p in feed.json()] == [pid]
    assert feed.json()[0]["total_comments"] == 1

    assert api_client.get("/api/posts", params={"limit": 0}, headers=hb).status_code == 422

    edit = api_client.put(f"/api/posts/{pid}", json={"message": "edited"}, headers=hb)
    assert edit.status_code == 403
    edit = api_client.put(f"/api/posts/{pid}", json={"message": "edited"}, headers=ha)
    assert edit.json()["message"] == "edited"

    wrong_post = api_client.delete(f"/api/posts/p_other/comments/{cid}", headers=hb)
    assert wrong_post.status_code == 404
    forbidden = api_client.delete(f"/api/posts/{pid}/comments/{cid}", headers=ha)
    assert forbidden.status_code == 403

    removed = api_client.delete(f"/api/posts/{pid}", headers=ha)
    assert removed.json() == {"ok": True, "posts_deleted": 1, "comments_deleted": 1}

    gone = api_client.get(f"/api/posts/{pid}", headers=ha)
    assert gone.status_code == 404
    assert gone.json() == {"error": "not_found", "detail": "Post not found!"}


def test_delete_account_cascades(api_client, auth_headers) -> None:
    ada = _register(api_client, "ada")
    bea = _register(api_client, "bea")
    ha, hb = auth_headers(ada), auth_headers(bea)

    api_client.put(f"/api/follows/{bea}", json={"follow": True}, headers=ha)
    api_client.put(f"/api/follows/{ada}", json={"follow": True}, headers=hb)
    pid = api_client.post("/api/posts", json={"message": "bea's post"}, headers=hb).json()["id"]
    api_client.put(f"/api/posts/{pid}/like", json={"like": True}, headers=ha)
    api_client.post(f"/api/posts/{pid}/comments", json={"text": "from ada"}, headers=ha)

    out = api_client.delete("/api/users/me", headers=ha)
    assert out.status_code == 200
    assert out.json() == {
        "ok": True,
        "posts_deleted": 0,
        "comments_deleted": 1,
        "likes_removed": 1,
        "follow_edges_removed": 2,
    }

    assert api_client.get("/api/users/me", headers=ha).status_code == 404
    bea_profile = api_client.get("/api/users/me", headers=hb).json()
    assert bea_profile["followers_count"] == 0
    assert bea_profile["following_count"] == 0
    assert bea_profile["posts"][0]["total_likes"] == 0
    assert bea_profile["posts"][0]["total_comments"] == 0


class _AlwaysConflictingStore:
    def __init__(self, inner) -> None:
        self._inner = inner

    def begin_transaction(self):
        from murmur_api.errors import ConflictError

        txn = self._inner.begin_transaction()

        def commit() -> None:
            txn.abort()
            raise ConflictError("The resource was modified concurrently, please retry.")

        txn.commit = commit
        return txn


def test_exhausted_conflict_retries_surface_as_retryable_409(memory_store, auth_headers) -> None:
    from fastapi.testclient import TestClient

    from murmur_api.main import create_app

    client = TestClient(create_app(store=_AlwaysConflictingStore(memory_store)))
    r = client.post(
        "/api/users/register",
        json={"username": "ada", "email": "ada@example.com", "full_name": "Ada"},
    )
    assert r.status_code == 409
    assert r.json() == {
        "error": "conflict",
        "detail": "The resource was modified concurrently, please retry.",
        "retryable": True,
    }
    assert r.headers["Retry-After"] == "1"
