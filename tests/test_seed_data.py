from __future__ import annotations


def test_seed_demo_graph_is_idempotent(store) -> None:
    from murmur_api.integrity import audit_graph
    from murmur_api.seed import DEMO_USERS, seed_demo_graph
    from murmur_api.views import get_user_profile_by_username

    first = seed_demo_graph(store)
    assert first["users_created"] == len(DEMO_USERS)
    assert first["posts_created"] == 3
    assert first["comments_created"] == 3

    second = seed_demo_graph(store)
    assert second["users_created"] == 0
    assert second["posts_created"] == 0
    assert second["users_total"] == len(DEMO_USERS)
    assert second["user_ids"] == first["user_ids"]

    assert audit_graph(store) == []
    alice = get_user_profile_by_username(store, username="alice")
    assert alice.followers_count == 2
    assert alice.posts[0].total_likes == 2
    assert alice.posts[0].total_comments == 2
