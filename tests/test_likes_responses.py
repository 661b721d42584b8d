import uuid

import pytest


@pytest.fixture
def comment_id(client, owner_headers):
    r = client.post(
        "/api/comments",
        json={"title": "Question", "content": "How do I export submissions?", "category": "question"},
        headers=owner_headers,
    )
    return r.json()["comment"]["id"]


def test_like_twice_keeps_one_like(client, owner_headers, other_headers, comment_id):
    r = client.post(f"/api/comments/{comment_id}/likes", headers=owner_headers)
    assert r.status_code == 201
    assert r.json()["success"] is True
    assert r.json()["like"]["comment_id"] == comment_id

    r = client.post(f"/api/comments/{comment_id}/likes", headers=owner_headers)
    assert r.status_code == 409
    assert r.json() == {"error": "Already liked"}

    mine = client.get(f"/api/comments/{comment_id}", headers=owner_headers).json()["comment"]
    assert mine["likeCount"] == 1
    assert mine["isLikedByUser"] is True

    theirs = client.get(f"/api/comments/{comment_id}", headers=other_headers).json()["comment"]
    assert theirs["likeCount"] == 1
    assert theirs["isLikedByUser"] is False


def test_unlike(client, owner_headers, comment_id):
    client.post(f"/api/comments/{comment_id}/likes", headers=owner_headers)

    r = client.delete(f"/api/comments/{comment_id}/likes", headers=owner_headers)
    assert r.status_code == 200
    assert r.json() == {"success": True}
    assert client.get(f"/api/comments/{comment_id}", headers=owner_headers).json()["comment"]["likeCount"] == 0

    # liking again after unliking is allowed
    assert client.post(f"/api/comments/{comment_id}/likes", headers=owner_headers).status_code == 201


def test_like_unknown_comment(client, owner_headers):
    r = client.post(f"/api/comments/{uuid.uuid4()}/likes", headers=owner_headers)
    assert r.status_code == 404


def test_responses_in_order(client, owner_headers, other_headers, comment_id):
    for text, headers in (("First answer", other_headers), ("Second answer", owner_headers)):
        r = client.post(f"/api/comments/{comment_id}/responses", json={"content": f"  {text}  "}, headers=headers)
        assert r.status_code == 201
        assert r.json()["response"]["content"] == text

    r = client.get(f"/api/comments/{comment_id}/responses", headers=owner_headers)
    assert r.status_code == 200
    assert [x["content"] for x in r.json()["responses"]] == ["First answer", "Second answer"]
    assert client.get(f"/api/comments/{comment_id}", headers=owner_headers).json()["comment"]["responseCount"] == 2


def test_blank_response_rejected(client, owner_headers, comment_id):
    r = client.post(f"/api/comments/{comment_id}/responses", json={"content": "   "}, headers=owner_headers)
    assert r.status_code == 400
    assert r.json() == {"error": "Content is required"}

    r = client.post(f"/api/comments/{comment_id}/responses", json={}, headers=owner_headers)
    assert r.status_code == 400


def test_response_to_unknown_comment(client, owner_headers):
    r = client.post(f"/api/comments/{uuid.uuid4()}/responses", json={"content": "hello"}, headers=owner_headers)
    assert r.status_code == 404


def test_deleting_comment_removes_likes_and_responses(client, owner_headers, comment_id):
    client.post(f"/api/comments/{comment_id}/likes", headers=owner_headers)
    client.post(f"/api/comments/{comment_id}/responses", json={"content": "note"}, headers=owner_headers)

    assert client.delete(f"/api/comments/{comment_id}", headers=owner_headers).status_code == 200
    r = client.get(f"/api/comments/{comment_id}/responses", headers=owner_headers)
    assert r.json() == {"responses": []}
