from datetime import datetime, timedelta, timezone

from bson import ObjectId

from tests.conftest import OTHER_EMAIL, USER_EMAIL, run


def test_root_is_plain_text(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.text == "Hello from Server.."


def test_create_lesson_sets_server_fields(client, db, create_lesson):
    before = datetime.now(timezone.utc)
    lesson_id = create_lesson(isFeatured=True, mood="hopeful")

    doc = run(db["lessons"].find_one({"_id": ObjectId(lesson_id)}))
    created = datetime.fromisoformat(doc["createdAt"])
    updated = datetime.fromisoformat(doc["updatedAt"])
    assert created <= updated
    assert before - timedelta(seconds=1) <= created <= datetime.now(timezone.utc)
    assert doc["isFeatured"] is False
    assert doc["accessLevel"] == "free"
    assert doc["mood"] == "hopeful"


def test_create_lesson_requires_title(client):
    response = client.post("/lessons", json={"creator": {"email": USER_EMAIL}})
    assert response.status_code == 422
    assert response.json()["success"] is False


def test_get_lesson(client, create_lesson):
    lesson_id = create_lesson(title="Forgive early")
    response = client.get("/lessons/%s" % lesson_id)
    assert response.status_code == 200
    body = response.json()
    assert body["status"] is True
    assert body["lesson"]["id"] == lesson_id
    assert body["lesson"]["title"] == "Forgive early"


def test_get_missing_lesson_is_404(client):
    for lesson_id in (str(ObjectId()), "not-an-id"):
        response = client.get("/lessons/%s" % lesson_id)
        assert response.status_code == 404
        assert response.json()["status"] is False


def test_public_listing_follows_privacy_changes(client, create_lesson):
    lesson_id = create_lesson()
    ids = [l["id"] for l in client.get("/lessons").json()["lessons"]]
    assert lesson_id in ids

    response = client.patch("/lessons/%s" % lesson_id, json={"privacy": "private"})
    assert response.status_code == 200
    ids = [l["id"] for l in client.get("/lessons").json()["lessons"]]
    assert lesson_id not in ids


def test_public_listing_filters(client, create_lesson):
    create_lesson(title="Saving money young", category="Finance")
    create_lesson(title="Letting go", category="Relationships")

    lessons = client.get("/lessons", params={"category": "Finance"}).json()["lessons"]
    assert [l["title"] for l in lessons] == ["Saving money young"]

    lessons = client.get("/lessons", params={"search": "LETTING"}).json()["lessons"]
    assert [l["title"] for l in lessons] == ["Letting go"]


def test_patch_missing_lesson_is_404(client):
    response = client.patch("/lessons/%s" % ObjectId(), json={"title": "x"})
    assert response.status_code == 404


def test_patch_keeps_created_at(client, db, create_lesson):
    lesson_id = create_lesson()
    original = run(db["lessons"].find_one({"_id": ObjectId(lesson_id)}))
    client.patch("/lessons/%s" % lesson_id, json={"title": "Renamed", "createdAt": "1999-01-01"})
    doc = run(db["lessons"].find_one({"_id": ObjectId(lesson_id)}))
    assert doc["title"] == "Renamed"
    assert doc["createdAt"] == original["createdAt"]
    assert doc["updatedAt"] >= original["updatedAt"]


def test_delete_twice_is_404(client, create_lesson):
    lesson_id = create_lesson()
    assert client.delete("/lessons/%s" % lesson_id).status_code == 200
    response = client.delete("/lessons/%s" % lesson_id)
    assert response.status_code == 404
    assert response.json()["success"] is False


def test_owner_scoped_queries(client, create_lesson):
    for i in range(6):
        create_lesson(title="Lesson %d" % i)
    create_lesson(title="Hidden", privacy="private")
    create_lesson(title="Bob's", creator={"email": OTHER_EMAIL, "name": "Bob"})

    assert len(client.get("/lessons/user/%s" % USER_EMAIL).json()["lessons"]) == 7
    public = client.get("/lessons/public/%s" % USER_EMAIL).json()["lessons"]
    assert len(public) == 6
    assert all(l["privacy"] == "public" for l in public)
    assert len(client.get("/lessons/recent/%s" % USER_EMAIL).json()["lessons"]) == 5
    assert client.get("/lessons/count/%s" % USER_EMAIL).json()["count"] == 7
    assert client.get("/lessons/count/%s" % OTHER_EMAIL).json()["count"] == 1


def test_recommended_excludes_source_and_private(client, create_lesson):
    source = create_lesson(category="Career", emotionalTone="Sad")
    same_category = create_lesson(category="Career", emotionalTone="Happy")
    same_tone = create_lesson(category="Health", emotionalTone="Sad")
    create_lesson(category="Career", privacy="private")
    create_lesson(category="Travel", emotionalTone="Happy")

    lessons = client.get("/lessons/recommended/%s" % source).json()["lessons"]
    ids = {l["id"] for l in lessons}
    assert source not in ids
    assert ids == {same_category, same_tone}
    assert all(l["privacy"] == "public" for l in lessons)


def test_recommended_is_capped(client, create_lesson):
    source = create_lesson()
    for _ in range(8):
        create_lesson()
    assert len(client.get("/lessons/recommended/%s" % source).json()["lessons"]) == 6


def test_recommended_for_missing_lesson_is_404(client):
    assert client.get("/lessons/recommended/%s" % ObjectId()).status_code == 404


def test_all_lessons_requires_auth(client, alice, create_lesson):
    create_lesson(privacy="private")
    assert client.get("/all-lessons").status_code == 401
    response = client.get("/all-lessons", headers=alice)
    assert response.status_code == 200
    assert len(response.json()["lessons"]) == 1


def test_visibility_and_access_updates(client, alice, db, create_lesson):
    lesson_id = create_lesson()
    response = client.put("/lessons/visibility/%s" % lesson_id, json={"privacy": "private"}, headers=alice)
    assert response.status_code == 200
    response = client.put("/lessons/access/%s" % lesson_id, json={"accessLevel": "premium"}, headers=alice)
    assert response.status_code == 200

    doc = run(db["lessons"].find_one({"_id": ObjectId(lesson_id)}))
    assert doc["privacy"] == "private"
    assert doc["accessLevel"] == "premium"


def test_single_field_update_on_missing_lesson_is_404(client, alice):
    response = client.put("/lessons/visibility/%s" % ObjectId(), json={"privacy": "private"}, headers=alice)
    assert response.status_code == 404


def test_featured_requires_admin(client, alice, admin, create_lesson):
    lesson_id = create_lesson()
    response = client.put("/lessons/featured/%s" % lesson_id, json={"isFeatured": True}, headers=alice)
    assert response.status_code == 403
    assert response.json()["message"] == "Forbidden Access!"

    response = client.put("/lessons/featured/%s" % lesson_id, json={"isFeatured": True}, headers=admin)
    assert response.status_code == 200
    featured = client.get("/lessons/featured").json()["lessons"]
    assert [l["id"] for l in featured] == [lesson_id]


def test_most_saved(client, create_lesson):
    popular = create_lesson(title="Popular")
    quiet = create_lesson(title="Quiet")
    for email in ("a@example.com", "b@example.com", "c@example.com"):
        client.post("/favorites", json={"userEmail": email, "lessonId": popular})
    client.post("/favorites", json={"userEmail": "a@example.com", "lessonId": quiet})

    lessons = client.get("/lessons/most-saved").json()["lessons"]
    assert [(l["id"], l["saveCount"]) for l in lessons] == [(popular, 3), (quiet, 1)]


def test_patch_ignores_null_fields(client, db, create_lesson):
    lesson_id = create_lesson(title="Keep me")
    response = client.patch("/lessons/%s" % lesson_id, json={"privacy": None, "title": None})
    assert response.status_code == 200

    doc = run(db["lessons"].find_one({"_id": ObjectId(lesson_id)}))
    assert doc["privacy"] == "public"
    assert doc["title"] == "Keep me"
    assert lesson_id in [l["id"] for l in client.get("/lessons").json()["lessons"]]


def test_patch_cannot_change_creator(client, db, create_lesson):
    lesson_id = create_lesson()
    client.patch("/lessons/%s" % lesson_id, json={"creator": {"email": OTHER_EMAIL}})

    doc = run(db["lessons"].find_one({"_id": ObjectId(lesson_id)}))
    assert doc["creator"]["email"] == USER_EMAIL
    assert client.get("/lessons/count/%s" % OTHER_EMAIL).json()["count"] == 0


def test_listings_are_newest_first(client, alice, db, create_lesson):
    ids = []
    for days in (3, 0, 7, 1, 5, 2, 6):
        lesson_id = create_lesson(title="%d days old" % days)
        stamp = (datetime.now(timezone.utc) - timedelta(days=days)).isoformat()
        run(db["lessons"].update_one({"_id": ObjectId(lesson_id)}, {"$set": {"createdAt": stamp}}))
        ids.append((days, lesson_id))
    newest = [lesson_id for _, lesson_id in sorted(ids)]

    recent = client.get("/lessons/recent/%s" % USER_EMAIL).json()["lessons"]
    assert [l["id"] for l in recent] == newest[:5]
    for path, headers in (("/lessons", None), ("/all-lessons", alice), ("/lessons/user/%s" % USER_EMAIL, None)):
        lessons = client.get(path, headers=headers).json()["lessons"]
        assert [l["id"] for l in lessons] == newest
