from inkwell.extensions import db
from inkwell.models import Character, CharacterRelationship, ConsistencyFlag, TimelineEvent
from inkwell.services.manuscript import create_project

from conftest import make_user


def _create(client, kind, project, **fields):
    return client.post(f"/storybible/{kind}", json={"projectId": project.id, **fields})


def test_character_crud(logged_in, project):
    created = _create(logged_in, "characters", project, name="Mara", aliases=["Fox"], isMainCharacter=True)
    assert created.status_code == 201
    character_id = created.get_json()["id"]

    fetched = logged_in.get(f"/storybible/characters/{character_id}").get_json()
    assert fetched["aliases"] == ["Fox"]
    assert fetched["isMainCharacter"] is True

    updated = logged_in.patch(f"/storybible/characters/{character_id}", json={"backstory": "Raised on the docks"})
    assert updated.get_json()["backstory"] == "Raised on the docks"
    assert updated.get_json()["name"] == "Mara"

    listed = logged_in.get(f"/storybible/characters?projectId={project.id}").get_json()
    assert [entry["name"] for entry in listed] == ["Mara"]

    assert logged_in.delete(f"/storybible/characters/{character_id}").status_code == 200
    assert Character.query.count() == 0


def test_character_names_are_unique_ignoring_case(logged_in, project):
    _create(logged_in, "characters", project, name="Mara")
    other = _create(logged_in, "characters", project, name="Tobin").get_json()

    duplicate = _create(logged_in, "characters", project, name="  MARA ")
    rename = logged_in.patch(f"/storybible/characters/{other['id']}", json={"name": "mara"})

    assert duplicate.status_code == 409
    assert rename.status_code == 409
    assert sorted(c.name for c in Character.query.all()) == ["Mara", "Tobin"]


def test_missing_required_field(logged_in, project):
    response = _create(logged_in, "world-rules", project, name="Iron binds")

    assert response.status_code == 400
    assert response.get_json()["error"] == "category is required"


def test_plot_thread_status_is_validated(logged_in, project):
    bad = _create(logged_in, "plot-threads", project, title="The ledger", status="paused")
    good = _create(logged_in, "plot-threads", project, title="The ledger", status="Foreshadowed")

    assert bad.status_code == 400
    assert good.status_code == 201
    assert good.get_json()["status"] == "foreshadowed"


def test_relationship_pairs_are_deduplicated(logged_in, project):
    mara = _create(logged_in, "characters", project, name="Mara").get_json()["id"]
    tobin = _create(logged_in, "characters", project, name="Tobin").get_json()["id"]

    first = _create(logged_in, "relationships", project, character1Id=mara, character2Id=tobin, relationship="siblings")
    reverse = _create(logged_in, "relationships", project, character1Id=tobin, character2Id=mara, relationship="rivals")
    self_pair = _create(logged_in, "relationships", project, character1Id=mara, character2Id=mara, relationship="x")

    assert first.status_code == 201
    assert reverse.status_code == 409
    assert self_pair.status_code == 400
    assert CharacterRelationship.query.count() == 1


def test_deleting_character_removes_relationships(logged_in, project):
    mara = _create(logged_in, "characters", project, name="Mara").get_json()["id"]
    tobin = _create(logged_in, "characters", project, name="Tobin").get_json()["id"]
    _create(logged_in, "relationships", project, character1Id=mara, character2Id=tobin, relationship="siblings")

    logged_in.delete(f"/storybible/characters/{tobin}")

    assert CharacterRelationship.query.count() == 0


def test_references_must_belong_to_project(logged_in, project, user):
    other_project = create_project(user, "Second book")
    foreign_chapter = other_project.chapters[0].id

    response = _create(logged_in, "events", project, title="Storm", chapterId=foreign_chapter)

    assert response.status_code == 400
    assert response.get_json()["error"] == "chapterId does not belong to this project"


def test_events_default_to_end_of_timeline(logged_in, project):
    _create(logged_in, "events", project, title="First")
    second = _create(logged_in, "events", project, title="Second", chapterId=project.chapters[0].id)

    assert second.get_json()["order"] == 1
    assert TimelineEvent.query.count() == 2


def test_consistency_flags_can_be_triaged_not_created(logged_in, project):
    flag = ConsistencyFlag(project=project, type="question", description="Who is Sarah?")
    db.session.add(flag)
    db.session.commit()

    created = _create(logged_in, "consistency-flags", project, type="question", description="Manual")
    resolved = logged_in.patch(
        f"/storybible/consistency-flags/{flag.id}",
        json={"status": "resolved", "resolution": "Introduced in chapter 3"},
    )

    assert created.status_code == 405
    assert resolved.get_json()["status"] == "resolved"
    assert ConsistencyFlag.query.count() == 1


def test_other_users_entities_are_unauthorized(logged_in):
    stranger = make_user("stranger")
    theirs = create_project(stranger, "Private")
    character = Character(project=theirs, name="Hidden")
    db.session.add(character)
    db.session.commit()

    assert logged_in.get(f"/storybible/characters/{character.id}").status_code == 401
    assert _create(logged_in, "characters", theirs, name="Intruder").status_code == 401
    assert logged_in.get(f"/storybible/{theirs.id}").status_code == 401
    assert logged_in.get("/storybible/characters/999").status_code == 404


def test_unknown_entity_kind_is_not_found(logged_in, project):
    assert _create(logged_in, "dragons", project, name="Smaug").status_code == 404


def test_entity_routes_reject_non_object_bodies(logged_in, project):
    character_id = _create(logged_in, "characters", project, name="Mara").get_json()["id"]

    created = logged_in.post("/storybible/characters", json=[project.id, "Tobin"])
    patched = logged_in.patch(f"/storybible/characters/{character_id}", json=["name"])

    assert created.status_code == 400
    assert patched.status_code == 400
    assert patched.get_json() == {"error": "Request body must be a JSON object"}
    assert [c.name for c in Character.query.all()] == ["Mara"]


def test_text_fields_respect_column_widths(logged_in, project):
    too_old = _create(logged_in, "characters", project, name="Mara", age="x" * 61)
    long_backstory = _create(logged_in, "characters", project, name="Mara", backstory="y" * 5000)

    assert too_old.status_code == 400
    assert too_old.get_json() == {"error": "age must be at most 60 characters"}
    assert long_backstory.status_code == 201
