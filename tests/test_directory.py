import json

from workermatch.directory import SqliteWorkerDirectory


def make_directory():
    d = SqliteWorkerDirectory(":memory:")
    d.upsert_person("w1", first_name="Ada", last_name="Lovelace", postal_code="EC2V 7HH", latitude=51.5155, longitude=-0.0922)
    d.upsert_worker_profile("wp-1", "w1")
    d.upsert_person("w2", first_name="Alan", last_name="Turing", postal_code="N1 9GU", latitude=51.5308, longitude=-0.1238)
    d.upsert_person("w3", first_name="Grace", last_name="", postal_code="E1 6AN")
    d.upsert_worker_profile("wp-3", "w3")
    d.upsert_person("c1", user_type="customer", first_name="Cust", postal_code="SW1A 1AA", latitude=51.5014, longitude=-0.1419)
    d.upsert_person("w4", first_name="No", last_name="Postcode", latitude=51.51, longitude=-0.12)
    return d


def test_bounding_box_query_returns_workers_only():
    d = make_directory()
    found = d.query_by_bounding_box(51.4, 51.6, -0.2, 0.0)
    assert [c.person_id for c in found] == ["w1", "w2"]
    assert found[0].worker_profile_id == "wp-1"
    assert found[0].display_name == "Ada Lovelace"
    assert found[1].worker_profile_id is None
    d.close()


def test_query_all_includes_unlocated_workers():
    d = make_directory()
    everyone = d.query_all()
    assert [c.person_id for c in everyone] == ["w1", "w2", "w3"]
    grace = everyone[2]
    assert grace.display_name == "Grace"
    assert not grace.has_coordinates
    assert [c.person_id for c in d.workers_missing_coordinates()] == ["w3"]
    d.close()


def test_profile_lookup_and_removal():
    d = make_directory()
    assert d.exists_worker_profile("w1") == "wp-1"
    assert d.exists_worker_profile("w2") is None
    d.delete_worker_profile("w1")
    assert d.exists_worker_profile("w1") is None
    d.close()


def test_update_coordinates_moves_worker_into_box():
    d = make_directory()
    d.update_coordinates("w3", 51.5246, -0.0754)
    found = d.query_by_bounding_box(51.4, 51.6, -0.2, 0.0)
    assert "w3" in [c.person_id for c in found]
    d.close()


def test_load_json_seed_file(tmp_path):
    path = tmp_path / "people.json"
    path.write_text(
        json.dumps(
            {
                "people": [
                    {"id": 1, "first_name": "A", "postcode": "E1 6AN", "latitude": "51.52", "longitude": "-0.07", "worker_profile_id": 10},
                    {"id": 2, "user_type": "customer", "postcode": "E2 7DG"},
                    {"id": 3, "first_name": "B", "postcode": "E3 2AA", "latitude": ""},
                ]
            }
        ),
        encoding="utf-8",
    )
    d = SqliteWorkerDirectory(":memory:")
    assert d.load_json(str(path)) == 3
    everyone = d.query_all()
    assert [c.person_id for c in everyone] == ["1", "3"]
    assert everyone[0].worker_profile_id == "10"
    assert everyone[0].latitude == 51.52
    assert everyone[1].latitude is None
    d.close()
