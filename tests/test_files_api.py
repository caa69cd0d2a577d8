"""
Tests for the files API: registry, editing, history and boundaries.
"""

import pytest
from fastapi.testclient import TestClient

from main import app

client = TestClient(app)


def create(bits="01010101", name="test"):
    response = client.post("/api/files", json={"name": name, "bits": bits})
    assert response.status_code == 200
    return response.json()


class TestFileRegistry:
    """Create, list, rename and delete files."""

    def test_create_from_bits(self):
        data = create("0011")
        assert data["length"] == 4
        assert data["active"] is True
        assert data["stats"]["one_count"] == 2

    def test_create_from_text(self):
        response = client.post("/api/files", json={"name": "t", "text": "A"})
        assert response.status_code == 200
        file_id = response.json()["id"]
        assert response.json()["type"] == "text"
        assert client.get(f"/api/files/{file_id}/bits").json()["bits"] == "01000001"

    def test_create_rejects_bits_and_text(self):
        response = client.post("/api/files", json={"name": "x", "bits": "01", "text": "a"})
        assert response.status_code == 400

    def test_create_rejects_invalid_bits(self):
        response = client.post("/api/files", json={"name": "x", "bits": "0121"})
        assert response.status_code == 400
        assert "position 2" in response.json()["detail"]

    def test_create_rejects_oversized(self, monkeypatch):
        monkeypatch.setenv("BITWISE_MAX_BITS", "4")
        response = client.post("/api/files", json={"name": "x", "bits": "01010"})
        assert response.status_code == 413

    def test_list_and_get(self):
        data = create()
        listing = client.get("/api/files").json()
        assert data["id"] in [f["id"] for f in listing["files"]]
        assert listing["active_id"] == data["id"]
        assert client.get(f"/api/files/{data['id']}").json()["name"] == "test"

    def test_missing_file_404(self):
        assert client.get("/api/files/missing").status_code == 404
        assert client.delete("/api/files/missing").status_code == 404

    def test_rename_and_group(self):
        file_id = create()["id"]
        response = client.patch(f"/api/files/{file_id}", json={"name": "renamed", "group": "captures"})
        assert response.json()["name"] == "renamed"
        assert response.json()["group"] == "captures"
        assert "captures" in client.get("/api/files/groups").json()["groups"]

    def test_delete(self):
        file_id = create()["id"]
        assert client.delete(f"/api/files/{file_id}").json()["deleted"] == file_id
        assert client.get(f"/api/files/{file_id}").status_code == 404

    def test_active_switch(self):
        first = create(name="first")["id"]
        create(name="second")
        assert client.put(f"/api/files/active/{first}").json()["active"] is True
        assert client.get("/api/files/active").json()["id"] == first


class TestGenerateAndUpload:
    """Generated and uploaded files."""

    def test_generate_random_is_reproducible(self):
        body = {"length": 64, "seed": 7}
        a = client.post("/api/files/generate", json=body).json()["id"]
        b = client.post("/api/files/generate", json=body).json()["id"]
        bits_a = client.get(f"/api/files/{a}/bits").json()["bits"]
        bits_b = client.get(f"/api/files/{b}/bits").json()["bits"]
        assert bits_a == bits_b
        assert len(bits_a) == 64

    def test_generate_pattern(self):
        response = client.post("/api/files/generate", json={"mode": "pattern", "pattern": "110", "length": 7})
        file_id = response.json()["id"]
        assert client.get(f"/api/files/{file_id}/bits").json()["bits"] == "1101101"

    def test_generate_pattern_requires_pattern(self):
        response = client.post("/api/files/generate", json={"mode": "pattern", "length": 7})
        assert response.status_code == 400

    def test_generate_too_large(self, monkeypatch):
        monkeypatch.setenv("BITWISE_MAX_BITS", "16")
        response = client.post("/api/files/generate", json={"length": 17})
        assert response.status_code == 413

    def test_upload_bytes(self):
        response = client.post(
            "/api/files/upload",
            files={"file": ("data.bin", b"\x0f\xf0", "application/octet-stream")},
        )
        assert response.status_code == 200
        file_id = response.json()["id"]
        assert client.get(f"/api/files/{file_id}/bits").json()["bits"] == "0000111111110000"

    def test_upload_text(self):
        response = client.post(
            "/api/files/upload",
            files={"file": ("bits.txt", b"01 10\n11", "text/plain")},
            data={"as_text": "true"},
        )
        file_id = response.json()["id"]
        assert client.get(f"/api/files/{file_id}/bits").json()["bits"] == "011011"

    def test_download_pads_last_byte(self):
        file_id = create("1", name="one")["id"]
        response = client.get(f"/api/files/{file_id}/download")
        assert response.content == b"\x80"
        assert 'filename="one.bin"' in response.headers["content-disposition"]


class TestEditing:
    """Bit edits with undo and redo."""

    def test_bits_window(self):
        file_id = create("00110011")["id"]
        data = client.get(f"/api/files/{file_id}/bits", params={"offset": 2, "length": 4}).json()
        assert data["bits"] == "1100"
        assert data["total"] == 8

    def test_edit_undo_redo(self):
        file_id = create("0000")["id"]
        response = client.post(f"/api/files/{file_id}/edit", json={"start": 1, "bits": "11"})
        assert response.json()["can_undo"] is True
        assert client.get(f"/api/files/{file_id}/bits").json()["bits"] == "0110"

        client.post(f"/api/files/{file_id}/undo")
        assert client.get(f"/api/files/{file_id}/bits").json()["bits"] == "0000"
        client.post(f"/api/files/{file_id}/redo")
        assert client.get(f"/api/files/{file_id}/bits").json()["bits"] == "0110"

    def test_nothing_to_undo(self):
        file_id = create()["id"]
        assert client.post(f"/api/files/{file_id}/undo").status_code == 400

    def test_edit_past_end(self):
        file_id = create("01")["id"]
        assert client.post(f"/api/files/{file_id}/edit", json={"start": 5, "bits": "1"}).status_code == 400

    def test_reset_and_commit(self):
        file_id = create("0000")["id"]
        client.post(f"/api/files/{file_id}/edit", json={"start": 0, "bits": "1"})
        client.post(f"/api/files/{file_id}/reset")
        assert client.get(f"/api/files/{file_id}/bits").json()["bits"] == "0000"

        client.post(f"/api/files/{file_id}/edit", json={"start": 0, "bits": "1"})
        assert client.post(f"/api/files/{file_id}/commit").json()["can_undo"] is False

    def test_replace_bits(self):
        file_id = create("0000")["id"]
        response = client.put(f"/api/files/{file_id}/bits", json={"bits": "111"})
        assert response.json()["length"] == 3
        assert response.json()["can_undo"] is False

    def test_text_view(self):
        file_id = create("0100000101000010")["id"]
        assert client.get(f"/api/files/{file_id}/text").json()["text"] == "AB"


class TestApply:
    """Applying steps to a file."""

    def test_apply_operation_to_file(self):
        file_id = create("0101")["id"]
        response = client.post(f"/api/files/{file_id}/apply", json={"name": "NOT"})
        assert response.status_code == 200
        assert client.get(f"/api/files/{file_id}/bits").json()["bits"] == "1010"

    def test_apply_to_range(self):
        file_id = create("0000")["id"]
        client.post(f"/api/files/{file_id}/apply", json={"name": "NOT", "start": 1, "end": 3})
        assert client.get(f"/api/files/{file_id}/bits").json()["bits"] == "0110"
        history = client.get(f"/api/files/{file_id}/history").json()
        assert history["entries"][0]["description"] == "Transform: NOT [1:3]"

    def test_apply_transform_with_params(self):
        file_id = create("1000")["id"]
        client.post(
            f"/api/files/{file_id}/apply",
            json={"kind": "transform", "name": "rotate_left", "params": {"n": 1}},
        )
        assert client.get(f"/api/files/{file_id}/bits").json()["bits"] == "0001"

    def test_apply_is_undoable(self):
        file_id = create("0101")["id"]
        client.post(f"/api/files/{file_id}/apply", json={"name": "NOT"})
        client.post(f"/api/files/{file_id}/undo")
        assert client.get(f"/api/files/{file_id}/bits").json()["bits"] == "0101"

    def test_apply_unknown(self):
        file_id = create()["id"]
        assert client.post(f"/api/files/{file_id}/apply", json={"name": "NOPE"}).status_code == 404

    def test_apply_bad_range(self):
        file_id = create("0101")["id"]
        response = client.post(f"/api/files/{file_id}/apply", json={"name": "NOT", "start": 3, "end": 9})
        assert response.status_code == 400

    def test_apply_failing_step(self):
        # "00" is not a valid Manchester pair
        file_id = create("0000")["id"]
        response = client.post(
            f"/api/files/{file_id}/apply",
            json={"kind": "decoding", "name": "manchester"},
        )
        assert response.status_code == 400


class TestHistory:
    """History listing and restore."""

    def test_history_and_restore(self):
        file_id = create("0101")["id"]
        client.post(f"/api/files/{file_id}/apply", json={"name": "NOT"})
        entries = client.get(f"/api/files/{file_id}/history").json()["entries"]
        assert [e["description"] for e in entries] == ["Transform: NOT", "File created"]
        assert "bits" not in entries[0]

        response = client.post(f"/api/files/{file_id}/history/{entries[1]['id']}/restore")
        assert response.status_code == 200
        assert client.get(f"/api/files/{file_id}/bits").json()["bits"] == "0101"

    def test_grouped_history(self):
        file_id = create("0101")["id"]
        client.post(f"/api/files/{file_id}/apply", json={"name": "NOT"})
        groups = client.get(f"/api/files/{file_id}/history", params={"grouped": True}).json()["groups"]
        assert [g["type"] for g in groups] == ["Transformation", "Load"]

    def test_restore_missing(self):
        file_id = create()["id"]
        assert client.post(f"/api/files/{file_id}/history/nope/restore").status_code == 404

    def test_clear(self):
        file_id = create()["id"]
        client.delete(f"/api/files/{file_id}/history")
        assert client.get(f"/api/files/{file_id}/history").json()["total"] == 0


class TestBoundaries:
    """Boundaries, partitions and highlights."""

    def test_mark_boundary_and_partitions(self):
        file_id = create("110011100111")["id"]
        boundary = client.post(f"/api/files/{file_id}/boundaries", json={"sequence": "00"}).json()
        assert boundary["positions"] == [2, 7]
        assert boundary["occurrences"] == 2

        partitions = client.get(f"/api/files/{file_id}/partitions").json()
        assert [(p["start"], p["end"]) for p in partitions["partitions"]] == [(0, 1), (4, 6), (9, 11)]

        ranges = client.get(f"/api/files/{file_id}/highlights").json()["ranges"]
        assert [(r["start"], r["end"]) for r in ranges] == [(2, 3), (7, 8)]

    def test_append_boundary(self):
        file_id = create("11")["id"]
        client.post(f"/api/files/{file_id}/boundaries", json={"sequence": "00", "mode": "append"})
        assert client.get(f"/api/files/{file_id}/bits").json()["bits"] == "1100"

    def test_insert_requires_position(self):
        file_id = create("11")["id"]
        response = client.post(f"/api/files/{file_id}/boundaries", json={"sequence": "00", "mode": "insert"})
        assert response.status_code == 400

    def test_insert_boundary(self):
        file_id = create("11")["id"]
        client.post(
            f"/api/files/{file_id}/boundaries",
            json={"sequence": "00", "mode": "insert", "position": 1},
        )
        assert client.get(f"/api/files/{file_id}/bits").json()["bits"] == "1001"

    def test_toggle_and_remove(self):
        file_id = create("1100")["id"]
        boundary_id = client.post(f"/api/files/{file_id}/boundaries", json={"sequence": "00"}).json()["id"]
        assert client.post(f"/api/files/{file_id}/boundaries/{boundary_id}/toggle").json()["highlight"] is False
        assert client.get(f"/api/files/{file_id}/highlights").json()["ranges"] == []
        assert client.delete(f"/api/files/{file_id}/boundaries/{boundary_id}").status_code == 200
        assert client.delete(f"/api/files/{file_id}/boundaries/{boundary_id}").status_code == 404

    @pytest.mark.parametrize("bits,expected", [("0" * 32, "00000001"), ("", "00000000")])
    def test_unique_boundary(self, bits, expected):
        file_id = create(bits)["id"]
        data = client.get(f"/api/files/{file_id}/boundaries/unique").json()
        assert data == {"sequence": expected, "found": True}


class TestSequences:
    """Saved sequence searches over HTTP."""

    def test_search_and_list(self):
        file_id = create("0110110")["id"]
        data = client.post(f"/api/files/{file_id}/sequences", json={"query": "11, 000 xyz", "color": "#00FF00"}).json()
        assert [s["sequence"] for s in data["added"]] == ["11", "000"]
        assert data["added"][0]["positions"] == [1, 4]
        assert data["added"][0]["color"] == "#00FF00"
        assert data["skipped"] == []

        again = client.post(f"/api/files/{file_id}/sequences", json={"query": "11"}).json()
        assert again["added"] == []
        assert again["skipped"] == ["11"]

        listed = client.get(f"/api/files/{file_id}/sequences", params={"sort": "count"}).json()
        assert [s["serial_number"] for s in listed["sequences"]] == [1, 2]
        assert client.get(f"/api/files/{file_id}/sequences", params={"sort": "nope"}).status_code == 400

    def test_invalid_query(self):
        file_id = create()["id"]
        response = client.post(f"/api/files/{file_id}/sequences", json={"query": "abc, 12"})
        assert response.status_code == 400

    def test_highlights_merge_sequences_and_boundaries(self):
        file_id = create("110011")["id"]
        client.post(f"/api/files/{file_id}/boundaries", json={"sequence": "00", "color": "#0000FF"})
        seq = client.post(f"/api/files/{file_id}/sequences", json={"query": "11", "color": "#FF0000"}).json()["added"][0]

        ranges = client.get(f"/api/files/{file_id}/highlights").json()["ranges"]
        assert ranges == [
            {"start": 0, "end": 1, "color": "#FF0000"},
            {"start": 4, "end": 5, "color": "#FF0000"},
            {"start": 2, "end": 3, "color": "#0000FF"},
        ]

        toggled = client.post(f"/api/files/{file_id}/sequences/{seq['id']}/toggle").json()
        assert toggled == {"id": seq["id"], "highlighted": False}
        ranges = client.get(f"/api/files/{file_id}/highlights").json()["ranges"]
        assert [r["color"] for r in ranges] == ["#0000FF"]

    def test_positions_follow_edits(self):
        file_id = create("0011")["id"]
        client.post(f"/api/files/{file_id}/sequences", json={"query": "11"})
        client.post(f"/api/files/{file_id}/apply", json={"kind": "operation", "name": "NOT"})
        exported = client.get(f"/api/files/{file_id}/sequences/export").json()["sequences"]
        assert exported == [{
            "sequence": "11",
            "color": "#FF00FF",
            "count": 1,
            "positions": [0],
            "mean_distance": 0.0,
            "variance_distance": 0.0,
        }]

    def test_remove_and_clear(self):
        file_id = create("0101")["id"]
        added = client.post(f"/api/files/{file_id}/sequences", json={"query": "01 10"}).json()["added"]
        assert client.delete(f"/api/files/{file_id}/sequences/{added[0]['id']}").status_code == 200
        assert client.delete(f"/api/files/{file_id}/sequences/{added[0]['id']}").status_code == 404
        assert client.post(f"/api/files/{file_id}/sequences/missing/toggle").status_code == 404
        assert client.delete(f"/api/files/{file_id}/sequences").json() == {"success": True}
        assert client.get(f"/api/files/{file_id}/sequences").json()["total"] == 0
