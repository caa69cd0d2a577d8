"""
Tests for the editable bit model, history, partitions, the file registry
and the config store.
"""

import pytest

from api.bit_model import MAX_UNDO, BinaryModel
from api.file_manager import (
    FileManager,
    FileState,
    FileTooLargeError,
    binary_to_text,
    text_to_binary,
)
from api.history import HistoryManager, group_history, history_type
from api.partitions import PartitionManager, find_positions, insert_boundary
from api.sequences import (
    SequenceManager,
    distance_stats,
    find_all_positions,
    parse_sequences,
    search_sequences,
)


class TestBinaryModel:
    """Edits, undo and redo."""

    def test_set_bit_and_undo(self):
        model = BinaryModel("0000")
        model.set_bit(1, "1")
        assert model.bits == "0100"
        assert model.undo()
        assert model.bits == "0000"
        assert model.redo()
        assert model.bits == "0100"

    def test_noop_and_out_of_range_edits_are_ignored(self):
        model = BinaryModel("01")
        model.set_bit(0, "0")
        model.set_bit(5, "1")
        assert not model.can_undo

    def test_set_bits_may_extend(self):
        model = BinaryModel("0000")
        model.set_bits(2, "111")
        assert model.bits == "00111"
        model.undo()
        assert model.bits == "0000"

    def test_new_edit_clears_redo(self):
        model = BinaryModel("00")
        model.set_bit(0, "1")
        model.undo()
        model.set_bit(1, "1")
        assert not model.can_redo

    def test_undo_is_bounded(self):
        model = BinaryModel("0")
        for i in range(MAX_UNDO + 5):
            model.replace_all("1" if i % 2 == 0 else "0")
        undone = 0
        while model.undo():
            undone += 1
        assert undone == MAX_UNDO

    def test_reset_and_commit(self):
        model = BinaryModel("01")
        model.replace_all("11")
        model.reset()
        assert model.bits == "01"
        model.replace_all("10")
        model.commit()
        assert model.original_bits == "10"
        assert not model.can_undo

    def test_listeners(self):
        model = BinaryModel("0")
        calls = []
        unsubscribe = model.subscribe(lambda: calls.append(model.bits))
        model.set_bit(0, "1")
        unsubscribe()
        model.set_bit(0, "0")
        assert calls == ["1"]

    def test_invalid_bits_rejected(self):
        with pytest.raises(ValueError):
            BinaryModel("0").replace_all("012")

    def test_generators(self):
        assert BinaryModel.generate_pattern("101", 7) == "1011011"
        assert BinaryModel.generate_random(32, seed=1) == BinaryModel.generate_random(32, seed=1)
        assert BinaryModel.generate_random(64, probability=0.0) == "0" * 64
        assert BinaryModel.from_text("01 x 1") == "011"


class TestHistory:
    """Snapshot history and grouping."""

    def test_newest_first_and_capped(self):
        history = HistoryManager(max_entries=3)
        for i in range(5):
            history.add_entry("1" * (i + 1), f"Edit {i}")
        entries = history.get_entries()
        assert len(entries) == 3
        assert entries[0].description == "Edit 4"
        assert entries[0].stats["one_count"] == 5

    def test_entry_lookup(self):
        history = HistoryManager()
        entry = history.add_entry("01", "Loaded file")
        assert history.get_entry(entry.id) is entry
        assert "bits" not in entry.to_dict(include_bits=False)

    @pytest.mark.parametrize(
        "description,kind",
        [
            ("Added boundary: header", "Boundary"),
            ("Invert bits", "Transformation"),
            ("Manual edit", "Edit"),
            ("Generated random bits", "Generate"),
            ("File created", "Load"),
            ("Something else", "Other"),
        ],
    )
    def test_history_type(self, description, kind):
        assert history_type(description) == kind

    def test_grouping_merges_consecutive(self):
        history = HistoryManager()
        history.add_entry("0", "File created")
        history.add_entry("1", "Manual edit")
        history.add_entry("0", "Manual edit")
        groups = group_history(history.get_entries())
        assert [(g.type, g.count) for g in groups] == [("Edit", 2), ("Load", 1)]


class TestPartitions:
    """Boundaries split the bits into partitions."""

    def test_positions_do_not_overlap(self):
        assert find_positions("0000", "00") == [0, 2]
        assert find_positions("000", "00") == [0]
        assert find_positions("01", "") == []

    def test_partitions_exclude_boundary_bits(self):
        bits = "110011100111"
        manager = PartitionManager()
        manager.add_boundary("00", "marker", bits=bits)
        parts = manager.create_partitions(bits)
        assert [(p.start, p.end) for p in parts] == [(0, 1), (4, 6), (9, 11)]
        assert parts[1].bits == "111"
        assert parts[1].length == 3
        assert parts[1].stats.one_count == 3

    def test_empty_partitions_skipped(self):
        manager = PartitionManager()
        manager.add_boundary("00", "marker")
        assert [(p.start, p.end) for p in manager.create_partitions("0011")] == [(2, 3)]

    def test_no_boundaries_no_partitions(self):
        assert PartitionManager().create_partitions("0101") == []

    def test_highlight_ranges_are_inclusive(self):
        bits = "110011100111"
        manager = PartitionManager()
        boundary = manager.add_boundary("00", "marker", "#123456", bits)
        ranges = manager.get_highlight_ranges()
        assert ranges == [
            {"start": 2, "end": 3, "color": "#123456"},
            {"start": 7, "end": 8, "color": "#123456"},
        ]
        assert manager.toggle_highlight(boundary.id) is False
        assert manager.get_highlight_ranges() == []

    def test_empty_sequence_rejected(self):
        with pytest.raises(ValueError):
            PartitionManager().add_boundary("", "nothing")

    def test_insert_boundary_clamps(self):
        assert insert_boundary("11", "00", 10) == "1100"
        assert insert_boundary("11", "00", -3) == "0011"


class TestFileState:
    """A file's model, history and boundaries together."""

    def test_created_file_has_history_and_stats(self):
        state = FileState("0101")
        assert len(state.history) == 1
        assert state.stats.total_bits == 4

    def test_apply_is_undoable(self):
        state = FileState("0101")
        state.apply("1111", "Invert")
        assert state.stats.one_count == 4
        state.model.undo()
        assert state.bits == "0101"
        assert state.stats.one_count == 2

    def test_restore(self):
        state = FileState("0101")
        created = state.history.get_entries()[-1]
        state.apply("0000", "Shift")
        assert state.restore(created.id)
        assert state.bits == "0101"
        assert not state.restore("missing")

    def test_append_boundary(self):
        state = FileState("11")
        boundary = state.append_boundary("00", "end", "#FF00FF")
        assert state.bits == "1100"
        assert boundary.positions == [2]

    def test_boundary_positions_follow_edits(self):
        state = FileState("1100")
        boundary = state.add_boundary("00", "marker", "#FF00FF")
        state.apply("0011", "Reverse")
        assert boundary.positions == [0]


class TestSequences:
    """Saved sequence search and highlights."""

    def test_parse_query(self):
        assert parse_sequences(" 1010, 0011 12 ,,01 ") == ["1010", "0011", "01"]
        assert parse_sequences("abc") == []

    def test_positions_overlap(self):
        assert find_all_positions("11111", "111") == [0, 1, 2]
        assert find_all_positions("0101", "") == []

    def test_distance_stats(self):
        assert distance_stats([3]) == (0.0, 0.0)
        assert distance_stats([0, 2, 6]) == (3.0, 1.0)

    def test_search_many(self):
        matches = search_sequences("0110110", ["11", "000"])
        assert matches[0]["positions"] == [1, 4]
        assert matches[0]["mean_distance"] == 3.0
        assert matches[1]["count"] == 0
        with pytest.raises(ValueError):
            search_sequences("01", ["2"])

    def test_duplicates_skipped_and_serials(self):
        manager = SequenceManager()
        added, skipped = manager.add(["01", "11"], "0111", color="#00FF00")
        assert [s.serial_number for s in added] == [1, 2]
        assert added[0].color == "#00FF00"
        added, skipped = manager.add(["01", "0"], "0111")
        assert skipped == ["01"]
        assert [s.serial_number for s in added] == [3]

    def test_sorting(self):
        manager = SequenceManager()
        manager.add(["0111", "1", "01"], "10101110111")
        assert [s.sequence for s in manager.get_all("count")] == ["1", "01", "0111"]
        assert [s.sequence for s in manager.get_all("length")] == ["0111", "01", "1"]
        assert [s.sequence for s in manager.get_all("position")] == ["1", "01", "0111"]
        with pytest.raises(ValueError):
            manager.get_all("color")

    def test_toggle_and_export(self):
        manager = SequenceManager()
        (saved,), _ = manager.add(["11"], "0110")
        assert manager.get_highlight_ranges() == [{"start": 1, "end": 2, "color": "#FF00FF"}]
        assert manager.toggle_highlight(saved.id) is False
        assert manager.get_highlight_ranges() == []
        assert manager.toggle_highlight("missing") is None
        assert manager.export() == [{
            "sequence": "11",
            "color": "#FF00FF",
            "count": 1,
            "positions": [1],
            "mean_distance": 0.0,
            "variance_distance": 0.0,
        }]

    def test_file_state_refreshes_positions(self):
        state = FileState("0011")
        state.add_sequences(["11"], "#123456")
        state.partitions.add_boundary("00", "b", "#654321", state.bits)
        assert [r["color"] for r in state.get_highlight_ranges()] == ["#123456", "#654321"]

        state.apply("1100", "Invert")
        saved = state.sequences.find("11")
        assert saved.positions == [0]


class TestFileManager:
    """Registry of open files."""

    def test_create_and_activate(self):
        manager = FileManager()
        first = manager.create_file("a", "01")
        second = manager.create_file("b", "10")
        assert manager.get_active() is second
        assert manager.set_active(first.id)
        assert manager.get_active() is first
        assert not manager.set_active("missing")

    def test_delete_moves_active(self):
        manager = FileManager()
        first = manager.create_file("a", "01")
        second = manager.create_file("b", "10")
        assert manager.delete_file(second.id)
        assert manager.get_active() is first
        assert not manager.delete_file(second.id)

    def test_size_limit(self, monkeypatch):
        monkeypatch.setenv("BITWISE_MAX_BITS", "8")
        with pytest.raises(FileTooLargeError):
            FileManager().create_file("big", "0" * 9)

    def test_groups(self):
        manager = FileManager()
        file = manager.create_file("a", "01")
        manager.set_group(file.id, "captures")
        manager.add_group("empty")
        assert manager.get_groups() == ["captures", "empty"]
        manager.delete_group("captures")
        assert file.group is None

    def test_file_summary(self):
        file = FileManager().create_file("a", "0101")
        data = file.to_dict()
        assert data["length"] == 4
        assert data["can_undo"] is False
        assert data["stats"]["one_count"] == 2

    def test_text_conversion(self):
        assert text_to_binary("A") == "01000001"
        assert binary_to_text("01000001" + "0100") == "A"


class TestConfigStore:
    """JSON documents and app settings."""

    def test_missing_document_uses_default(self, config_store):
        assert config_store.load_document("nothing", lambda: {"x": 1}) == {"x": 1}

    def test_document_round_trip(self, config_store):
        assert config_store.save_document("presets", [{"id": "p"}])
        assert config_store.load_document("presets", list) == [{"id": "p"}]

    def test_corrupt_document_uses_default(self, config_store):
        (config_store.config_dir / "broken.json").write_text("{not json", encoding="utf-8")
        assert config_store.load_document("broken", list) == []

    def test_settings_deep_merge(self, config_store):
        assert config_store.update_app_settings({"analysis": {"entropy_window": 128}})
        analysis = config_store.get_app_settings()["analysis"]
        assert analysis["entropy_window"] == 128
        assert analysis["entropy_step"] == 32
        assert config_store.get_setting("analysis", "max_points") == 1000
