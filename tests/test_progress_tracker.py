import json

from mapminer.models import ProgressCheckpoint
from mapminer.resilience.progress_tracker import ProgressTracker


class TestProgressTracker:
    """Test suite for the resume checkpoint."""

    def test_fresh_state(self, tmp_path):
        tracker = ProgressTracker(str(tmp_path))
        state = tracker.load_state()
        assert state.completed_terms == []
        assert tracker.pending(["a", "b"]) == ["a", "b"]

    def test_mark_completed_persists(self, tmp_path):
        tracker = ProgressTracker(str(tmp_path))
        tracker.load_state()
        tracker.mark_completed(["a"])
        tracker.mark_completed(["a", "b"])

        data = json.loads((tmp_path / "progress.json").read_text(encoding="utf-8"))
        assert data["completedKeywords"] == ["a", "b"]
        assert data["lastUpdated"]

        resumed = ProgressTracker(str(tmp_path))
        resumed.load_state()
        assert resumed.pending(["a", "b", "c"]) == ["c"]

    def test_reads_existing_file(self, tmp_path):
        (tmp_path / "progress.json").write_text(
            json.dumps({"completedKeywords": ["hotels in Y"], "lastUpdated": "2024-01-01T00:00:00"}),
            encoding="utf-8"
        )
        tracker = ProgressTracker(str(tmp_path))
        state = tracker.load_state()
        assert state.completed_terms == ["hotels in Y"]
        assert state.last_updated == "2024-01-01T00:00:00"

    def test_corrupted_file_is_backed_up(self, tmp_path):
        (tmp_path / "progress.json").write_text("{not json", encoding="utf-8")
        tracker = ProgressTracker(str(tmp_path))

        state = tracker.load_state()

        assert state.completed_terms == []
        assert not (tmp_path / "progress.json").exists()
        assert len(list(tmp_path.glob("progress.corrupted.*.json"))) == 1

    def test_disabled_tracker_touches_nothing(self, tmp_path):
        (tmp_path / "progress.json").write_text(json.dumps({"completedKeywords": ["a"]}), encoding="utf-8")
        tracker = ProgressTracker(str(tmp_path), enabled=False)

        assert tracker.load_state().completed_terms == []
        tracker.mark_completed(["b"])

        data = json.loads((tmp_path / "progress.json").read_text(encoding="utf-8"))
        assert data["completedKeywords"] == ["a"]

    def test_clear(self, tmp_path):
        tracker = ProgressTracker(str(tmp_path))
        tracker.load_state()
        tracker.mark_completed(["a"])
        tracker.clear()
        assert not (tmp_path / "progress.json").exists()
        assert tracker.completed_terms() == set()

    def test_checkpoint_round_trip_keys(self):
        checkpoint = ProgressCheckpoint(["x"], "now")
        assert checkpoint.to_dict() == {"completedKeywords": ["x"], "lastUpdated": "now"}
