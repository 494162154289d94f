"""Tests for the stored-session format."""

from elevation_fusion.core.types import EstimatedSample, Session, SessionRecord
from elevation_fusion.history import deserialize, reconstruct, serialize, summarize, to_record


class TestDeserialize:
    """Tests for deserialize."""

    def test_skips_malformed_record(self):
        """A malformed middle record should be skipped."""
        samples = deserialize("1,2,3;bad;4,5,6")

        assert samples == [
            EstimatedSample(timestamp=1, angle_a=2.0, angle_b=3.0),
            EstimatedSample(timestamp=4, angle_a=5.0, angle_b=6.0),
        ]

    def test_wrong_field_count(self):
        """Records with too few or too many fields should be skipped."""
        assert deserialize("1,2;3,4,5,6;7,8,9") == [EstimatedSample(7, 8.0, 9.0)]

    def test_non_numeric_field(self):
        """Records with a non-numeric field should be skipped."""
        assert deserialize("1,x,3;2,2.5,nope;3,1e-3,-4") == [EstimatedSample(3, 0.001, -4.0)]

    def test_fractional_timestamp_rejected(self):
        """Timestamps must be integers."""
        assert deserialize("1.5,2,3") == []

    def test_wholly_malformed(self):
        """Garbage input should give an empty sequence."""
        assert deserialize("not a session at all") == []

    def test_empty(self):
        """Empty input should give an empty sequence."""
        assert deserialize("") == []
        assert deserialize(";;") == []

    def test_keeps_order(self):
        """Records should come back in stored order, not sorted."""
        samples = deserialize("30,0,0;10,0,0;20,0,0")
        assert [s.timestamp for s in samples] == [30, 10, 20]


class TestSerialize:
    """Tests for serialize."""

    def test_format(self):
        """Samples should be joined with ';' and ','."""
        flat = serialize([EstimatedSample(1, 2.0, 3.5), EstimatedSample(4, -0.25, 6.0)])
        assert flat == "1,2.0,3.5;4,-0.25,6.0"

    def test_round_trip(self, estimated_samples):
        """Deserializing a serialized sequence should give it back."""
        awkward = estimated_samples + [EstimatedSample(99, 0.1 + 0.2, 1.0 / 3.0)]
        assert deserialize(serialize(awkward)) == awkward


class TestRecords:
    """Tests for record conversion and summaries."""

    def test_to_record(self, estimated_samples):
        """A session should flatten into the stored layout."""
        session = Session(started_at_ms=1000, samples=tuple(estimated_samples))

        record = to_record(session, saved_at_ms=2000)

        assert record.id is None
        assert record.timestamp == 2000
        assert record.data_points_csv == serialize(estimated_samples)

    def test_to_record_defaults_to_start_time(self, estimated_samples):
        """Without a save time the session start should be used."""
        record = to_record(Session(started_at_ms=1000, samples=tuple(estimated_samples)))
        assert record.timestamp == 1000

    def test_reconstruct(self, estimated_samples):
        """A stored record should rebuild the session."""
        record = SessionRecord(id=3, timestamp=5, data_points_csv=serialize(estimated_samples))

        session = reconstruct(record)

        assert session.id == 3
        assert session.started_at_ms == 5
        assert list(session.samples) == estimated_samples

    def test_summarize(self, estimated_samples):
        """Summaries should carry count and sensor-time duration."""
        record = SessionRecord(id=3, timestamp=5, data_points_csv=serialize(estimated_samples))

        summary = summarize(record)

        assert summary.id == 3
        assert summary.sample_count == 3
        assert summary.duration_s == 33_333_333 / 1e9

    def test_summarize_counts_valid_only(self):
        """Malformed records should not be counted."""
        summary = summarize(SessionRecord(id=1, timestamp=0, data_points_csv="1,2,3;bad;4,5,6"))
        assert summary.sample_count == 2
