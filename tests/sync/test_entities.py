"""Tests for sync domain entities."""

import pytest

from src.abm.sync.domain.entities import (
    UNASSIGNED,
    ActivitySnapshot,
    ActivityState,
    AssignedServer,
    Cancelled,
    CoverageEntry,
    DeviceRecord,
    DeviceReference,
    EnrichmentResult,
    Invalid,
    ManagementServer,
    MonitorResult,
    MutationKind,
    Selected,
    WorkingSet,
    parse_device_ids,
    parse_server_selection,
)


class TestWorkingSet:
    """Tests for the WorkingSet collection."""

    def test_add_reports_new_ids(self):
        """Test that add returns False for an id already present."""
        working_set = WorkingSet()

        assert working_set.add(DeviceReference("A")) is True
        assert working_set.add(DeviceReference("A")) is False
        assert len(working_set) == 1

    def test_union_keeps_first_seen_order(self):
        """Test that union counts new ids and keeps insertion order."""
        working_set = WorkingSet([DeviceReference("B"), DeviceReference("A")])

        added = working_set.union([DeviceReference("A"), DeviceReference("C")])

        assert added == 1
        assert working_set.ids == ["B", "A", "C"]
        assert [ref.id for ref in working_set] == ["B", "A", "C"]

    def test_contains_by_id_or_reference(self):
        """Test membership with either a string id or a reference."""
        working_set = WorkingSet([DeviceReference("A")])

        assert "A" in working_set
        assert DeviceReference("A") in working_set
        assert "B" not in working_set

    def test_repr(self):
        """Test the short representation."""
        assert repr(WorkingSet([DeviceReference("A")])) == "WorkingSet(1 devices)"


class TestDeviceRecord:
    """Tests for DeviceRecord entity."""

    def test_defaults(self):
        """Test a record with only an id."""
        record = DeviceRecord(id="DEV1")

        assert record.serial_number == ""
        assert record.assigned_server is UNASSIGNED
        assert not record.is_assigned
        assert not record.has_coverage
        assert record.raw_data == {}

    def test_assigned_with_coverage(self):
        """Test the derived flags of an assigned, covered device."""
        record = DeviceRecord(
            id="DEV1",
            assigned_server=AssignedServer(id="S1", name="Jamf Pro"),
            coverage_entries=[CoverageEntry(description="AppleCare+")],
        )

        assert record.is_assigned
        assert record.has_coverage

    def test_coverage_entry_to_dict(self):
        """Test that coverage serializes with API field names."""
        entry = CoverageEntry(description="Limited Warranty", status="EXPIRED")

        assert entry.to_dict() == {
            "description": "Limited Warranty",
            "status": "EXPIRED",
            "startDateTime": "",
            "endDateTime": "No end date",
            "paymentType": "",
        }

    def test_enrichment_result_totals(self):
        """Test the counters of an enrichment result."""
        result = EnrichmentResult(success_count=3, error_count=2, failed_ids=["D2", "D4"])

        assert result.total == 5
        assert result.has_failures
        assert result.to_dict()["failed_ids"] == ["D2", "D4"]


class TestActivityEntities:
    """Tests for activity kinds, states and snapshots."""

    def test_mutation_kind_activity_type(self):
        """Test the activityType value and target requirement."""
        assert MutationKind.ASSIGN.activity_type == "ASSIGN_DEVICES"
        assert MutationKind.UNASSIGN.activity_type == "UNASSIGN_DEVICES"
        assert MutationKind.ASSIGN.requires_target
        assert not MutationKind.UNASSIGN.requires_target

    @pytest.mark.parametrize("state,terminal", [
        (ActivityState.SUBMITTED, False),
        (ActivityState.POLLING, False),
        (ActivityState.COMPLETED, True),
        (ActivityState.FAILED, True),
        (ActivityState.TIMED_OUT, True),
    ])
    def test_state_is_terminal(self, state, terminal):
        """Test which machine states are final."""
        assert state.is_terminal is terminal

    @pytest.mark.parametrize("status,expected", [
        ("COMPLETED", ActivityState.COMPLETED),
        ("completed", ActivityState.COMPLETED),
        ("FAILED", ActivityState.FAILED),
        ("PENDING", None),
        ("IN_PROGRESS", None),
        ("PROCESSING", None),
        ("", None),
    ])
    def test_snapshot_terminal_state(self, status, expected):
        """Test that only COMPLETED and FAILED end monitoring."""
        snapshot = ActivitySnapshot(id="ACT-1", status=status)

        assert snapshot.terminal_state is expected
        assert snapshot.is_terminal is (expected is not None)

    def test_snapshot_from_api(self):
        """Test building a snapshot from a resource object."""
        payload = {
            "type": "orgDeviceActivities",
            "id": "ACT-1",
            "attributes": {
                "status": "IN_PROGRESS",
                "subStatus": None,
                "createdDateTime": "2025-01-01T10:00:00Z",
            },
        }

        snapshot = ActivitySnapshot.from_api(payload)

        assert snapshot.id == "ACT-1"
        assert snapshot.status == "IN_PROGRESS"
        assert snapshot.sub_status == ""
        assert snapshot.completed_at is None
        assert snapshot.download_url is None
        assert snapshot.raw is payload

    def test_timed_out_result_keeps_id(self):
        """Test that a timed-out result can still be looked up later."""
        result = MonitorResult(activity_id="ACT-1", state=ActivityState.TIMED_OUT, checks=60)

        assert result.timed_out
        assert not result.succeeded
        assert result.activity_id == "ACT-1"
        assert result.download_url is None


class TestParseServerSelection:
    """Tests for MDM server selection parsing."""

    @pytest.fixture
    def servers(self):
        return [
            ManagementServer(id="S1", name="Jamf Pro"),
            ManagementServer(id="S2", name="Intune"),
        ]

    @pytest.mark.parametrize("raw", [None, "", "   ", "\n"])
    def test_empty_input_cancels(self, raw, servers):
        """Test that no input means the caller cancelled."""
        assert parse_server_selection(raw, servers) == Cancelled()

    def test_selects_known_ids(self, servers):
        """Test comma and newline separated ids with whitespace."""
        selection = parse_server_selection(" S2 ,S1\nS2", servers)

        assert selection == Selected(("S2", "S1"))

    def test_unknown_ids_are_skipped(self, servers):
        """Test that unknown ids are dropped when a valid one remains."""
        assert parse_server_selection("S9,S1", servers) == Selected(("S1",))

    def test_only_unknown_ids(self, servers):
        """Test that a selection with no known id is invalid."""
        selection = parse_server_selection("S9, S10", servers)

        assert isinstance(selection, Invalid)
        assert selection.reason == "No valid MDM servers selected"

    def test_no_servers_available(self):
        """Test that nothing can be selected from an empty server list."""
        assert parse_server_selection("S1", []) == Invalid("No MDM servers available")


class TestParseDeviceIds:
    """Tests for device id parsing."""

    def test_parses_mixed_separators(self):
        assert parse_device_ids("SN1, SN2\nSN3,,SN1\n") == ["SN1", "SN2", "SN3"]

    def test_empty(self):
        assert parse_device_ids(None) == []
        assert parse_device_ids("  \n ") == []
