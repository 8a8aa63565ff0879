"""Unit tests for text_parsing module."""

from hvsession.text_parsing import (
    build_live_vm_map,
    parse_guest_properties,
    parse_guest_property_line,
    parse_key_value_blocks,
    parse_key_value_lines,
    parse_leading_int,
    parse_pid_line,
    parse_vm_list,
)
from tests.fixtures.vbox_outputs import (
    GUESTPROPERTY_ENUMERATE_OUTPUT,
    LIST_HDDS_OUTPUT,
    LIST_VMS_DUPLICATE,
    LIST_VMS_OUTPUT,
    SYSTEM_PROPERTIES_OUTPUT,
    VM_UUID_1,
    VM_UUID_2,
    VM_UUID_INACCESSIBLE,
)


class TestParseKeyValueLines:
    """Tests for "Key: Value" parsing."""

    def test_strips_spaces_and_tabs(self):
        data = parse_key_value_lines(["Maximum guest CPU count: \t  32 \t"])
        assert data == {"Maximum guest CPU count": "32"}

    def test_first_occurrence_wins(self):
        data = parse_key_value_lines(SYSTEM_PROPERTIES_OUTPUT.splitlines())
        assert data["Maximum guest RAM size"] == "2097152 Megabytes"

    def test_value_keeps_later_colons(self):
        data = parse_key_value_lines(["Log opened: 2024-05-01T10:00:00Z"])
        assert data["Log opened"] == "2024-05-01T10:00:00Z"

    def test_lines_without_separator_skipped(self):
        data = parse_key_value_lines(["no separator here", "", "Key: value"])
        assert data == {"Key": "value"}

    def test_empty_value_kept(self):
        assert parse_key_value_lines(["Edition:"]) == {"Edition": ""}

    def test_custom_separator(self):
        assert parse_key_value_lines(["a=b"], separator="=") == {"a": "b"}


class TestParseKeyValueBlocks:
    """Tests for blank-line separated blocks."""

    def test_two_disk_blocks(self):
        blocks = parse_key_value_blocks(LIST_HDDS_OUTPUT.splitlines())
        assert len(blocks) == 2
        assert blocks[0]["Capacity"] == "20480 MBytes"
        assert blocks[1]["State"] == "inaccessible"

    def test_empty_input(self):
        assert parse_key_value_blocks([]) == []

    def test_repeated_blank_lines(self):
        blocks = parse_key_value_blocks(["A: 1", "", "", "", "B: 2"])
        assert blocks == [{"A": "1"}, {"B": "2"}]


class TestParseGuestProperties:
    """Tests for guestproperty enumerate lines."""

    def test_valid_line(self):
        line = "Name: /VirtualBox/GuestInfo/Net/0/V4/IP, value: 10.0.2.15, timestamp: 1, flags:"
        assert parse_guest_property_line(line) == ("/VirtualBox/GuestInfo/Net/0/V4/IP", "10.0.2.15")

    def test_only_one_leading_space_removed(self):
        line = "Name: key, value:   padded, timestamp: 1"
        assert parse_guest_property_line(line) == ("key", "  padded")

    def test_empty_value(self):
        assert parse_guest_property_line("Name: key, value:, timestamp: 1") == ("key", "")

    def test_missing_anchor_rejected(self):
        assert parse_guest_property_line("Name: key, value: v") is None
        assert parse_guest_property_line("key, value: v, timestamp: 1") is None
        assert parse_guest_property_line("Name: key, timestamp: 1") is None

    def test_anchors_out_of_order_rejected(self):
        assert parse_guest_property_line("Name: k, timestamp: 1, value: v") is None

    def test_enumerate_output(self):
        properties = parse_guest_properties(GUESTPROPERTY_ENUMERATE_OUTPUT.splitlines())
        assert properties == {
            "/VirtualBox/GuestInfo/Net/0/V4/IP": "10.0.2.15",
            "/VirtualBox/GuestAdd/Version": "6.1.38",
            "/VirtualBox/HostInfo/Empty": "",
        }


class TestParseVmList:
    """Tests for `list vms` parsing."""

    def test_names_and_ids(self):
        machines = parse_vm_list(LIST_VMS_OUTPUT.splitlines())
        assert machines[0] == ("build-vm", VM_UUID_1)
        assert machines[1] == ("test vm with spaces", VM_UUID_2)

    def test_line_without_brace_skipped(self):
        assert parse_vm_list(['"orphan"', ""]) == []

    def test_live_map_drops_inaccessible(self, caplog):
        live = build_live_vm_map(LIST_VMS_OUTPUT.splitlines())
        assert VM_UUID_INACCESSIBLE not in live
        assert live == {VM_UUID_1: "build-vm", VM_UUID_2: "test vm with spaces"}
        assert "inaccessible" in caplog.text

    def test_live_map_later_duplicate_wins(self):
        live = build_live_vm_map(LIST_VMS_DUPLICATE.splitlines())
        assert live == {VM_UUID_1: "second-name"}


class TestNumbers:
    """Tests for integer extraction helpers."""

    def test_leading_int(self):
        assert parse_leading_int("2048 MB") == 2048
        assert parse_leading_int("  32") == 32

    def test_leading_int_default(self):
        assert parse_leading_int("unlimited", 7) == 7
        assert parse_leading_int("") is None

    def test_pid_line(self):
        assert parse_pid_line("00:00:00.000003 Process ID: 48213\r\n") == 48213

    def test_pid_line_without_anchor(self):
        assert parse_pid_line("00:00:00.000002 Build Type: release") is None
