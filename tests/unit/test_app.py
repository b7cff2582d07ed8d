"""Tests for key translation and help content in the terminal front-end."""

import pytest

from gcp_tui.app import command_for_key, cycle, format_hints, help_sections
from gcp_tui.navigation import PickerPurpose, ViewKind


class TestCommandForKey:
    @pytest.mark.parametrize(
        "key, character, expected",
        [
            ("j", "j", ("move", 1)),
            ("down", None, ("move", 1)),
            ("k", "k", ("move", -1)),
            ("g", "g", ("move_to", "top")),
            ("G", "G", ("move_to", "bottom")),
            ("d", "d", ("describe",)),
            ("r", "r", ("refresh",)),
            ("q", "q", ("quit",)),
            ("slash", "/", ("start_filter",)),
            ("colon", ":", ("prompt_command",)),
            ("escape", None, ("back",)),
            ("ctrl+p", None, ("open_picker", PickerPurpose.PROJECT)),
        ],
    )
    def test_list_navigation(self, key, character, expected):
        assert command_for_key(ViewKind.LIST, key, character) == expected

    def test_other_characters_are_shortcuts(self):
        assert command_for_key(ViewKind.LIST, "D", "D") == ("shortcut", "D")
        assert command_for_key(ViewKind.LIST, "a", "a") == ("shortcut", "a")

    def test_unprintable_key_is_ignored(self):
        assert command_for_key(ViewKind.LIST, "f5", None) is None

    def test_dialog_keys(self):
        assert command_for_key(ViewKind.DIALOG, "y", "y") == ("confirm", True)
        assert command_for_key(ViewKind.DIALOG, "escape", None) == ("confirm", False)
        assert command_for_key(ViewKind.DIALOG, "enter", "\r") == ("confirm",)
        assert command_for_key(ViewKind.DIALOG, "x", "x") is None

    def test_describe_q_goes_back(self):
        assert command_for_key(ViewKind.DESCRIBE, "q", "q") == ("back",)

    def test_filter_keys(self):
        assert command_for_key(ViewKind.FILTER, "enter", "\r") == ("commit_filter",)
        assert command_for_key(ViewKind.FILTER, "escape", None) == ("cancel_filter",)
        assert command_for_key(ViewKind.FILTER, "a", "a") is None


class TestHelp:
    def test_schema_shortcuts_are_listed(self, registry):
        sections = dict(help_sections(registry.require("vm-instances")))

        assert sections["VM Instances actions"] == [("s", "Start"), ("D", "Delete (destructive)")]
        assert sections["VM Instances sub-resources"] == [("a", "Attached disks")]
        assert ("?", "Toggle help") in sections["Views"]

    def test_read_only_marks_actions(self, registry):
        sections = dict(help_sections(registry.require("vm-instances"), read_only=True))
        assert sections["VM Instances actions"][0] == ("s", "Start [disabled]")

    def test_without_schema_only_general_keys(self):
        titles = [title for title, _ in help_sections(None)]
        assert titles == ["Navigation", "Views", "Pickers", "Commands"]

    def test_schema_without_shortcuts(self, registry):
        titles = [title for title, _ in help_sections(registry.require("disks"))]
        assert titles == ["Navigation", "Views", "Pickers", "Commands"]

    def test_format_hints(self):
        assert format_hints([("s", "Start"), ("D", "Delete")]) == "<s> Start  <D> Delete"
        assert format_hints([]) == ""


class TestCycle:
    @pytest.mark.parametrize(
        "index, delta, size, expected",
        [(0, 1, 3, 1), (2, 1, 3, 0), (0, -1, 3, 2), (0, 1, 0, 0)],
    )
    def test_wraps(self, index, delta, size, expected):
        assert cycle(index, delta, size) == expected
