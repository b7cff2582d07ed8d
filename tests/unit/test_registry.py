"""Tests for loading and querying the resource registry."""

import copy
import json

import pytest

from gcp_tui.errors import (
    DuplicateResourceKey,
    InvalidColumnSpec,
    InvalidSchemaDocument,
    SchemaError,
    ShortcutConflict,
    UnknownResourceKey,
)
from gcp_tui.registry import documents_from_dir, fuzzy_score, load, load_default


def _dump(document):
    return json.dumps(document)


class TestLoad:
    def test_loads_every_resource(self, document):
        registry = load([_dump(document)])

        assert registry.keys() == ["disks", "projects", "vm-disks", "vm-instances"]
        schema = registry.require("vm-instances")
        assert schema.key == "vm-instances"
        assert schema.api.method == "GET"
        assert [a.shortcut for a in schema.actions] == ["s", "D"]

    def test_accepts_yaml_documents(self):
        text = """
resources:
  buckets:
    display_name: Buckets
    service: storage
    api:
      base: https://storage.googleapis.com/storage/v1
      path: b?project={project}
    response_path: items
    id_field: id
    name_field: name
    columns:
      - header: NAME
        json_path: name
"""
        registry = load([text])
        assert registry.require("buckets").columns[0].width == 20

    def test_duplicate_key_across_documents(self, document):
        other = {"resources": {"disks": copy.deepcopy(document["resources"]["disks"])}}

        with pytest.raises(DuplicateResourceKey) as excinfo:
            load([_dump(document), _dump(other)])
        assert excinfo.value.key == "disks"

    def test_reserved_shortcut_is_rejected(self, document):
        document["resources"]["vm-instances"]["actions"][0]["shortcut"] = "q"

        with pytest.raises(ShortcutConflict) as excinfo:
            load([_dump(document)])
        assert excinfo.value.shortcut == "q"
        assert "reserved" in str(excinfo.value)

    def test_duplicate_shortcut_within_schema(self, document):
        document["resources"]["vm-instances"]["actions"][1]["shortcut"] = "s"

        with pytest.raises(ShortcutConflict, match="used by both 'Start' and 'Delete'"):
            load([_dump(document)])

    def test_action_without_shortcut_is_rejected(self, document):
        del document["resources"]["vm-instances"]["actions"][0]["shortcut"]

        with pytest.raises(InvalidSchemaDocument, match="shortcut"):
            load([_dump(document)])

    @pytest.mark.parametrize("shortcut", ["", "ss", " "])
    def test_shortcut_must_be_a_single_key(self, document, shortcut):
        document["resources"]["vm-instances"]["actions"][0]["shortcut"] = shortcut

        with pytest.raises(ShortcutConflict, match="of 'Start' must be a single key"):
            load([_dump(document)])

    def test_empty_json_path_is_rejected(self, document):
        document["resources"]["disks"]["columns"][0]["json_path"] = " "

        with pytest.raises(InvalidColumnSpec):
            load([_dump(document)])

    def test_every_problem_is_reported(self, document):
        document["resources"]["vm-instances"]["actions"][0]["shortcut"] = "j"
        document["resources"]["disks"]["columns"][0]["width"] = 0
        document["resources"]["disks"]["id_field"] = ""

        with pytest.raises(SchemaError) as excinfo:
            load([_dump(document)])
        assert len(excinfo.value.errors) == 3

    def test_structurally_invalid_document_fails_whole_load(self, document):
        broken = {"resources": {"bad": {"display_name": "Missing everything"}}}

        with pytest.raises(InvalidSchemaDocument):
            load([_dump(document), _dump(broken)])

    def test_non_map_document(self):
        with pytest.raises(InvalidSchemaDocument, match="expected a map"):
            load(["[1, 2, 3]"])

    def test_undecodable_document(self):
        with pytest.raises(InvalidSchemaDocument, match="cannot be decoded"):
            load(["{resources: [unclosed"])

    def test_dangling_sub_resource_fails_only_on_use(self, document):
        del document["resources"]["vm-disks"]
        registry = load([_dump(document)])

        sub = registry.require("vm-instances").sub_resources[0]
        with pytest.raises(UnknownResourceKey, match="vm-disks"):
            registry.resolve_sub_resource(sub)


class TestRegistry:
    def test_color_for(self, registry):
        assert registry.color_for("status", "RUNNING") == (0, 200, 0)
        assert registry.color_for("status", "UNKNOWN") is None
        assert registry.color_for("missing", "RUNNING") is None

    def test_require_unknown(self, registry):
        with pytest.raises(UnknownResourceKey):
            registry.require("nope")
        assert registry.get("nope") is None
        assert "nope" not in registry

    def test_search_ranks_prefix_first(self, registry):
        keys = [key for key, _ in registry.search("vm")]
        assert keys[:2] == ["vm-disks", "vm-instances"]
        assert "projects" not in keys

    def test_search_matches_display_name(self, registry):
        assert registry.search("Projects")[0][0] == "projects"

    def test_empty_query_lists_everything(self, registry):
        assert len(registry.search("")) == len(registry)


class TestFuzzyScore:
    def test_not_a_subsequence(self):
        assert fuzzy_score("xyz", "vm-instances") is None

    def test_exact_beats_prefix(self):
        assert fuzzy_score("disks", "disks") > fuzzy_score("disks", "disks-extra")

    def test_consecutive_beats_scattered(self):
        assert fuzzy_score("ins", "vm-instances") > fuzzy_score("ins", "image-nets")

    def test_word_start_bonus(self):
        assert fuzzy_score("i", "vm-i") > fuzzy_score("i", "vmxi")


class TestBuiltinDocuments:
    def test_shipped_documents_load(self):
        registry = load_default()

        assert "vm-instances" in registry
        assert "projects" in registry
        for key in registry.keys():
            schema = registry.require(key)
            for sub in schema.sub_resources:
                registry.resolve_sub_resource(sub)

    def test_extra_directory_is_merged(self, tmp_path, document):
        extra = {"resources": {"my-disks": document["resources"]["disks"]}}
        (tmp_path / "mine.json").write_text(json.dumps(extra))
        (tmp_path / "notes.txt").write_text("ignored")

        assert len(documents_from_dir(tmp_path)) == 1
        assert "my-disks" in load_default([tmp_path])
