"""Tests for the known-stack JSON store."""

from __future__ import annotations

import json

import pytest
from helpers.factories import make_pr

from stacksmith.store import DEFAULT_METADATA_PATH, StackStore, StoreError
from stacksmith.tools.stack import infer_stacks


def _stacks(owner: str, repo: str):
    return infer_stacks([make_pr(1, "a"), make_pr(2, "b", "a")], repo_owner=owner, repo_name=repo)


class TestLoad:
    def test_missing_file_created_empty(self, store_path):
        store = StackStore(store_path)
        assert store.load() == []
        assert json.loads(store_path.read_text()) == []

    def test_corrupt_json_raises(self, store_path):
        store_path.parent.mkdir(parents=True)
        store_path.write_text("{not json")
        with pytest.raises(StoreError, match="Corrupt stack metadata"):
            StackStore(store_path).load()

    def test_non_array_raises(self, store_path):
        store_path.parent.mkdir(parents=True)
        store_path.write_text('{"id": "x"}')
        with pytest.raises(StoreError, match="expected a JSON array"):
            StackStore(store_path).load()

    def test_invalid_record_raises(self, store_path):
        store_path.parent.mkdir(parents=True)
        store_path.write_text('[{"id": "x"}]')
        with pytest.raises(StoreError, match="Invalid stack record"):
            StackStore(store_path).load()

    def test_default_path(self):
        assert StackStore().path == DEFAULT_METADATA_PATH


class TestSave:
    def test_round_trip_preserves_stacks(self, store_path):
        store = StackStore(store_path)
        stacks = _stacks("octo", "api")
        store.save(stacks)
        assert store.load() == stacks

    def test_written_with_camel_case_aliases(self, store_path):
        StackStore(store_path).save(_stacks("octo", "api"))
        record = json.loads(store_path.read_text())[0]
        assert record["repoOwner"] == "octo"
        assert record["repoName"] == "api"
        assert [(pr["number"], pr["stackOrder"]) for pr in record["prs"]] == [(1, 0), (2, 1)]
        assert record["prs"][0]["stackId"] == record["id"]

    def test_two_space_indent(self, store_path):
        StackStore(store_path).save(_stacks("octo", "api"))
        assert store_path.read_text().startswith('[\n  {\n    "id"')

    def test_no_temp_files_left_behind(self, store_path):
        StackStore(store_path).save(_stacks("octo", "api"))
        assert [p.name for p in store_path.parent.iterdir()] == ["stacks.json"]


class TestPerRepo:
    def test_load_repo_filters(self, store_path):
        store = StackStore(store_path)
        store.save([*_stacks("octo", "api"), *_stacks("octo", "web")])
        assert [s.id for s in store.load_repo("octo", "web")] == ["octo-web-a"]

    def test_load_repo_is_case_insensitive(self, store_path):
        store = StackStore(store_path)
        store.save(_stacks("Octo", "API"))
        assert len(store.load_repo("octo", "api")) == 1

    def test_save_repo_keeps_other_repos(self, store_path):
        store = StackStore(store_path)
        store.save([*_stacks("octo", "api"), *_stacks("octo", "web")])

        store.save_repo("octo", "api", [])

        assert [s.id for s in store.load()] == ["octo-web-a"]

    def test_save_repo_replaces_own_records(self, store_path):
        store = StackStore(store_path)
        store.save_repo("octo", "api", _stacks("octo", "api"))
        store.save_repo("octo", "api", _stacks("octo", "api")[:1])
        assert len(store.load()) == 1
