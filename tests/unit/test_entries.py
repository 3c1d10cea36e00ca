"""Tests for journalvault.core.storage.entries."""

import json
import os
import shutil
import uuid
from dataclasses import replace

import pytest

from journalvault.core.crypto.aead import SealedField, TextEncryption
from journalvault.core.errors import AuthenticationFailure, EntryNotFound, VaultCorrupt, VaultIOError
from journalvault.core.storage.atomic import is_temp_file
from journalvault.core.storage.entries import DEFAULT_TITLE, Entry, EntryStore
from journalvault.utils.validators import ValidationError


def _entry_path(store, entry_id):
    return store.directory / f"{entry_id}.json"


def _load_json(path):
    return json.loads(path.read_text(encoding="utf-8"))


def _write_json(path, data):
    path.write_text(json.dumps(data), encoding="utf-8")


class TestCreate:
    def test_defaults(self, entry_store):
        entry = entry_store.create()

        assert entry.title == DEFAULT_TITLE == "Untitled entry"
        assert entry.content == ""
        assert entry.folder is None
        assert entry.created_at == entry.updated_at
        assert str(uuid.UUID(entry.id)) == entry.id
        assert uuid.UUID(entry.id).version == 4

    def test_blank_title_uses_default(self, entry_store):
        assert entry_store.create("   ").title == DEFAULT_TITLE

    def test_round_trip(self, entry_store):
        created = entry_store.create("Morning pages", "Woke up early.\n\nWrote a lot.", folder="Daily")
        loaded = entry_store.load(created.id)

        assert loaded == created
        assert loaded.folder == "Daily"

    def test_unicode_content(self, entry_store):
        created = entry_store.create("日记", "今天天气很好 ☀️")

        assert entry_store.load(created.id).content == "今天天气很好 ☀️"

    def test_file_contains_no_plaintext(self, entry_store):
        entry = entry_store.create("Hidden Title Marker", "Hidden Content Marker")
        raw = _entry_path(entry_store, entry.id).read_bytes()

        assert b"Hidden Title Marker" not in raw
        assert b"Hidden Content Marker" not in raw

    def test_file_layout(self, entry_store):
        entry = entry_store.create("Title", "Body", folder="Work")
        data = _load_json(_entry_path(entry_store, entry.id))

        assert data["format_version"] == 1
        assert data["id"] == entry.id
        assert data["folder"] == "Work"
        assert data["algorithm"] == "aes256_gcm"
        assert set(data["title"]) == {"nonce", "ciphertext"}
        assert set(data["content"]) == {"nonce", "ciphertext"}
        assert data["title"]["nonce"] != data["content"]["nonce"]

    def test_added_to_index(self, entry_store):
        entry = entry_store.create("Indexed")

        assert [record.id for record in entry_store.list()] == [entry.id]


class TestListAndSearch:
    def test_newest_first(self, entry_store):
        first = entry_store.create("First")
        second = entry_store.create("Second")
        entry_store.update(replace(first, content="edited"))

        assert [record.id for record in entry_store.list()] == [first.id, second.id]

    def test_search_matches_titles_case_insensitively(self, entry_store):
        entry_store.create("Trip to Lisbon")
        entry_store.create("Groceries")

        assert [r.title for r in entry_store.search("LISBON")] == ["Trip to Lisbon"]

    def test_search_matches_folders(self, entry_store):
        entry_store.create("Monday", folder="Work Notes")
        entry_store.create("Tuesday")

        assert [r.title for r in entry_store.search("work")] == ["Monday"]

    def test_search_does_not_read_content(self, entry_store):
        entry_store.create("Title", "needle in content")

        assert entry_store.search("needle") == []

    def test_blank_query_lists_everything(self, entry_store):
        entry_store.create("A")
        entry_store.create("B")

        assert len(entry_store.search("  ")) == 2


class TestUpdate:
    def test_rewrites_with_fresh_nonces(self, entry_store):
        entry = entry_store.create("Title", "Body")
        path = _entry_path(entry_store, entry.id)
        before = _load_json(path)

        entry_store.update(entry)
        after = _load_json(path)

        assert after["title"]["nonce"] != before["title"]["nonce"]
        assert after["content"]["nonce"] != before["content"]["nonce"]

    def test_timestamps(self, entry_store):
        entry = entry_store.create("Title", "Body")
        updated = entry_store.update(replace(entry, content="New body"))

        assert updated.updated_at > entry.updated_at
        assert updated.created_at == entry.created_at
        assert entry_store.load(entry.id).content == "New body"

    def test_created_at_taken_from_disk(self, entry_store):
        entry = entry_store.create("Title")
        forged = replace(entry, created_at=entry.created_at.replace(year=2000))

        assert entry_store.update(forged).created_at == entry.created_at

    def test_index_updated_in_place(self, entry_store):
        entry = entry_store.create("Old title")
        entry_store.update(replace(entry, title="New title", folder="Moved"))

        records = entry_store.list()
        assert len(records) == 1
        assert (records[0].title, records[0].folder) == ("New title", "Moved")

    def test_reencrypts_under_current_algorithm(self, manager, entry_store):
        entry = entry_store.create("Title")
        manager.set_text_encryption(TextEncryption.CHACHA20_POLY1305)

        updated = entry_store.update(entry)

        assert updated.algorithm is TextEncryption.CHACHA20_POLY1305
        assert _load_json(_entry_path(entry_store, entry.id))["algorithm"] == "chacha20_poly1305"
        assert entry_store.load(entry.id).title == "Title"

    def test_missing_entry(self, entry_store):
        entry = entry_store.create("Gone")
        entry_store.delete(entry.id)

        with pytest.raises(EntryNotFound):
            entry_store.update(entry)

    def test_interrupted_write_keeps_previous_version(self, entry_store, monkeypatch):
        entry = entry_store.create("Original", "first draft")

        def fail_replace(src, dst):
            raise OSError(28, "No space left on device")

        monkeypatch.setattr(os, "replace", fail_replace)
        with pytest.raises(VaultIOError):
            entry_store.update(replace(entry, content="second draft"))
        monkeypatch.undo()

        assert entry_store.load(entry.id).content == "first draft"
        assert entry_store.list()[0].updated_at == entry.updated_at
        assert not any(is_temp_file(p) for p in entry_store.directory.iterdir())


class TestDelete:
    def test_removes_file_and_record(self, entry_store):
        entry = entry_store.create("Doomed")
        entry_store.delete(entry.id)

        assert not _entry_path(entry_store, entry.id).exists()
        assert entry_store.list() == []
        with pytest.raises(EntryNotFound):
            entry_store.load(entry.id)

    def test_unknown_id(self, entry_store):
        with pytest.raises(EntryNotFound):
            entry_store.delete(str(uuid.uuid4()))


class TestIntegrity:
    def test_tampered_content(self, entry_store):
        entry = entry_store.create("Title", "Body")
        path = _entry_path(entry_store, entry.id)
        data = _load_json(path)
        sealed = SealedField.from_dict(data["content"], algorithm=TextEncryption.AES256_GCM)
        flipped = sealed.ciphertext[:-1] + bytes([sealed.ciphertext[-1] ^ 0x80])
        data["content"] = replace(sealed, ciphertext=flipped).to_dict(include_algorithm=False)
        _write_json(path, data)

        with pytest.raises(AuthenticationFailure):
            entry_store.load(entry.id)

    def test_swapped_fields(self, entry_store):
        entry = entry_store.create("Title", "Body")
        path = _entry_path(entry_store, entry.id)
        data = _load_json(path)
        data["title"], data["content"] = data["content"], data["title"]
        _write_json(path, data)

        with pytest.raises(AuthenticationFailure):
            entry_store.load(entry.id)

    def test_ciphertext_moved_to_other_entry(self, entry_store):
        source = entry_store.create("Source", "Source body")
        target = entry_store.create("Target", "Target body")
        target_path = _entry_path(entry_store, target.id)
        data = _load_json(_entry_path(entry_store, source.id))
        data["id"] = target.id
        _write_json(target_path, data)

        with pytest.raises(AuthenticationFailure):
            entry_store.load(target.id)

    def test_file_name_must_match_id(self, entry_store):
        entry = entry_store.create("Title")
        other_id = str(uuid.uuid4())
        shutil.copy(_entry_path(entry_store, entry.id), _entry_path(entry_store, other_id))

        with pytest.raises(VaultCorrupt):
            entry_store.load(other_id)

    def test_malformed_file(self, entry_store):
        entry = entry_store.create("Title")
        _entry_path(entry_store, entry.id).write_text("{\"format_version\": 1}")

        with pytest.raises(VaultCorrupt):
            entry_store.load(entry.id)


class TestIds:
    @pytest.mark.parametrize("bad_id", ["../vault", "not-a-uuid", "", "12345678123456781234567812345678"])
    def test_invalid_ids_rejected(self, entry_store, bad_id):
        with pytest.raises(ValidationError):
            entry_store.load(bad_id)

    def test_unknown_id(self, entry_store):
        with pytest.raises(EntryNotFound):
            entry_store.load(str(uuid.uuid4()))


class TestRebuildIndex:
    def test_ignores_temp_and_foreign_files(self, session, entry_store):
        entry = entry_store.create("Real")
        (entry_store.directory / "notes.txt").write_text("hello")
        (entry_store.directory / ".x.json.abc.tmp").write_text("partial")

        damaged = entry_store.rebuild_index()

        assert damaged == []
        assert [record.id for record in entry_store.list()] == [entry.id]
        assert not (entry_store.directory / ".x.json.abc.tmp").exists()

    def test_new_store_sees_same_index(self, session, entry_store):
        entry = entry_store.create("Shared")

        assert [record.id for record in EntryStore(session).list()] == [entry.id]


class TestEntryFromDict:
    def test_parses_command_payload(self, entry_store):
        entry = entry_store.create("Title", "Body")

        assert Entry.from_dict(entry.to_dict()) == entry

    def test_missing_id(self):
        with pytest.raises(ValidationError):
            Entry.from_dict({"title": "x"})

    def test_bad_timestamp(self):
        with pytest.raises(ValidationError):
            Entry.from_dict({"id": str(uuid.uuid4()), "created_at": "someday"})

    @pytest.mark.parametrize("field", ["title", "content", "folder"])
    def test_non_string_field(self, field):
        with pytest.raises(ValidationError):
            Entry.from_dict({"id": str(uuid.uuid4()), field: 42})


class TestFieldTypes:
    @pytest.mark.parametrize(
        "kwargs",
        [{"title": 5}, {"title": "T", "content": ["body"]}, {"title": "T", "folder": {"name": "x"}}],
    )
    def test_create_rejects_non_strings(self, entry_store, kwargs):
        with pytest.raises(ValidationError):
            entry_store.create(**kwargs)

        assert list(entry_store.directory.glob("*.json")) == []

    def test_update_rejects_non_string_content(self, entry_store):
        entry = entry_store.create("Title", "Body")

        with pytest.raises(ValidationError):
            entry_store.update(replace(entry, content=12))

        assert entry_store.load(entry.id).content == "Body"


class TestLoadAll:
    def test_newest_first_with_contents(self, entry_store):
        first = entry_store.create("First", "one")
        second = entry_store.create("Second", "two")
        entry_store.update(replace(first, content="edited"))

        loaded = entry_store.load_all()

        assert [entry.id for entry in loaded] == [first.id, second.id]
        assert [entry.content for entry in loaded] == ["edited", "two"]

    def test_reads_entries_missing_from_index(self, entry_store, session):
        entry = entry_store.create("Title", "Body")
        session.index_remove(entry.id)

        assert [e.id for e in entry_store.load_all()] == [entry.id]

    def test_damaged_file_fails(self, entry_store):
        entry_store.create("Fine")
        broken = entry_store.create("Broken", "Body")
        path = _entry_path(entry_store, broken.id)
        data = _load_json(path)
        data["title"], data["content"] = data["content"], data["title"]
        _write_json(path, data)

        with pytest.raises(AuthenticationFailure):
            entry_store.load_all()
