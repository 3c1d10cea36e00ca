"""Tests for journalvault.commands."""

import base64
import uuid

import pytest

from journalvault.commands import VaultCommands
from journalvault.core.errors import EntryNotFound, LockedError, WrongPassphrase
from journalvault.utils.validators import ValidationError


@pytest.fixture
def fresh(fast_config):
    """Locked command facade."""
    commands = VaultCommands(fast_config)
    yield commands
    commands.lock()


class TestUnlock:
    def test_result_shape(self, fresh, vault_root, passphrase):
        result = fresh.unlock(passphrase, str(vault_root))

        assert result["created"] is True
        assert result["entries"] == []
        assert result["vault_root"] == str(vault_root)
        assert result["text_encryption"] == "aes256_gcm"
        assert result["available_text_encryptions"] == ["aes256_gcm", "chacha20_poly1305"]
        assert result["damaged_entries"] == []
        assert isinstance(result["last_saved"], str)

    def test_algorithm_argument(self, fresh, vault_root, passphrase):
        result = fresh.unlock(passphrase, vault_root, algorithm="chacha20_poly1305")

        assert result["text_encryption"] == "chacha20_poly1305"

    def test_default_directory(self, fresh, fast_config, passphrase):
        result = fresh.unlock(passphrase)

        assert result["vault_root"] == str(fast_config.paths.data_dir.resolve())
        assert fast_config.paths.data_dir.is_dir()

    def test_missing_directory_is_created(self, fresh, tmp_path, passphrase):
        target = tmp_path / "new" / "journal"

        fresh.unlock(passphrase, target)

        assert (target / "vault.json").is_file()

    @pytest.mark.parametrize("directory", ["", "   "])
    def test_blank_directory(self, fresh, passphrase, directory):
        with pytest.raises(ValidationError):
            fresh.unlock(passphrase, directory)

    def test_directory_is_a_file(self, fresh, tmp_path, passphrase):
        target = tmp_path / "file.txt"
        target.write_text("x")

        with pytest.raises(ValidationError):
            fresh.unlock(passphrase, target)

    def test_empty_passphrase(self, fresh, vault_root):
        with pytest.raises(ValidationError):
            fresh.unlock("", vault_root)

    def test_unknown_algorithm(self, fresh, vault_root, passphrase):
        with pytest.raises(ValidationError):
            fresh.unlock(passphrase, vault_root, algorithm="rot13")

    def test_wrong_passphrase(self, fresh, vault_root, passphrase):
        fresh.unlock(passphrase, vault_root)
        fresh.lock()

        with pytest.raises(WrongPassphrase):
            fresh.unlock("wrong", vault_root)
        assert fresh.status() == {"unlocked": False, "vault_root": None}


class TestEntries:
    def test_create_and_load(self, commands):
        created = commands.create_entry(title="Hello", content="World", folder="Inbox")
        loaded = commands.load_entry(created["id"])

        assert loaded == created
        assert loaded["title"] == "Hello"
        assert loaded["content"] == "World"
        assert loaded["folder"] == "Inbox"
        assert isinstance(loaded["created_at"], str)

    def test_create_defaults(self, commands):
        created = commands.create_entry()

        assert created["title"] == "Untitled entry"
        assert created["content"] == ""

    def test_list_and_search(self, commands):
        commands.create_entry(title="Alpha")
        commands.create_entry(title="Beta")

        assert {e["title"] for e in commands.list_entries()} == {"Alpha", "Beta"}
        assert [e["title"] for e in commands.search_entries("alp")] == ["Alpha"]
        assert "content" not in commands.list_entries()[0]

    def test_update(self, commands):
        created = commands.create_entry(title="Draft", content="v1")

        updated = commands.update_entry({**created, "content": "v2"})

        assert updated["content"] == "v2"
        assert updated["updated_at"] > created["updated_at"]
        assert commands.load_entry(created["id"])["content"] == "v2"

    def test_update_unknown(self, commands):
        with pytest.raises(EntryNotFound):
            commands.update_entry({"id": str(uuid.uuid4()), "title": "x", "content": "y"})

    def test_update_invalid_payload(self, commands):
        with pytest.raises(ValidationError):
            commands.update_entry({"title": "no id"})

    @pytest.mark.parametrize("kwargs", [{"title": 5}, {"content": 1.5}, {"folder": ["Inbox"]}])
    def test_create_rejects_non_strings(self, commands, kwargs):
        with pytest.raises(ValidationError):
            commands.create_entry(**kwargs)

        assert commands.list_entries() == []

    def test_delete(self, commands):
        created = commands.create_entry(title="Temp")
        commands.delete_entry(created["id"])

        assert commands.list_entries() == []
        with pytest.raises(EntryNotFound):
            commands.delete_entry(created["id"])


class TestImages:
    def test_clipboard_base64(self, commands, png_bytes):
        reference = commands.import_clipboard_image({
            "data": base64.b64encode(png_bytes).decode("ascii"),
            "mime": "image/png",
        })

        assert reference.endswith(".png")
        assert commands.decrypt_image(reference) == png_bytes

    def test_clipboard_byte_list(self, commands):
        reference = commands.import_clipboard_image({"data": [1, 2, 3], "name": "x.bmp"})

        assert reference.endswith(".bmp")
        assert commands.decrypt_image(reference) == b"\x01\x02\x03"

    @pytest.mark.parametrize("payload", [
        {},
        {"data": "not base64!"},
        {"data": [300]},
        {"data": []},
        {"data": [1], "name": 5},
        {"data": [1], "mime": ["image/png"]},
    ])
    def test_clipboard_invalid(self, commands, payload):
        with pytest.raises(ValidationError):
            commands.import_clipboard_image(payload)

    def test_store_image_from_path(self, commands, tmp_path, png_bytes):
        source = tmp_path / "pic.webp"
        source.write_bytes(png_bytes)

        reference = commands.store_image(str(source))

        assert commands.decrypt_image(reference) == png_bytes


class TestExportAndSettings:
    def test_export_plaintext(self, commands):
        commands.create_entry(title="Exported", content="Body")

        assert commands.export_plaintext().startswith("# Exported\n")

    def test_export_plaintext_file(self, commands, tmp_path):
        commands.create_entry(title="Exported", content="Body")
        destination = tmp_path / "diary.md"

        assert commands.export_plaintext_file(str(destination)) == str(destination)
        assert destination.read_text(encoding="utf-8").startswith("# Exported\n")

    def test_set_text_encryption(self, commands):
        info = commands.set_text_encryption("chacha20_poly1305")

        assert info["text_encryption"] == "chacha20_poly1305"
        assert commands.create_entry()["algorithm"] == "chacha20_poly1305"

    def test_set_unknown_text_encryption(self, commands):
        with pytest.raises(ValidationError):
            commands.set_text_encryption("des")

    def test_status(self, commands, vault_root):
        assert commands.status() == {"unlocked": True, "vault_root": str(vault_root)}

    def test_change_passphrase(self, commands, vault_root, passphrase):
        entry = commands.create_entry(title="Kept", content="Body")

        info = commands.change_passphrase(passphrase, "new secret phrase")

        assert info["vault_root"] == str(vault_root)
        assert commands.load_entry(entry["id"])["content"] == "Body"
        commands.lock()
        with pytest.raises(WrongPassphrase):
            commands.unlock(passphrase, str(vault_root))
        assert commands.unlock("new secret phrase", str(vault_root))["entries"][0]["title"] == "Kept"

    @pytest.mark.parametrize("new", ["short", "      ", "\t\t\t\t\t\t", 123456])
    def test_change_passphrase_rejects_weak(self, commands, passphrase, new):
        with pytest.raises(ValidationError):
            commands.change_passphrase(passphrase, new)

    def test_change_passphrase_wrong_old(self, commands):
        with pytest.raises(WrongPassphrase):
            commands.change_passphrase("not the passphrase", "new secret phrase")


class TestLocked:
    @pytest.mark.parametrize("call", [
        lambda c: c.list_entries(),
        lambda c: c.search_entries("x"),
        lambda c: c.load_entry(str(uuid.uuid4())),
        lambda c: c.create_entry(),
        lambda c: c.delete_entry(str(uuid.uuid4())),
        lambda c: c.export_plaintext(),
        lambda c: c.export_plaintext_file(),
        lambda c: c.decrypt_image("images/2024/01/a.png"),
        lambda c: c.import_clipboard_image({"data": [1]}),
        lambda c: c.set_text_encryption("aes256_gcm"),
        lambda c: c.change_passphrase("old passphrase", "new passphrase"),
    ])
    def test_commands_require_unlock(self, fresh, call):
        with pytest.raises(LockedError):
            call(fresh)
