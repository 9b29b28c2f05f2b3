"""Tests for LocalFileSystem and JsonKeyValueStore on disk."""

import pytest

from tradesync.infrastructure.stores import JsonKeyValueStore, LocalFileSystem, PlaintextCipher


@pytest.fixture
def fs(tmp_path):
    return LocalFileSystem(tmp_path)


class TestLocalFileSystem:
    """File primitives under a root directory."""

    @pytest.mark.asyncio
    async def test_write_read_roundtrip(self, fs, tmp_path):
        await fs.write_file("trading-data/acct/trades/2024-06.json", '{"a": 1}')

        assert await fs.read_file("trading-data/acct/trades/2024-06.json") == '{"a": 1}'
        assert (tmp_path / "trading-data" / "acct" / "trades" / "2024-06.json").exists()
        # No temp files left behind
        assert await fs.list_directory("trading-data/acct/trades") == ["2024-06.json"]

    @pytest.mark.asyncio
    async def test_missing_file_reads_none(self, fs):
        assert await fs.read_file("nope.json") is None
        assert await fs.list_directory("nope") == []

    @pytest.mark.asyncio
    async def test_move_and_delete(self, fs):
        await fs.write_file("a/b.json", "x")

        await fs.move_file("a/b.json", "archives/2024/b.json")
        await fs.delete_file("does-not-exist.json")

        assert not await fs.exists("a/b.json")
        assert await fs.read_file("archives/2024/b.json") == "x"

        await fs.delete_directory("archives")
        assert not await fs.exists("archives")

    @pytest.mark.asyncio
    async def test_create_directory(self, fs):
        await fs.create_directory("trading-data/cache")
        assert await fs.exists("trading-data/cache")
        assert await fs.list_directory("trading-data") == ["cache"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("path", ["/etc/passwd", "../outside.json", "a/../../b"])
    async def test_rejects_paths_outside_root(self, fs, path):
        with pytest.raises(ValueError):
            await fs.read_file(path)

    @pytest.mark.asyncio
    async def test_refuses_to_delete_root(self, fs):
        with pytest.raises(ValueError):
            await fs.delete_directory(".")


class TestJsonKeyValueStore:
    """Legacy key-value store backed by one JSON file."""

    @pytest.mark.asyncio
    async def test_set_get_delete(self, fs):
        kv = JsonKeyValueStore(fs, "config.json")

        assert await kv.get("missing") is None
        await kv.set("equityHistory", {"acct": []})
        await kv.set("flag", True)
        assert await kv.get("equityHistory") == {"acct": []}

        await kv.delete("equityHistory")
        await kv.delete("equityHistory")

        reopened = JsonKeyValueStore(fs, "config.json")
        assert await reopened.get("equityHistory") is None
        assert await reopened.get("flag") is True

    @pytest.mark.asyncio
    async def test_non_object_document(self, fs):
        await fs.write_file("config.json", "[1, 2]")
        with pytest.raises(ValueError):
            await JsonKeyValueStore(fs, "config.json").get("x")

    def test_plaintext_cipher(self):
        assert PlaintextCipher().decrypt('{"a": 1}') == '{"a": 1}'
