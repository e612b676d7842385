"""Tests for concord.manifest and concord.receipts."""
import hashlib
import tempfile
import unittest
from pathlib import Path

from concord.manifest import MISSING, Manifest, sha512_file, sha512_hex
from concord.receipts import ReceiptStore


class TestManifest(unittest.TestCase):
    def test_missing_assets(self):
        with tempfile.TemporaryDirectory() as tmp:
            manifest = Manifest.from_assets(Path(tmp))
        self.assertEqual(manifest.constitution_hash, MISSING)
        self.assertEqual(manifest.model_pack_label, MISSING)
        self.assertEqual(manifest.rules, [])
        self.assertEqual(manifest.rules_pack_hash, hashlib.sha512(b"").hexdigest())

    def test_hashes_assets_and_sorts_rules(self):
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            (root / "constitution.pdf").write_bytes(b"%PDF-1.4 constitution")
            (root / "model_pack.json").write_text('{"models": []}')
            (root / "rules").mkdir()
            (root / "rules" / "b.json").write_text("bbb")
            (root / "rules" / "a.json").write_text("a")
            (root / "rules" / "nested").mkdir()
            manifest = Manifest.from_assets(root)
            self.assertEqual(manifest.constitution_hash, sha512_file(root / "constitution.pdf"))

        self.assertEqual(manifest.constitution_hash, hashlib.sha512(b"%PDF-1.4 constitution").hexdigest())
        self.assertTrue(manifest.model_pack_label.startswith("core32:"))
        self.assertEqual([rule["name"] for rule in manifest.rules], ["a.json", "b.json"])
        self.assertEqual(manifest.rules[1]["size"], 3)
        expected = sha512_hex(manifest.rules[0]["sha512"] + manifest.rules[1]["sha512"])
        self.assertEqual(manifest.rules_pack_hash, expected)
        self.assertEqual(manifest.to_dict()["rulesPackHash"], expected)


class TestReceiptStore(unittest.TestCase):
    def test_put_get(self):
        store = ReceiptStore()
        store.put("abc", {"txid": "1"})
        self.assertEqual(store.get("abc"), {"txid": "1"})
        self.assertIsNone(store.get("missing"))

    def test_returns_copies(self):
        store = ReceiptStore()
        store.put("abc", {"txid": "1"})
        store.get("abc")["txid"] = "changed"
        self.assertEqual(store.get("abc")["txid"], "1")

    def test_evicts_oldest(self):
        store = ReceiptStore(max_entries=2)
        store.put("a", {})
        store.put("b", {})
        store.put("c", {})
        self.assertEqual(len(store), 2)
        self.assertIsNone(store.get("a"))
        self.assertIsNotNone(store.get("c"))


if __name__ == "__main__":
    unittest.main()
