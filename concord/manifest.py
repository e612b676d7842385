"""SHA-512 manifest of the published assets (constitution, model pack, rules)."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List
import hashlib

MISSING = "missing"
CONSTITUTION_FILE = "constitution.pdf"
MODEL_PACK_FILE = "model_pack.json"
RULES_DIR = "rules"


def sha512_hex(data: str | bytes) -> str:
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha512(data).hexdigest()


def sha512_file(path: Path) -> str:
    digest = hashlib.sha512()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(65536), b""):
            digest.update(chunk)
    return digest.hexdigest()


def _hash_or_missing(path: Path) -> str:
    return sha512_file(path) if path.is_file() else MISSING


@dataclass
class Manifest:
    constitution_hash: str = MISSING
    model_pack_hash: str = MISSING
    rules: List[Dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_assets(cls, assets_dir: Path) -> "Manifest":
        assets_dir = Path(assets_dir)
        rules_dir = assets_dir / RULES_DIR
        rules = []
        if rules_dir.is_dir():
            for path in sorted(p for p in rules_dir.iterdir() if p.is_file()):
                rules.append({
                    "name": path.name,
                    "size": path.stat().st_size,
                    "sha512": sha512_file(path),
                })
        return cls(
            constitution_hash=_hash_or_missing(assets_dir / CONSTITUTION_FILE),
            model_pack_hash=_hash_or_missing(assets_dir / MODEL_PACK_FILE),
            rules=rules,
        )

    @property
    def rules_pack_hash(self) -> str:
        return sha512_hex("".join(rule["sha512"] for rule in self.rules))

    @property
    def model_pack_label(self) -> str:
        if self.model_pack_hash == MISSING:
            return MISSING
        return f"core32:{self.model_pack_hash}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "constitutionHash": self.constitution_hash,
            "modelPackHash": self.model_pack_label,
            "rules": [dict(rule) for rule in self.rules],
            "rulesPackHash": self.rules_pack_hash,
        }
