from __future__ import annotations

from dataclasses import dataclass, field

from hmr_schemas.clinical import CanonicalRecord


@dataclass
class NormalizationNote:
    kind: str
    path: str | None
    message: str


@dataclass
class NormalizationResult:
    record: CanonicalRecord
    raw_text: str
    notes: list[NormalizationNote] = field(default_factory=list)

    def flagged_medications(self, threshold: float) -> list[int]:
        return self.record.flagged_medications(threshold)
