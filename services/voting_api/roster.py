"""Read-only candidate roster."""
import json
import logging
from typing import Dict, Iterable, List, Optional

from services.shared import Candidate

logger = logging.getLogger(__name__)

DEFAULT_CANDIDATES = [
    Candidate('candidate111', 'Alowonle Olayinka Abdulrazzak', 'President'),
    Candidate('candidate112', 'Fadlullah Folajomi Babalola', 'President'),
    Candidate('candidate113', 'Buhari Muhammad Maaji', 'President'),
    Candidate('candidate211', 'Sadiq Fareedah Adedoyin', 'Vice President'),
    Candidate('candidate212', 'Abubakar Fatihu Olanrewaju', 'Vice President'),
    Candidate('candidate311', 'Sulayman Umar Toyin', 'Senate President'),
    Candidate('candidate312', 'Isah Ahmad', 'Senate President'),
    Candidate('candidate411', 'Surajo Umar Sadiq', 'Treasurer'),
    Candidate('candidate412', 'Abubakar Faruku Saad', 'Treasurer'),
]


class StaticRoster:
    """
    Immutable candidate set.

    Positions keep the order in which they first appear in the roster;
    candidates keep their roster order within a position.
    """

    def __init__(self, candidates: Iterable[Candidate]):
        self._candidates: Dict[str, Candidate] = {}
        self._by_position: Dict[str, List[Candidate]] = {}
        for candidate in candidates:
            if candidate.id in self._candidates:
                raise ValueError(f"Duplicate candidate id {candidate.id}")
            self._candidates[candidate.id] = candidate
            self._by_position.setdefault(candidate.position, []).append(candidate)

    @classmethod
    def from_file(cls, path: str) -> 'StaticRoster':
        """Load a roster from a JSON list of {"id", "name", "position"}."""
        with open(path, encoding="utf-8") as f:
            entries = json.load(f)
        roster = cls(
            Candidate(id=str(e["id"]), name=e["name"], position=e["position"])
            for e in entries
        )
        logger.info(f"Loaded {len(roster._candidates)} candidates from {path}")
        return roster

    @classmethod
    def from_settings(cls, settings) -> 'StaticRoster':
        if settings.ROSTER_FILE:
            return cls.from_file(settings.ROSTER_FILE)
        return cls(DEFAULT_CANDIDATES)

    def positions(self) -> List[str]:
        return list(self._by_position)

    def candidates(self, position: str) -> List[Candidate]:
        return list(self._by_position.get(position, []))

    def get(self, candidate_id: str) -> Optional[Candidate]:
        return self._candidates.get(candidate_id)
