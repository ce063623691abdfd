"""
Tournament phases and the knockout phase order.
"""
from enum import Enum
from typing import List, Optional


class MatchPhase(Enum):
    """Every phase a fixture can belong to."""
    GROUP_STAGE = 'GROUP_STAGE'
    ROUND_OF_32 = 'ROUND_OF_32'
    ROUND_OF_16 = 'ROUND_OF_16'
    QUARTER_FINALS = 'QUARTER_FINALS'
    SEMI_FINALS = 'SEMI_FINALS'
    THIRD_PLACE = 'THIRD_PLACE'
    FINAL = 'FINAL'


class KnockoutPhase(Enum):
    """The predictable knockout rounds, in the only order they may be filled.

    The third place play-off is not part of this chain: nothing downstream
    depends on it.
    """
    ROUND_OF_32 = 'ROUND_OF_32'
    ROUND_OF_16 = 'ROUND_OF_16'
    QUARTER_FINALS = 'QUARTER_FINALS'
    SEMI_FINALS = 'SEMI_FINALS'
    FINAL = 'FINAL'

    @classmethod
    def parse(cls, value) -> 'KnockoutPhase':
        """Build a phase from its name, raising ValueError for anything else."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            valid = ', '.join(p.value for p in cls)
            raise ValueError(f"Invalid knockout phase: {value}. Valid phases are: {valid}") from None

    @classmethod
    def ordered(cls) -> List['KnockoutPhase']:
        return list(cls)

    @property
    def order(self) -> int:
        return _ORDER.index(self) + 1

    @property
    def expected_match_count(self) -> int:
        return _MATCH_COUNTS[self]

    @property
    def match_phase(self) -> MatchPhase:
        return MatchPhase(self.value)

    @property
    def previous(self) -> Optional['KnockoutPhase']:
        index = _ORDER.index(self)
        return _ORDER[index - 1] if index > 0 else None

    @property
    def next(self) -> Optional['KnockoutPhase']:
        index = _ORDER.index(self)
        return _ORDER[index + 1] if index + 1 < len(_ORDER) else None

    def is_first_phase(self) -> bool:
        return self is KnockoutPhase.ROUND_OF_32

    def is_final(self) -> bool:
        return self is KnockoutPhase.FINAL

    def __lt__(self, other):
        if not isinstance(other, KnockoutPhase):
            return NotImplemented
        return self.order < other.order

    def __le__(self, other):
        if not isinstance(other, KnockoutPhase):
            return NotImplemented
        return self.order <= other.order

    def __gt__(self, other):
        if not isinstance(other, KnockoutPhase):
            return NotImplemented
        return self.order > other.order

    def __ge__(self, other):
        if not isinstance(other, KnockoutPhase):
            return NotImplemented
        return self.order >= other.order


_ORDER = list(KnockoutPhase)

_MATCH_COUNTS = {
    KnockoutPhase.ROUND_OF_32: 16,
    KnockoutPhase.ROUND_OF_16: 8,
    KnockoutPhase.QUARTER_FINALS: 4,
    KnockoutPhase.SEMI_FINALS: 2,
    KnockoutPhase.FINAL: 1,
}
