import typing as t
from enum import Enum
from dataclasses import dataclass, field, replace

import music21 as m21

if t.TYPE_CHECKING:
    from .notes import Note


class MyStrEnum(str, Enum):
    def __new__(cls, value: str):
        return str.__new__(cls, value)


class SolfaEngineException(Exception):
    pass


class ScaleDegree (MyStrEnum):
    Do = 'd'
    Re = 'r'
    Mi = 'm'
    Fa = 'f'
    Sol = 's'
    La = 'l'
    Ti = 't'
    # chromatic aliases; they have no place in the diatonic order
    AltC = 'c'
    AltB = 'b'


class Accidental (MyStrEnum):
    Sharp = 'sharp'
    Flat = 'flat'
    Natural = 'natural'


class Mode (MyStrEnum):
    Major = 'major'
    Minor = 'minor'


class InKeyStrategy (MyStrEnum):
    # Legacy compares a 0..6 scale step against semitone interval sets (the way
    # the editor always has).  Diatonic asks whether the note is an unaltered
    # (or key-altered) diatonic degree of the key.
    Legacy = 'legacy'
    Diatonic = 'diatonic'


DEGREE_ORDER: tuple[ScaleDegree, ...] = (
    ScaleDegree.Do,
    ScaleDegree.Re,
    ScaleDegree.Mi,
    ScaleDegree.Fa,
    ScaleDegree.Sol,
    ScaleDegree.La,
    ScaleDegree.Ti,
)

# fixed-do letter names, used whenever a degree has to become a real pitch
DEGREE_LETTERS: dict[ScaleDegree, str] = {
    ScaleDegree.Do: 'C',
    ScaleDegree.Re: 'D',
    ScaleDegree.Mi: 'E',
    ScaleDegree.Fa: 'F',
    ScaleDegree.Sol: 'G',
    ScaleDegree.La: 'A',
    ScaleDegree.Ti: 'B',
    ScaleDegree.AltC: 'C',
    ScaleDegree.AltB: 'B',
}

MAJOR_INTERVALS: frozenset[int] = frozenset((0, 2, 4, 5, 7, 9, 11))
MINOR_INTERVALS: frozenset[int] = frozenset((0, 2, 3, 5, 7, 8, 10))

_DEGREE_SYMBOLS: frozenset[str] = frozenset(d.value for d in ScaleDegree)


def toScaleDegree(value: ScaleDegree | str) -> ScaleDegree:
    try:
        return ScaleDegree(value)
    except ValueError:
        raise SolfaEngineException(f'Unknown scale degree: {value!r}') from None


def toAccidental(value: Accidental | str | None) -> Accidental | None:
    if value is None or value == '':
        return None
    try:
        return Accidental(value)
    except ValueError:
        raise SolfaEngineException(f'Unknown accidental: {value!r}') from None


@dataclass(frozen=True)
class KeySignature:
    tonic: ScaleDegree
    mode: Mode = Mode.Major
    accidentals: dict[ScaleDegree, Accidental] = field(default_factory=dict)
    # keys sharing a tonic degree (F and F#, Bb and B, ...) differ only by name
    name: str = 'Custom'

    def toDict(self) -> dict[str, t.Any]:
        return {
            'name': self.name,
            'tonic': self.tonic.value,
            'mode': self.mode.value,
            'accidentals': {d.value: a.value for d, a in self.accidentals.items()},
        }


# name -> (music21 tonic name, solfa tonic)
_KEY_TABLE: dict[str, tuple[str, ScaleDegree]] = {
    'C major': ('C', ScaleDegree.Do),
    'G major': ('G', ScaleDegree.Sol),
    'D major': ('D', ScaleDegree.Re),
    'A major': ('A', ScaleDegree.La),
    'E major': ('E', ScaleDegree.Mi),
    'B major': ('B', ScaleDegree.Ti),
    'F# major': ('F#', ScaleDegree.Fa),
    'F major': ('F', ScaleDegree.Fa),
    'Bb major': ('B-', ScaleDegree.Ti),
    'Eb major': ('E-', ScaleDegree.Mi),
    'Ab major': ('A-', ScaleDegree.La),
    'Db major': ('D-', ScaleDegree.Re),
    'Gb major': ('G-', ScaleDegree.Sol),
}


def _accidentalsFromMusic21(m21Tonic: str) -> dict[ScaleDegree, Accidental]:
    # The altered steps of the key (relative to C major), keyed by whichever
    # steps are also solfa symbols.  Steps that are not (g, a, e) can never be
    # looked up by a note, so they are left out.
    output: dict[ScaleDegree, Accidental] = {}
    m21Key: m21.key.Key = m21.key.Key(m21Tonic, 'major')
    for p in m21Key.alteredPitches:
        step: str = p.step.lower()
        if step not in _DEGREE_SYMBOLS or p.accidental is None:
            continue
        output[ScaleDegree(step)] = Accidental(p.accidental.name)
    return output


KEY_SIGNATURES: dict[str, KeySignature] = {
    name: KeySignature(
        tonic=tonic,
        mode=Mode.Major,
        accidentals=_accidentalsFromMusic21(m21Tonic),
        name=name
    )
    for name, (m21Tonic, tonic) in _KEY_TABLE.items()
}


def music21TonicName(keySignature: KeySignature) -> str | None:
    if keySignature.name not in _KEY_TABLE:
        return None
    return _KEY_TABLE[keySignature.name][0]


def getKeySignature(name: str) -> KeySignature:
    if name not in KEY_SIGNATURES:
        raise SolfaEngineException(f'Unknown key signature: {name!r}')
    return KEY_SIGNATURES[name]


def keySignatureName(keySignature: KeySignature) -> str:
    if keySignature.name in KEY_SIGNATURES:
        return keySignature.name
    return 'Custom'


def degreeIndex(degree: ScaleDegree | str) -> int:
    # -1 for the chromatic aliases
    deg: ScaleDegree = toScaleDegree(degree)
    if deg not in DEGREE_ORDER:
        return -1
    return DEGREE_ORDER.index(deg)


def transpose(degree: ScaleDegree | str, steps: int) -> ScaleDegree:
    deg: ScaleDegree = toScaleDegree(degree)
    idx: int = degreeIndex(deg)
    if idx < 0:
        return deg
    return DEGREE_ORDER[(idx + steps + 7) % 7]


def accidentalFor(degree: ScaleDegree | str, keySignature: KeySignature) -> Accidental | None:
    return keySignature.accidentals.get(toScaleDegree(degree))


def applyAccidentals(note: 'Note', keySignature: KeySignature) -> 'Note':
    accidental: Accidental | None = accidentalFor(note.type, keySignature)
    if accidental is None:
        return note
    return replace(note, accidental=accidental)


def relativeKey(keySignature: KeySignature) -> KeySignature:
    # The accidental map is carried over as-is, even though the relative key
    # of a table key shares its signature anyway.
    if keySignature.mode == Mode.Major:
        return KeySignature(
            tonic=transpose(keySignature.tonic, 5),
            mode=Mode.Minor,
            accidentals=keySignature.accidentals
        )
    return KeySignature(
        tonic=transpose(keySignature.tonic, 2),
        mode=Mode.Major,
        accidentals=keySignature.accidentals
    )


def isNoteInKey(
    note: 'Note',
    keySignature: KeySignature,
    strategy: InKeyStrategy = InKeyStrategy.Legacy
) -> bool:
    noteIndex: int = degreeIndex(note.type)
    if strategy == InKeyStrategy.Legacy:
        tonicIndex: int = degreeIndex(keySignature.tonic)
        interval: int = (noteIndex - tonicIndex + 7) % 7
        intervals: frozenset[int] = (
            MAJOR_INTERVALS if keySignature.mode == Mode.Major else MINOR_INTERVALS
        )
        return interval in intervals

    if noteIndex < 0:
        return False

    expected: Accidental | None = keySignature.accidentals.get(note.type)
    actual: Accidental | None = note.accidental
    if expected == Accidental.Natural:
        expected = None
    if actual == Accidental.Natural:
        actual = None
    return expected == actual


def scaleDegrees(keySignature: KeySignature) -> list[ScaleDegree]:
    tonicIndex: int = degreeIndex(keySignature.tonic)
    return [DEGREE_ORDER[(tonicIndex + i) % 7] for i in range(7)]
