import typing as t
import uuid
from dataclasses import dataclass, field, replace
from collections.abc import Sequence, Iterator

from .scale import MyStrEnum
from .scale import SolfaEngineException
from .scale import ScaleDegree
from .scale import Accidental
from .scale import toScaleDegree
from .scale import toAccidental

if t.TYPE_CHECKING:
    from .harmony import ChordSymbol


class VoicePart (MyStrEnum):
    Soprano = 'S'
    Alto = 'A'
    Tenor = 'T'
    Bass = 'B'


VOICE_PARTS: tuple[VoicePart, ...] = (
    VoicePart.Soprano,
    VoicePart.Alto,
    VoicePart.Tenor,
    VoicePart.Bass,
)

VOICE_PART_LABELS: dict[VoicePart, str] = {
    VoicePart.Soprano: 'Soprano',
    VoicePart.Alto: 'Alto',
    VoicePart.Tenor: 'Tenor',
    VoicePart.Bass: 'Bass',
}


class Duration (MyStrEnum):
    Beat = 'beat'
    Half = 'half'
    Quarter = 'quarter'
    Eighth = 'eighth'
    Sixteenth = 'sixteenth'


# in beats: sol-fa durations are fractions of the beat, not of a whole note
DURATION_BEATS: dict[Duration, float] = {
    Duration.Beat: 1.0,
    Duration.Half: 0.5,
    Duration.Quarter: 0.25,
    Duration.Eighth: 0.125,
    Duration.Sixteenth: 0.0625,
}


class Subdivision (MyStrEnum):
    NoDot = ''
    Dot = '.'
    DoubleDot = '..'
    TripleDot = '...'


SUBDIVISION_MULTIPLIERS: dict[Subdivision, float] = {
    Subdivision.NoDot: 1.0,
    Subdivision.Dot: 1.5,
    Subdivision.DoubleDot: 1.75,
    Subdivision.TripleDot: 1.875,
}


class Dynamic (MyStrEnum):
    PPP = 'ppp'
    PP = 'pp'
    P = 'p'
    MP = 'mp'
    MF = 'mf'
    F = 'f'
    FF = 'ff'
    FFF = 'fff'
    SFZ = 'sfz'
    FP = 'fp'


class Articulation (MyStrEnum):
    Staccato = 'staccato'
    Legato = 'legato'
    Accent = 'accent'
    Tenuto = 'tenuto'
    Marcato = 'marcato'


class TimeSignature (MyStrEnum):
    TwoFour = '2/4'
    ThreeFour = '3/4'
    FourFour = '4/4'
    SixEight = '6/8'


# Grid separators drawn before each beat segment of a measure.  Every
# segment holds SUB_POSITIONS boxes.
BAR_PATTERNS: dict[TimeSignature, tuple[str, ...]] = {
    TimeSignature.TwoFour: ('|', ':'),
    TimeSignature.ThreeFour: ('|', ':', ':'),
    TimeSignature.FourFour: ('|', ':', '\\', ':'),
    TimeSignature.SixEight: ('|', ':', ':', '\\', ':', ':'),
}

SUB_POSITIONS: int = 4
MIN_OCTAVE: int = -2
MAX_OCTAVE: int = 2


def newNoteId() -> str:
    return str(uuid.uuid4())


def _toEnum(enumClass: t.Any, value: t.Any, what: str) -> t.Any:
    if value is None:
        return None
    try:
        return enumClass(value)
    except ValueError:
        raise SolfaEngineException(f'Unknown {what}: {value!r}') from None


def toVoicePart(value: VoicePart | str) -> VoicePart:
    return _toEnum(VoicePart, value, 'voice part')


def toTimeSignature(value: TimeSignature | str) -> TimeSignature:
    return _toEnum(TimeSignature, value, 'time signature')


def toDuration(value: Duration | str) -> Duration:
    return _toEnum(Duration, value, 'duration')


def beatsPerMeasure(timeSignature: TimeSignature | str) -> int:
    ts: TimeSignature = toTimeSignature(timeSignature)
    return int(ts.value.split('/')[0])


def beatUnitQuarterLength(timeSignature: TimeSignature | str) -> float:
    # a beat of 6/8 is an eighth note, everything else here counts quarters
    ts: TimeSignature = toTimeSignature(timeSignature)
    return 4.0 / int(ts.value.split('/')[1])


def measureOfPosition(position: int, timeSignature: TimeSignature | str) -> int:
    return position // beatsPerMeasure(timeSignature)


def beatOfPosition(position: int, timeSignature: TimeSignature | str) -> int:
    return position % beatsPerMeasure(timeSignature)


def gridToPosition(measure: int, segment: int, timeSignature: TimeSignature | str) -> int:
    return measure * beatsPerMeasure(timeSignature) + segment


def positionToGrid(position: int, timeSignature: TimeSignature | str) -> tuple[int, int]:
    return measureOfPosition(position, timeSignature), beatOfPosition(position, timeSignature)


def clampOctave(octave: int) -> int:
    return max(MIN_OCTAVE, min(MAX_OCTAVE, octave))


def octaveMarkers(octave: int) -> tuple[bool, bool, int]:
    # returns (isHighOctave, isLowOctave, octaveMarks)
    octave = clampOctave(octave)
    if octave > 0:
        return True, False, octave
    if octave < 0:
        return False, True, -octave
    return False, False, 1


@dataclass(frozen=True)
class Note:
    type: ScaleDegree
    duration: Duration = Duration.Beat
    subdivision: Subdivision = Subdivision.NoDot
    isHighOctave: bool = False
    isLowOctave: bool = False
    position: int = 0
    subPosition: int = 0
    accidental: Accidental | None = None
    dynamic: Dynamic | None = None
    articulation: Articulation | None = None
    octaveMarks: int = 1
    noteId: str = field(default_factory=newNoteId, compare=False)

    def __post_init__(self):
        # accept plain strings for all the enumerated fields
        object.__setattr__(self, 'type', toScaleDegree(self.type))
        object.__setattr__(self, 'duration', _toEnum(Duration, self.duration, 'duration'))
        object.__setattr__(
            self, 'subdivision', _toEnum(Subdivision, self.subdivision, 'subdivision')
        )
        object.__setattr__(self, 'accidental', toAccidental(self.accidental))
        object.__setattr__(self, 'dynamic', _toEnum(Dynamic, self.dynamic, 'dynamic'))
        object.__setattr__(
            self, 'articulation', _toEnum(Articulation, self.articulation, 'articulation')
        )

        if self.isHighOctave and self.isLowOctave:
            raise SolfaEngineException('A note cannot be both high and low octave')
        if not 0 <= self.subPosition < SUB_POSITIONS:
            raise SolfaEngineException(
                f'subPosition must be 0..{SUB_POSITIONS - 1}, got {self.subPosition}'
            )
        if self.position < 0:
            raise SolfaEngineException(f'position must be non-negative, got {self.position}')
        if self.octaveMarks not in (1, 2):
            raise SolfaEngineException(f'octaveMarks must be 1 or 2, got {self.octaveMarks}')

    @property
    def octave(self) -> int:
        if self.isHighOctave:
            return self.octaveMarks
        if self.isLowOctave:
            return -self.octaveMarks
        return 0

    def withOctave(self, octave: int) -> 'Note':
        isHigh, isLow, marks = octaveMarkers(octave)
        return replace(self, isHighOctave=isHigh, isLowOctave=isLow, octaveMarks=marks)

    @property
    def slot(self) -> tuple[int, int]:
        return self.position, self.subPosition

    def toDict(self) -> dict[str, t.Any]:
        return {
            'id': self.noteId,
            'type': self.type.value,
            'duration': self.duration.value,
            'subdivision': self.subdivision.value,
            'isHighOctave': self.isHighOctave,
            'isLowOctave': self.isLowOctave,
            'octaveMarks': self.octaveMarks,
            'position': self.position,
            'subPosition': self.subPosition,
            'accidental': self.accidental.value if self.accidental else None,
            'dynamic': self.dynamic.value if self.dynamic else None,
            'articulation': self.articulation.value if self.articulation else None,
        }

    @classmethod
    def fromDict(cls, data: dict[str, t.Any]) -> 'Note':
        kwargs: dict[str, t.Any] = {
            'type': data['type'],
            'duration': data.get('duration', Duration.Beat),
            'subdivision': data.get('subdivision', Subdivision.NoDot),
            'isHighOctave': bool(data.get('isHighOctave', False)),
            'isLowOctave': bool(data.get('isLowOctave', False)),
            'octaveMarks': int(data.get('octaveMarks', 1)),
            'position': int(data.get('position', 0)),
            'subPosition': int(data.get('subPosition', 0)),
            'accidental': data.get('accidental'),
            'dynamic': data.get('dynamic'),
            'articulation': data.get('articulation'),
        }
        if data.get('id'):
            kwargs['noteId'] = data['id']
        return cls(**kwargs)


def _slotKey(note: Note) -> tuple[int, int]:
    return note.position, note.subPosition


def addNote(track: t.Sequence[Note], note: Note) -> tuple[Note, ...]:
    # sorted() is stable, so notes sharing a slot keep their insertion order
    return tuple(sorted([*track, note], key=_slotKey))


def removeNote(track: t.Sequence[Note], position: int, subPosition: int) -> tuple[Note, ...]:
    return tuple(
        n for n in track
        if n.position != position or n.subPosition != subPosition
    )


def findNoteAt(track: t.Sequence[Note], position: int, subPosition: int) -> Note | None:
    for n in track:
        if n.position == position and n.subPosition == subPosition:
            return n
    return None


def replaceNote(track: t.Sequence[Note], note: Note) -> tuple[Note, ...]:
    # keeps at most one note in the note's slot
    return addNote(removeNote(track, note.position, note.subPosition), note)


class FourTracks(Sequence):
    # read-only snapshot of the four voice part tracks
    def __init__(
        self,
        soprano: t.Iterable[Note] = (),
        alto: t.Iterable[Note] = (),
        tenor: t.Iterable[Note] = (),
        bass: t.Iterable[Note] = ()
    ):
        self._soprano: tuple[Note, ...] = tuple(soprano)
        self._alto: tuple[Note, ...] = tuple(alto)
        self._tenor: tuple[Note, ...] = tuple(tenor)
        self._bass: tuple[Note, ...] = tuple(bass)

    @classmethod
    def empty(cls) -> 'FourTracks':
        return cls()

    @classmethod
    def fromParts(cls, parts: t.Mapping[VoicePart | str, t.Iterable[Note]]) -> 'FourTracks':
        byPart: dict[VoicePart, t.Iterable[Note]] = {
            toVoicePart(k): v for k, v in parts.items()
        }
        return cls(
            soprano=byPart.get(VoicePart.Soprano, ()),
            alto=byPart.get(VoicePart.Alto, ()),
            tenor=byPart.get(VoicePart.Tenor, ()),
            bass=byPart.get(VoicePart.Bass, ())
        )

    @property
    def soprano(self) -> tuple[Note, ...]:
        return self._soprano

    @property
    def alto(self) -> tuple[Note, ...]:
        return self._alto

    @property
    def tenor(self) -> tuple[Note, ...]:
        return self._tenor

    @property
    def bass(self) -> tuple[Note, ...]:
        return self._bass

    def __len__(self) -> int:
        return 4

    def __getitem__(self, idx: int | str | slice) -> t.Any:  # tuple[Note, ...]
        if idx in (0, VoicePart.Soprano):
            return self.soprano
        if idx in (1, VoicePart.Alto):
            return self.alto
        if idx in (2, VoicePart.Tenor):
            return self.tenor
        if idx in (3, VoicePart.Bass):
            return self.bass

        # we don't support slicing (or out-of-range idx)
        raise IndexError(idx)

    def __eq__(self, other) -> bool:
        if not isinstance(other, FourTracks):
            return False
        return tuple(self) == tuple(other)

    def __repr__(self) -> str:
        counts: str = ', '.join(
            f'{part.value}={len(notes)}' for part, notes in self.items()
        )
        return f'<FourTracks {counts}>'

    def items(self) -> Iterator[tuple[VoicePart, tuple[Note, ...]]]:
        return zip(VOICE_PARTS, self)

    def withTrack(self, part: VoicePart | str, notes: t.Iterable[Note]) -> 'FourTracks':
        part = toVoicePart(part)
        parts: dict[VoicePart, t.Iterable[Note]] = dict(self.items())
        parts[part] = tuple(notes)
        return FourTracks.fromParts(parts)

    def noteCount(self) -> int:
        return sum(len(notes) for notes in self)

    def toDict(self) -> dict[str, list[dict[str, t.Any]]]:
        return {part.value: [n.toDict() for n in notes] for part, notes in self.items()}

    @classmethod
    def fromDict(cls, data: dict[str, t.Any]) -> 'FourTracks':
        return cls.fromParts({
            part: [Note.fromDict(n) for n in notes] for part, notes in data.items()
        })


# Pseudo-tracks (Chord, Lyrics, Markers) are keyed by grid address rather
# than by Note: 'measure-segment' or 'measure-segment-box'.
def pseudoTrackKey(measure: int, segment: int, box: int | None = None) -> str:
    if box is None:
        return f'{measure}-{segment}'
    return f'{measure}-{segment}-{box}'


def parsePseudoTrackKey(key: str) -> tuple[int, ...]:
    try:
        return tuple(int(s) for s in key.split('-'))
    except ValueError:
        raise SolfaEngineException(f'Malformed pseudo-track key: {key!r}') from None


@dataclass(frozen=True)
class DynamicMarking:
    position: int
    dynamic: Dynamic
    voicePart: VoicePart | None = None  # None applies to all voices
    id: str = field(default_factory=newNoteId)

    def __post_init__(self):
        object.__setattr__(self, 'dynamic', _toEnum(Dynamic, self.dynamic, 'dynamic'))
        object.__setattr__(self, 'voicePart', _toEnum(VoicePart, self.voicePart, 'voice part'))

    def appliesTo(self, part: VoicePart) -> bool:
        return self.voicePart is None or self.voicePart == part

    def toDict(self) -> dict[str, t.Any]:
        return {
            'id': self.id,
            'position': self.position,
            'dynamic': self.dynamic.value,
            'voicePart': self.voicePart.value if self.voicePart else None,
        }


@dataclass(frozen=True)
class Measure:
    index: int
    notes: FourTracks
    marker: str | None = None
    dynamics: tuple[DynamicMarking, ...] = ()
    id: str = field(default_factory=newNoteId, compare=False)


@dataclass(frozen=True)
class Composition:
    name: str
    timeSignature: TimeSignature
    keySignatureName: str
    tempo: int
    measureCount: int
    tracks: FourTracks
    markers: dict[str, str] = field(default_factory=dict)
    lyrics: dict[str, str] = field(default_factory=dict)
    chords: dict[str, 'ChordSymbol'] = field(default_factory=dict)
    dynamics: tuple[DynamicMarking, ...] = ()
    id: str = field(default_factory=newNoteId, compare=False)

    def __post_init__(self):
        object.__setattr__(self, 'timeSignature', toTimeSignature(self.timeSignature))

    def toMeasures(self) -> list[Measure]:
        bpm: int = beatsPerMeasure(self.timeSignature)
        lastMeasure: int = self.measureCount - 1
        for notes in self.tracks:
            for n in notes:
                lastMeasure = max(lastMeasure, n.position // bpm)

        measures: list[Measure] = []
        for mIdx in range(lastMeasure + 1):
            start: int = mIdx * bpm
            end: int = start + bpm
            perPart: dict[VoicePart, list[Note]] = {
                part: [n for n in notes if start <= n.position < end]
                for part, notes in self.tracks.items()
            }
            marker: str | None = None
            for key, text in self.markers.items():
                if parsePseudoTrackKey(key)[0] == mIdx:
                    marker = text
                    break
            measures.append(Measure(
                index=mIdx,
                notes=FourTracks.fromParts(perPart),
                marker=marker,
                dynamics=tuple(d for d in self.dynamics if start <= d.position < end)
            ))
        return measures
