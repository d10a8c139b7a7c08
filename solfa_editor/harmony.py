import typing as t
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from itertools import combinations

import music21 as m21

from .scale import MyStrEnum
from .scale import SolfaEngineException
from .scale import ScaleDegree
from .scale import Mode
from .scale import DEGREE_ORDER
from .scale import DEGREE_LETTERS
from .scale import degreeIndex
from .scale import toScaleDegree
from .scale import transpose
from .notes import Note
from .notes import VoicePart
from .notes import VOICE_PARTS
from .notes import clampOctave
from .notes import newNoteId
from .notes import octaveMarkers


class ChordType (MyStrEnum):
    Major = 'major'
    Minor = 'minor'
    Diminished = 'diminished'
    Augmented = 'augmented'
    Dominant7 = 'dominant7'
    Major7 = 'major7'
    Minor7 = 'minor7'


class Tension (MyStrEnum):
    Low = 'low'
    Medium = 'medium'
    High = 'high'


# offsets are in scale steps (not semitones) above the root
CHORD_INTERVALS: dict[ChordType, tuple[int, ...]] = {
    ChordType.Major: (0, 2, 4),
    ChordType.Minor: (0, 1, 4),
    ChordType.Diminished: (0, 1, 3),
    ChordType.Augmented: (0, 2, 5),
    ChordType.Dominant7: (0, 2, 4, 6),
    ChordType.Major7: (0, 2, 4, 5),
    ChordType.Minor7: (0, 1, 4, 6),
}

CHORD_TYPE_SYMBOLS: dict[ChordType, str] = {
    ChordType.Major: '',
    ChordType.Minor: 'm',
    ChordType.Diminished: '°',
    ChordType.Augmented: '+',
    ChordType.Dominant7: '7',
    ChordType.Major7: 'maj7',
    ChordType.Minor7: 'm7',
}

# octave register of each voice relative to the soprano, when harmonizing
HARMONY_OCTAVE_OFFSETS: dict[VoicePart, int] = {
    VoicePart.Alto: -1,
    VoicePart.Tenor: -1,
    VoicePart.Bass: -2,
}

SOPRANO_VOICING_OCTAVE: int = 4

# triad quality on each step of the key, counted from the tonic
DIATONIC_QUALITIES: dict[Mode, tuple[ChordType, ...]] = {
    Mode.Major: (
        ChordType.Major, ChordType.Minor, ChordType.Minor, ChordType.Major,
        ChordType.Major, ChordType.Minor, ChordType.Diminished
    ),
    Mode.Minor: (
        ChordType.Minor, ChordType.Diminished, ChordType.Major, ChordType.Minor,
        ChordType.Minor, ChordType.Major, ChordType.Major
    ),
}

# 0 is restful (tonic function), 2 is most tense (dominant function)
STEP_TENSION: tuple[int, ...] = (0, 1, 1, 1, 2, 0, 2)
TENSION_LEVELS: dict[Tension, int] = {
    Tension.Low: 0,
    Tension.Medium: 1,
    Tension.High: 2,
}


def toChordType(value: ChordType | str) -> ChordType:
    try:
        return ChordType(value)
    except ValueError:
        raise SolfaEngineException(f'Unknown chord type: {value!r}') from None


@dataclass(frozen=True)
class Modulation:
    fromDegree: ScaleDegree
    toDegree: ScaleDegree

    def __post_init__(self):
        object.__setattr__(self, 'fromDegree', toScaleDegree(self.fromDegree))
        object.__setattr__(self, 'toDegree', toScaleDegree(self.toDegree))
        for degree in (self.fromDegree, self.toDegree):
            if degreeIndex(degree) < 0:
                raise SolfaEngineException(
                    f'Cannot modulate to or from chromatic degree {degree.value!r}'
                )

    @property
    def steps(self) -> int:
        return degreeIndex(self.toDegree) - degreeIndex(self.fromDegree)


@dataclass(frozen=True)
class ChordProgression:
    type: ChordType
    root: ScaleDegree
    inversion: int = 0
    secondaryDominant: bool = False
    modulation: Modulation | None = None

    def __post_init__(self):
        object.__setattr__(self, 'type', toChordType(self.type))
        object.__setattr__(self, 'root', toScaleDegree(self.root))

    def toDict(self) -> dict[str, t.Any]:
        output: dict[str, t.Any] = {
            'type': self.type.value,
            'root': self.root.value,
            'inversion': self.inversion,
            'secondaryDominant': self.secondaryDominant,
        }
        if self.modulation is not None:
            output['modulation'] = {
                'from': self.modulation.fromDegree.value,
                'to': self.modulation.toDegree.value,
            }
        return output


@dataclass(frozen=True)
class ChordSymbol:
    # an entry in the Chord pseudo-track
    root: ScaleDegree
    type: ChordType = ChordType.Major

    def __post_init__(self):
        object.__setattr__(self, 'type', toChordType(self.type))
        object.__setattr__(self, 'root', toScaleDegree(self.root))

    @property
    def symbol(self) -> str:
        return DEGREE_LETTERS[self.root] + CHORD_TYPE_SYMBOLS[self.type]

    def toProgression(self) -> ChordProgression:
        return ChordProgression(type=self.type, root=self.root)

    def toDict(self) -> dict[str, str]:
        return {'root': self.root.value, 'type': self.type.value, 'symbol': self.symbol}


COMMON_PROGRESSIONS: tuple[tuple[ChordProgression, ...], ...] = (
    # I - IV - V - I
    (
        ChordProgression(ChordType.Major, ScaleDegree.Do),
        ChordProgression(ChordType.Major, ScaleDegree.Fa),
        ChordProgression(ChordType.Major, ScaleDegree.Sol),
        ChordProgression(ChordType.Major, ScaleDegree.Do),
    ),
    # I - vi - IV - V
    (
        ChordProgression(ChordType.Major, ScaleDegree.Do),
        ChordProgression(ChordType.Minor, ScaleDegree.La),
        ChordProgression(ChordType.Major, ScaleDegree.Fa),
        ChordProgression(ChordType.Major, ScaleDegree.Sol),
    ),
    # ii - V - I
    (
        ChordProgression(ChordType.Minor, ScaleDegree.Re),
        ChordProgression(ChordType.Major, ScaleDegree.Sol),
        ChordProgression(ChordType.Major, ScaleDegree.Do),
    ),
)


def chordNotes(chord: ChordProgression) -> dict[VoicePart, ScaleDegree]:
    rootIndex: int = degreeIndex(chord.root)
    if rootIndex < 0:
        raise SolfaEngineException(
            f'Cannot build a chord on chromatic degree {chord.root.value!r}'
        )

    intervals: tuple[int, ...] = CHORD_INTERVALS[chord.type]
    notes: list[ScaleDegree] = [DEGREE_ORDER[(rootIndex + i) % 7] for i in intervals]
    return {
        VoicePart.Soprano: notes[0],
        VoicePart.Alto: notes[1],
        VoicePart.Tenor: notes[2],
        # for triads, double the root in the bass
        VoicePart.Bass: notes[3] if len(notes) > 3 else notes[0],
    }


def realizeVoicing(chord: ChordProgression) -> dict[VoicePart, m21.pitch.Pitch]:
    # Close voicing, top down: soprano in octave 4, every lower voice on the
    # nearest pitch strictly below the voice above it.  An inverted chord puts
    # its third (or fifth) in the bass.
    degrees: dict[VoicePart, ScaleDegree] = chordNotes(chord)
    if chord.inversion:
        members: list[ScaleDegree] = [
            DEGREE_ORDER[(degreeIndex(chord.root) + i) % 7]
            for i in CHORD_INTERVALS[chord.type]
        ]
        degrees[VoicePart.Bass] = members[chord.inversion % len(members)]

    output: dict[VoicePart, m21.pitch.Pitch] = {}
    above: m21.pitch.Pitch | None = None
    for part in VOICE_PARTS:
        if above is None:
            p = m21.pitch.Pitch(name=DEGREE_LETTERS[degrees[part]], octave=SOPRANO_VOICING_OCTAVE)
        else:
            p = m21.pitch.Pitch(name=DEGREE_LETTERS[degrees[part]], octave=above.octave)
            if p.ps >= above.ps:
                p.octave = t.cast(int, above.octave) - 1
        output[part] = p
        above = p
    return output


def hasSpacingProblem(voicing: t.Mapping[VoicePart, m21.pitch.Pitch]) -> bool:
    for upper, lower in zip(VOICE_PARTS, VOICE_PARTS[1:]):
        distance: float = voicing[upper].ps - voicing[lower].ps
        if distance < 0:
            # crossed voices
            return True
        if lower != VoicePart.Bass and distance > 12:
            # upper voices more than an octave apart (tenor/bass may be wider)
            return True
    return False


def _hasParallelMotion(
    prevChord: ChordProgression,
    nextChord: ChordProgression,
    semitoneClass: int
) -> bool:
    prevVoicing: dict[VoicePart, m21.pitch.Pitch] = realizeVoicing(prevChord)
    nextVoicing: dict[VoicePart, m21.pitch.Pitch] = realizeVoicing(nextChord)
    for upper, lower in combinations(VOICE_PARTS, 2):
        prevUpper: int = int(prevVoicing[upper].ps)
        prevLower: int = int(prevVoicing[lower].ps)
        nextUpper: int = int(nextVoicing[upper].ps)
        nextLower: int = int(nextVoicing[lower].ps)

        if prevUpper == nextUpper or prevLower == nextLower:
            # oblique (or no) motion
            continue
        if (nextUpper > prevUpper) != (nextLower > prevLower):
            # contrary motion
            continue
        if (abs(prevUpper - prevLower) % 12 == semitoneClass
                and abs(nextUpper - nextLower) % 12 == semitoneClass):
            return True
    return False


@dataclass(frozen=True)
class VoiceLeadingRule:
    name: str
    # True means the pair of chords is fine
    check: t.Callable[[ChordProgression, ChordProgression], bool]
    message: str


@dataclass(frozen=True)
class VoiceLeadingResult:
    valid: bool
    issues: list[str] = field(default_factory=list)


STRICT_RULES: tuple[VoiceLeadingRule, ...] = (
    VoiceLeadingRule(
        name='Parallel Fifths',
        check=lambda prev, nxt: not _hasParallelMotion(prev, nxt, 7),
        message='Avoid parallel fifths between voices'
    ),
    VoiceLeadingRule(
        name='Parallel Octaves',
        check=lambda prev, nxt: not _hasParallelMotion(prev, nxt, 0),
        message='Avoid parallel octaves between voices'
    ),
    VoiceLeadingRule(
        name='Voice Spacing',
        check=lambda prev, nxt: not (
            hasSpacingProblem(realizeVoicing(prev)) or hasSpacingProblem(realizeVoicing(nxt))
        ),
        message='Maintain proper voice spacing'
    ),
)

# same rule names, but nothing is ever reported
PERMISSIVE_RULES: tuple[VoiceLeadingRule, ...] = tuple(
    replace(rule, check=lambda prev, nxt: True) for rule in STRICT_RULES
)


def checkVoiceLeading(
    prevChord: ChordProgression,
    nextChord: ChordProgression,
    rules: t.Sequence[VoiceLeadingRule] = STRICT_RULES
) -> VoiceLeadingResult:
    issues: list[str] = []
    for rule in rules:
        if not rule.check(prevChord, nextChord):
            issues.append(rule.message)

    return VoiceLeadingResult(valid=not issues, issues=issues)


@dataclass(frozen=True)
class ChordContext:
    key: ScaleDegree
    mode: Mode = Mode.Major
    previousChords: tuple[ChordProgression, ...] = ()
    desiredTension: Tension | None = None
    melody: ScaleDegree | None = None  # if set, candidates must contain it


class ChordSuggestionStrategy(ABC):
    @abstractmethod
    def suggest(
        self,
        currentChord: ChordProgression,
        context: ChordContext
    ) -> list[ChordProgression]:
        raise NotImplementedError()


class NoSuggestions(ChordSuggestionStrategy):
    def suggest(
        self,
        currentChord: ChordProgression,
        context: ChordContext
    ) -> list[ChordProgression]:
        return []


class DiatonicSuggestions(ChordSuggestionStrategy):
    '''
    Ranks the diatonic triads of the context key as successors of currentChord.

    Ordering, best first: fewest voice-leading issues, then candidates that
    continue one of the COMMON_PROGRESSIONS (transposed to the key), then
    closeness to the desired tension, then scale step.
    '''
    def __init__(self, rules: t.Sequence[VoiceLeadingRule] = STRICT_RULES):
        self.rules: tuple[VoiceLeadingRule, ...] = tuple(rules)

    @staticmethod
    def diatonicTriads(key: ScaleDegree, mode: Mode) -> list[ChordProgression]:
        return [
            ChordProgression(type=quality, root=transpose(key, step))
            for step, quality in enumerate(DIATONIC_QUALITIES[mode])
        ]

    @staticmethod
    def continuesCommonProgression(
        currentChord: ChordProgression,
        candidate: ChordProgression,
        key: ScaleDegree
    ) -> bool:
        keySteps: int = degreeIndex(key)
        for progression in COMMON_PROGRESSIONS:
            inKey: list[ChordProgression] = [
                replace(c, root=transpose(c.root, keySteps)) for c in progression
            ]
            for a, b in zip(inKey, inKey[1:]):
                if (a.root, a.type) == (currentChord.root, currentChord.type) \
                        and (b.root, b.type) == (candidate.root, candidate.type):
                    return True
        return False

    def suggest(
        self,
        currentChord: ChordProgression,
        context: ChordContext
    ) -> list[ChordProgression]:
        candidates: list[ChordProgression] = self.diatonicTriads(context.key, context.mode)
        if context.melody is not None:
            candidates = [
                c for c in candidates
                if context.melody in chordNotes(c).values()
            ]

        desiredLevel: int | None = None
        if context.desiredTension is not None:
            desiredLevel = TENSION_LEVELS[context.desiredTension]

        def rank(candidate: ChordProgression) -> tuple[int, int, int, int]:
            step: int = (degreeIndex(candidate.root) - degreeIndex(context.key) + 7) % 7
            issues: int = len(checkVoiceLeading(currentChord, candidate, self.rules).issues)
            follows: int = 0 if self.continuesCommonProgression(
                currentChord, candidate, context.key
            ) else 1
            tensionDistance: int = 0
            if desiredLevel is not None:
                tensionDistance = abs(STEP_TENSION[step] - desiredLevel)
            return issues, follows, tensionDistance, step

        return sorted(candidates, key=rank)


def suggestNextChord(
    currentChord: ChordProgression,
    context: ChordContext,
    strategy: ChordSuggestionStrategy | None = None
) -> list[ChordProgression]:
    if strategy is None:
        strategy = NoSuggestions()
    return strategy.suggest(currentChord, context)


@dataclass(frozen=True)
class ModulationRequest:
    fromDegree: ScaleDegree
    toDegree: ScaleDegree
    pivotChord: ChordProgression | None = None


def applyModulation(
    progression: t.Sequence[ChordProgression],
    modulation: ModulationRequest
) -> list[ChordProgression]:
    # The pivot chord belongs to both keys: it is tagged with the modulation,
    # and every chord after it moves to the new key.  Without a pivot the whole
    # progression moves, and the first chord carries the tag.
    record: Modulation = Modulation(modulation.fromDegree, modulation.toDegree)
    steps: int = record.steps
    output: list[ChordProgression] = list(progression)

    if modulation.pivotChord is None:
        output = [replace(c, root=transpose(c.root, steps)) for c in output]
        if output:
            output[0] = replace(output[0], modulation=record)
        return output

    if modulation.pivotChord not in output:
        return output

    pivotIdx: int = output.index(modulation.pivotChord)
    output[pivotIdx] = replace(output[pivotIdx], modulation=record)
    for i in range(pivotIdx + 1, len(output)):
        output[i] = replace(output[i], root=transpose(output[i].root, steps))
    return output


@dataclass(frozen=True)
class Harmonization:
    chord: ChordProgression
    notes: dict[VoicePart, Note]


def harmonize(
    sopranoNote: Note,
    previousChord: ChordProgression | None = None,
    rules: t.Sequence[VoiceLeadingRule] = PERMISSIVE_RULES,
    strategy: ChordSuggestionStrategy | None = None,
    context: ChordContext | None = None
) -> Harmonization | None:
    if degreeIndex(sopranoNote.type) < 0:
        # no chord can be rooted on a chromatic alias
        return None

    chord: ChordProgression = ChordProgression(type=ChordType.Major, root=sopranoNote.type)

    if previousChord is not None:
        check: VoiceLeadingResult = checkVoiceLeading(previousChord, chord, rules)
        if not check.valid:
            if context is None:
                context = ChordContext(
                    key=sopranoNote.type,
                    previousChords=(previousChord,)
                )
            suggestions: list[ChordProgression] = suggestNextChord(
                previousChord, context, strategy
            )
            if suggestions:
                chord = replace(
                    chord,
                    type=suggestions[0].type,
                    root=suggestions[0].root,
                    inversion=suggestions[0].inversion
                )

    degrees: dict[VoicePart, ScaleDegree] = chordNotes(chord)
    notes: dict[VoicePart, Note] = {}
    for part, octaveOffset in HARMONY_OCTAVE_OFFSETS.items():
        isHigh, isLow, marks = octaveMarkers(clampOctave(sopranoNote.octave + octaveOffset))
        notes[part] = replace(
            sopranoNote,
            type=degrees[part],
            accidental=None,
            isHighOctave=isHigh,
            isLowOctave=isLow,
            octaveMarks=marks,
            noteId=newNoteId()
        )

    return Harmonization(chord=chord, notes=notes)
