import typing as t
from dataclasses import dataclass, field, replace

from .scale import transpose as transposeDegree
from .notes import Note
from .notes import Duration
from .notes import VoicePart
from .notes import VOICE_PARTS
from .notes import FourTracks
from .notes import TimeSignature
from .notes import beatsPerMeasure
from .notes import newNoteId
from .notes import toVoicePart
from .notes import toDuration


@dataclass(frozen=True)
class Selection:
    # an inclusive measure/beat rectangle
    startMeasure: int = 0
    endMeasure: int = 0
    startBeat: int = 0
    endBeat: int = 0
    selectedParts: frozenset[VoicePart] = frozenset(VOICE_PARTS)

    def __post_init__(self):
        object.__setattr__(
            self, 'selectedParts', frozenset(toVoicePart(p) for p in self.selectedParts)
        )

    @classmethod
    def allParts(
        cls,
        startMeasure: int,
        endMeasure: int,
        startBeat: int = 0,
        endBeat: int = 0
    ) -> 'Selection':
        return cls(startMeasure, endMeasure, startBeat, endBeat, frozenset(VOICE_PARTS))

    def isValid(self) -> bool:
        return (
            0 <= self.startMeasure <= self.endMeasure
            and 0 <= self.startBeat <= self.endBeat
        )

    def toggledPart(self, part: VoicePart | str) -> 'Selection':
        part = toVoicePart(part)
        if part in self.selectedParts:
            return replace(self, selectedParts=self.selectedParts - {part})
        return replace(self, selectedParts=self.selectedParts | {part})

    def toDict(self) -> dict[str, t.Any]:
        return {
            'startMeasure': self.startMeasure,
            'endMeasure': self.endMeasure,
            'startBeat': self.startBeat,
            'endBeat': self.endBeat,
            # keep S/A/T/B order
            'selectedParts': [p.value for p in VOICE_PARTS if p in self.selectedParts],
        }


@dataclass(frozen=True)
class Clipboard:
    notes: FourTracks = field(default_factory=FourTracks.empty)
    startPosition: int = 0


def notesInRange(
    tracks: FourTracks,
    startMeasure: int,
    endMeasure: int,
    timeSignature: TimeSignature | str
) -> FourTracks:
    bpm: int = beatsPerMeasure(timeSignature)
    startPosition: int = startMeasure * bpm
    endPosition: int = (endMeasure + 1) * bpm
    return FourTracks(*(
        [n for n in notes if startPosition <= n.position < endPosition]
        for notes in tracks
    ))


def copyToClipboard(
    tracks: FourTracks,
    selection: Selection,
    timeSignature: TimeSignature | str
) -> Clipboard:
    return Clipboard(
        notes=notesInRange(tracks, selection.startMeasure, selection.endMeasure, timeSignature),
        startPosition=selection.startMeasure * beatsPerMeasure(timeSignature)
    )


def pasteFromClipboard(
    tracks: FourTracks,
    clipboard: Clipboard,
    targetMeasure: int,
    timeSignature: TimeSignature | str
) -> FourTracks:
    # Appends without sorting or de-duplicating; that is up to the caller.
    # Pasted notes are new notes, so they get new ids.
    offset: int = targetMeasure * beatsPerMeasure(timeSignature) - clipboard.startPosition

    def pasteNote(note: Note) -> Note:
        return replace(note, position=note.position + offset, noteId=newNoteId())

    return FourTracks(*(
        [*notes, *(pasteNote(n) for n in pasted)]
        for notes, pasted in zip(tracks, clipboard.notes)
    ))


def _selectedIds(
    tracks: FourTracks,
    selection: Selection,
    timeSignature: TimeSignature | str
) -> list[set[str]]:
    selected: FourTracks = notesInRange(
        tracks, selection.startMeasure, selection.endMeasure, timeSignature
    )
    return [{n.noteId for n in notes} for notes in selected]


class BatchOperations:
    @staticmethod
    def _mapSelected(
        tracks: FourTracks,
        selection: Selection,
        timeSignature: TimeSignature | str,
        func: t.Callable[[Note], Note]
    ) -> FourTracks:
        selectedIds: list[set[str]] = _selectedIds(tracks, selection, timeSignature)
        return FourTracks(*(
            [func(n) if n.noteId in ids else n for n in notes]
            for notes, ids in zip(tracks, selectedIds)
        ))

    @staticmethod
    def transpose(
        tracks: FourTracks,
        selection: Selection,
        semitones: int,
        timeSignature: TimeSignature | str
    ) -> FourTracks:
        # 'semitones' is historical: the notes move by whole scale steps
        return BatchOperations._mapSelected(
            tracks, selection, timeSignature,
            lambda n: replace(n, type=transposeDegree(n.type, semitones))
        )

    @staticmethod
    def changeDuration(
        tracks: FourTracks,
        selection: Selection,
        newDuration: Duration | str,
        timeSignature: TimeSignature | str
    ) -> FourTracks:
        # an unknown duration fails even when nothing is selected
        duration: Duration = toDuration(newDuration)
        return BatchOperations._mapSelected(
            tracks, selection, timeSignature,
            lambda n: replace(n, duration=duration)
        )


def isNoteInSelection(
    note: Note,
    selection: Selection,
    timeSignature: TimeSignature | str
) -> bool:
    # whole beats only: subPosition plays no part
    bpm: int = beatsPerMeasure(timeSignature)
    noteMeasure: int = note.position // bpm
    noteBeat: int = note.position % bpm
    return (
        selection.startMeasure <= noteMeasure <= selection.endMeasure
        and selection.startBeat <= noteBeat <= selection.endBeat
    )


def deleteSelection(
    tracks: FourTracks,
    selection: Selection,
    timeSignature: TimeSignature | str
) -> FourTracks:
    return FourTracks(*(
        [n for n in notes if not isNoteInSelection(n, selection, timeSignature)]
        for notes in tracks
    ))
