import typing as t
from dataclasses import dataclass, replace

import music21 as m21

from .scale import MyStrEnum
from .scale import SolfaEngineException
from .scale import ScaleDegree
from .scale import Accidental
from .scale import KeySignature
from .scale import InKeyStrategy
from .scale import getKeySignature
from .scale import keySignatureName
from .scale import applyAccidentals
from .scale import isNoteInKey
from .scale import toScaleDegree
from .notes import Note
from .notes import Duration
from .notes import Subdivision
from .notes import Dynamic
from .notes import Articulation
from .notes import VoicePart
from .notes import VOICE_PARTS
from .notes import TimeSignature
from .notes import FourTracks
from .notes import DynamicMarking
from .notes import Composition
from .notes import BAR_PATTERNS
from .notes import toVoicePart
from .notes import toTimeSignature
from .notes import positionToGrid
from .notes import beatsPerMeasure
from .notes import pseudoTrackKey
from .notes import findNoteAt
from .notes import removeNote
from .notes import replaceNote
from .harmony import ChordType
from .harmony import ChordSymbol
from .harmony import ChordProgression
from .harmony import ChordContext
from .harmony import ChordSuggestionStrategy
from .harmony import NoSuggestions
from .harmony import DiatonicSuggestions
from .harmony import VoiceLeadingRule
from .harmony import STRICT_RULES
from .harmony import PERMISSIVE_RULES
from .harmony import Harmonization
from .harmony import harmonize
from .harmony import toChordType
from .selection import Selection
from .selection import Clipboard
from .selection import BatchOperations
from .history import History
from .history import HistoryEntry
from .history import ShortcutAction
from .history import ShortcutState
from .history import keyToAction
from .history import handleKeyboardShortcut
from .engine_utilities import EngineUtilities
from .engine_utilities import PlaybackEvent


class TempoMarking (MyStrEnum):
    Largo = 'largo'
    Adagio = 'adagio'
    Andante = 'andante'
    Moderato = 'moderato'
    Allegro = 'allegro'
    Presto = 'presto'


TEMPO_MARKING_BPM: dict[TempoMarking, int] = {
    TempoMarking.Largo: 50,
    TempoMarking.Adagio: 70,
    TempoMarking.Andante: 90,
    TempoMarking.Moderato: 110,
    TempoMarking.Allegro: 130,
    TempoMarking.Presto: 180,
}


class RepeatSign (MyStrEnum):
    RepeatStart = 'repeatStart'
    RepeatEnd = 'repeatEnd'
    Coda = 'coda'
    Segno = 'segno'


REPEAT_SIGN_TEXT: dict[RepeatSign, str] = {
    RepeatSign.RepeatStart: '||:',
    RepeatSign.RepeatEnd: ':||',
    RepeatSign.Coda: 'Coda',
    RepeatSign.Segno: 'Segno',
}


class TrackKind (MyStrEnum):
    Soprano = 'S'
    Alto = 'A'
    Tenor = 'T'
    Bass = 'B'
    Chord = 'Chord'
    Lyrics = 'Lyrics'
    Marker = 'Marker'


# The selected tool.  Each kind of tool is its own frozen dataclass, and
# applyTool matches over all of them.
@dataclass(frozen=True)
class NoteTool:
    duration: Duration = Duration.Beat
    subdivision: Subdivision = Subdivision.NoDot


@dataclass(frozen=True)
class AccidentalTool:
    accidental: Accidental


@dataclass(frozen=True)
class DynamicTool:
    dynamic: Dynamic


@dataclass(frozen=True)
class ArticulationTool:
    articulation: Articulation


@dataclass(frozen=True)
class TempoTool:
    marking: TempoMarking


@dataclass(frozen=True)
class RepeatTool:
    sign: RepeatSign


@dataclass(frozen=True)
class ChordRootTool:
    root: ScaleDegree


@dataclass(frozen=True)
class ChordTypeTool:
    chordType: ChordType


Tool = t.Union[
    NoteTool,
    AccidentalTool,
    DynamicTool,
    ArticulationTool,
    TempoTool,
    RepeatTool,
    ChordRootTool,
    ChordTypeTool,
]


def makeTool(category: str, value: str = '') -> Tool:
    # builds a Tool from the (category, value) pair a UI sends
    try:
        match category:
            case 'note':
                if not value:
                    return NoteTool()
                duration, _, subdivision = value.partition(':')
                return NoteTool(Duration(duration), Subdivision(subdivision))
            case 'accidental':
                return AccidentalTool(Accidental(value))
            case 'dynamic':
                return DynamicTool(Dynamic(value))
            case 'articulation':
                return ArticulationTool(Articulation(value))
            case 'tempo':
                return TempoTool(TempoMarking(value))
            case 'repeat':
                return RepeatTool(RepeatSign(value))
            case 'chordRoot':
                return ChordRootTool(toScaleDegree(value))
            case 'chordType':
                return ChordTypeTool(toChordType(value))
    except ValueError:
        raise SolfaEngineException(f'Unknown {category} tool: {value!r}') from None

    raise SolfaEngineException(f'Unknown tool category: {category!r}')


Listener = t.Callable[['EditorEngine', str], None]


class EditorEngine:
    '''
    One editing session: the four voice tracks plus the Chord, Lyrics and
    Marker pseudo-tracks, dynamics, selection, clipboard and undo history.

    Every method that changes something notifies the subscribed listeners
    (with the engine and a short event name) after the change is complete.
    Notes and markers are in the undo history; everything else is not.
    '''
    def __init__(
        self,
        timeSignature: TimeSignature | str = TimeSignature.FourFour,
        keySignatureName: str = 'C major',
        tempo: int = 120,
        measureCount: int = 16,
        strictVoiceLeading: bool = False,
        inKeyStrategy: InKeyStrategy | str = InKeyStrategy.Legacy,
        name: str = 'Untitled'
    ) -> None:
        if tempo <= 0:
            raise SolfaEngineException(f'tempo must be positive, got {tempo}')

        self.name: str = name
        self.timeSignature: TimeSignature = toTimeSignature(timeSignature)
        self.keySignature: KeySignature = getKeySignature(keySignatureName)
        self.tempo: int = tempo
        self.measureCount: int = max(1, measureCount)
        self.strictVoiceLeading: bool = strictVoiceLeading
        self.inKeyStrategy: InKeyStrategy = InKeyStrategy(inKeyStrategy)

        self.tracks: FourTracks = FourTracks.empty()
        self.markers: dict[str, str] = {}
        self.lyrics: dict[str, str] = {}
        self.chords: dict[str, ChordSymbol] = {}
        self.dynamics: tuple[DynamicMarking, ...] = ()
        self.chordProgression: list[ChordProgression] = []

        self.selection: Selection = Selection()
        self.clipboard: Clipboard | None = None
        self.tool: Tool = NoteTool()

        # the initial (empty) snapshot is what the first edit undoes back to
        self.history: History = History()
        self.history.commit(self._snapshot())

        self._listeners: list[Listener] = []

    # observers

    def subscribe(self, listener: Listener):
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: Listener):
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, event: str):
        for listener in list(self._listeners):
            listener(self, event)

    # freeze/thaw (listeners are not part of the frozen state)

    def freeze(self) -> bytes:
        storage: dict[str, t.Any] = {
            k: v for k, v in self.__dict__.items() if k != '_listeners'
        }
        return EngineUtilities.freeze(storage)

    @classmethod
    def thaw(cls, frozenEngine: bytes) -> 'EditorEngine | None':
        storage: dict[str, t.Any] | None = EngineUtilities.thaw(frozenEngine)
        if storage is None:
            return None

        ee = cls()
        ee.__dict__.update(storage)
        ee._listeners = []
        return ee

    # history

    def _snapshot(self) -> HistoryEntry:
        return HistoryEntry(tracks=self.tracks, markers=dict(self.markers))

    def _commit(self):
        self.history.commit(self._snapshot())

    def _restore(self, entry: HistoryEntry):
        self.tracks = entry.tracks
        self.markers = dict(entry.markers)

    def canUndo(self) -> bool:
        return self.history.canUndo()

    def canRedo(self) -> bool:
        return self.history.canRedo()

    def undo(self) -> bool:
        return self.runShortcut(ShortcutAction.Undo)

    def redo(self) -> bool:
        return self.runShortcut(ShortcutAction.Redo)

    # voice leading configuration

    @property
    def voiceLeadingRules(self) -> tuple[VoiceLeadingRule, ...]:
        if self.strictVoiceLeading:
            return STRICT_RULES
        return PERMISSIVE_RULES

    def suggestionStrategy(self) -> ChordSuggestionStrategy:
        if self.strictVoiceLeading:
            return DiatonicSuggestions(self.voiceLeadingRules)
        return NoSuggestions()

    # notes

    def noteAt(self, voicePart: VoicePart | str, position: int, subPosition: int) -> Note | None:
        return findNoteAt(self.tracks[toVoicePart(voicePart)], position, subPosition)

    def isInKey(self, note: Note) -> bool:
        return isNoteInKey(note, self.keySignature, self.inKeyStrategy)

    def addNote(
        self,
        voicePart: VoicePart | str,
        position: int,
        subPosition: int,
        noteType: ScaleDegree | str,
        octave: int = 0,
        duration: Duration | str | None = None,
        subdivision: Subdivision | str | None = None,
        accidental: Accidental | str | None = None
    ) -> Note:
        part: VoicePart = toVoicePart(voicePart)
        if duration is None or subdivision is None:
            noteTool: NoteTool = self.tool if isinstance(self.tool, NoteTool) else NoteTool()
            if duration is None:
                duration = noteTool.duration
            if subdivision is None:
                subdivision = noteTool.subdivision

        note: Note = Note(
            type=noteType,
            duration=duration,
            subdivision=subdivision,
            position=position,
            subPosition=subPosition,
            accidental=accidental
        ).withOctave(octave)
        if note.accidental is None:
            note = applyAccidentals(note, self.keySignature)

        # one note per slot: a new note replaces whatever was there
        newTracks: FourTracks = self.tracks.withTrack(part, replaceNote(self.tracks[part], note))

        if part == VoicePart.Soprano:
            newTracks = self._harmonizeInto(newTracks, note)

        self.tracks = newTracks
        self._commit()
        self._notify('notes')
        return note

    def _harmonizeInto(self, tracks: FourTracks, sopranoNote: Note) -> FourTracks:
        previousChord: ChordProgression | None = None
        if self.chordProgression:
            previousChord = self.chordProgression[-1]

        context: ChordContext = ChordContext(
            key=self.keySignature.tonic,
            mode=self.keySignature.mode,
            previousChords=tuple(self.chordProgression),
            melody=sopranoNote.type
        )
        result: Harmonization | None = harmonize(
            sopranoNote,
            previousChord,
            rules=self.voiceLeadingRules,
            strategy=self.suggestionStrategy(),
            context=context
        )
        if result is None:
            print(f'not harmonizing chromatic soprano note {sopranoNote.type.value}')
            return tracks

        self.chordProgression.append(result.chord)
        for part, note in result.notes.items():
            note = applyAccidentals(note, self.keySignature)
            tracks = tracks.withTrack(part, replaceNote(tracks[part], note))
        return tracks

    def removeNote(self, voicePart: VoicePart | str, position: int, subPosition: int) -> bool:
        part: VoicePart = toVoicePart(voicePart)
        newTrack: tuple[Note, ...] = removeNote(self.tracks[part], position, subPosition)
        if len(newTrack) == len(self.tracks[part]):
            return False

        self.tracks = self.tracks.withTrack(part, newTrack)
        self._commit()
        self._notify('notes')
        return True

    def _replaceNoteAt(self, part: VoicePart, note: Note, newNote: Note) -> bool:
        if newNote == note:
            return False
        self.tracks = self.tracks.withTrack(part, replaceNote(self.tracks[part], newNote))
        self._commit()
        self._notify('notes')
        return True

    # tools

    def selectTool(self, tool: Tool):
        self.tool = tool
        self._notify('tool')

    def applyTool(self, voicePart: VoicePart | str, position: int, subPosition: int = 0) -> bool:
        # Applies the selected tool at a grid slot.  Returns False if there
        # was nothing for the tool to act on.
        part: VoicePart = toVoicePart(voicePart)
        measure, segment = positionToGrid(position, self.timeSignature)
        note: Note | None = self.noteAt(part, position, subPosition)
        tool: Tool = self.tool

        match tool:
            case NoteTool(duration=duration, subdivision=subdivision):
                if note is None:
                    return False
                return self._replaceNoteAt(
                    part, note, replace(note, duration=duration, subdivision=subdivision)
                )

            case AccidentalTool(accidental=accidental):
                if note is None:
                    return False
                if note.accidental == accidental:
                    # clicking again takes it off
                    return self._replaceNoteAt(part, note, replace(note, accidental=None))
                return self._replaceNoteAt(part, note, replace(note, accidental=accidental))

            case DynamicTool(dynamic=dynamic):
                if note is None:
                    return False
                return self._replaceNoteAt(part, note, replace(note, dynamic=dynamic))

            case ArticulationTool(articulation=articulation):
                if note is None:
                    return False
                if note.articulation == articulation:
                    return self._replaceNoteAt(part, note, replace(note, articulation=None))
                return self._replaceNoteAt(part, note, replace(note, articulation=articulation))

            case TempoTool(marking=marking):
                return self.setTempo(TEMPO_MARKING_BPM[marking])

            case RepeatTool(sign=sign):
                return self.setMarker(measure, segment, REPEAT_SIGN_TEXT[sign])

            case ChordRootTool(root=root):
                existing: ChordSymbol | None = self.chords.get(pseudoTrackKey(measure, segment))
                chordType: ChordType = existing.type if existing else ChordType.Major
                return self.setChord(measure, segment, root, chordType)

            case ChordTypeTool(chordType=chordType):
                existing = self.chords.get(pseudoTrackKey(measure, segment))
                if existing is None:
                    return False
                return self.setChord(measure, segment, existing.root, chordType)

            case _:
                raise SolfaEngineException(f'Unknown tool: {tool!r}')

    # selection

    def setSelection(
        self,
        startMeasure: int,
        endMeasure: int,
        startBeat: int = 0,
        endBeat: int | None = None,
        parts: t.Iterable[VoicePart | str] | None = None
    ):
        if endBeat is None:
            endBeat = beatsPerMeasure(self.timeSignature) - 1
        selectedParts: frozenset[VoicePart]
        if parts is None:
            selectedParts = self.selection.selectedParts
        else:
            selectedParts = frozenset(toVoicePart(p) for p in parts)

        selection = Selection(startMeasure, endMeasure, startBeat, endBeat, selectedParts)
        if not selection.isValid():
            raise SolfaEngineException(f'Invalid selection: {selection.toDict()}')
        self.selection = selection
        self._notify('selection')

    def toggleSelectedPart(self, voicePart: VoicePart | str):
        self.selection = self.selection.toggledPart(voicePart)
        self._notify('selection')

    def _setTracksAndCommit(self, newTracks: FourTracks) -> bool:
        if newTracks == self.tracks:
            return False
        self.tracks = newTracks
        self._commit()
        self._notify('notes')
        return True

    def transposeSelection(self, steps: int) -> bool:
        return self._setTracksAndCommit(
            BatchOperations.transpose(self.tracks, self.selection, steps, self.timeSignature)
        )

    def changeSelectionDuration(self, duration: Duration | str) -> bool:
        return self._setTracksAndCommit(
            BatchOperations.changeDuration(
                self.tracks, self.selection, duration, self.timeSignature
            )
        )

    # keyboard

    def handleKey(self, key: str, ctrl: bool = False) -> ShortcutAction | None:
        action: ShortcutAction | None = keyToAction(key, ctrl)
        if action is None:
            return None
        self.runShortcut(action)
        return action

    def runShortcut(self, action: ShortcutAction | str) -> bool:
        try:
            action = ShortcutAction(action)
        except ValueError:
            raise SolfaEngineException(f'Unknown shortcut action: {action!r}') from None
        result: dict[str, t.Any] = handleKeyboardShortcut(
            action,
            ShortcutState(
                tracks=self.tracks,
                selection=self.selection,
                clipboard=self.clipboard,
                history=self.history
            ),
            self.timeSignature
        )
        if not result:
            return False

        if 'clipboard' in result:
            self.clipboard = result['clipboard']
            self._notify('clipboard')
            return True

        if 'historyIndex' in result:
            # undo/redo move through the history, they don't add to it
            entry: HistoryEntry | None = self.history.moveTo(result['historyIndex'])
            if entry is None:
                return False
            self._restore(entry)
            self._notify('notes')
            return True

        newTracks: FourTracks = result['tracks']
        if action == ShortcutAction.Paste:
            # pasted notes win over notes already in their slots
            for part, notes in newTracks.items():
                track: tuple[Note, ...] = ()
                for note in notes:
                    track = replaceNote(track, note)
                newTracks = newTracks.withTrack(part, track)
        return self._setTracksAndCommit(newTracks)

    def copy(self) -> bool:
        return self.runShortcut(ShortcutAction.Copy)

    def paste(self) -> bool:
        return self.runShortcut(ShortcutAction.Paste)

    def deleteSelection(self) -> bool:
        return self.runShortcut(ShortcutAction.Delete)

    # score settings

    def setKeySignature(self, name: str):
        self.keySignature = getKeySignature(name)
        self._notify('keySignature')

    def setTimeSignature(self, timeSignature: TimeSignature | str):
        self.timeSignature = toTimeSignature(timeSignature)
        self._notify('timeSignature')

    def setTempo(self, tempo: int) -> bool:
        if tempo <= 0:
            raise SolfaEngineException(f'tempo must be positive, got {tempo}')
        if tempo == self.tempo:
            return False
        self.tempo = tempo
        self._notify('tempo')
        return True

    def addMeasure(self):
        self.measureCount += 1
        self._notify('measures')

    def removeMeasure(self) -> bool:
        if self.measureCount <= 1:
            return False
        self.measureCount -= 1
        self._notify('measures')
        return True

    # pseudo-tracks

    def setChord(
        self,
        measure: int,
        segment: int,
        root: ScaleDegree | str,
        chordType: ChordType | str = ChordType.Major
    ) -> bool:
        chord = ChordSymbol(root=root, type=chordType)
        key: str = pseudoTrackKey(measure, segment)
        if self.chords.get(key) == chord:
            return False
        self.chords[key] = chord
        self._notify('chords')
        return True

    def removeChord(self, measure: int, segment: int) -> bool:
        if self.chords.pop(pseudoTrackKey(measure, segment), None) is None:
            return False
        self._notify('chords')
        return True

    def setLyric(self, measure: int, segment: int, box: int, text: str) -> bool:
        if not text:
            return self.removeLyric(measure, segment, box)
        key: str = pseudoTrackKey(measure, segment, box)
        if self.lyrics.get(key) == text:
            return False
        self.lyrics[key] = text
        self._notify('lyrics')
        return True

    def removeLyric(self, measure: int, segment: int, box: int) -> bool:
        if self.lyrics.pop(pseudoTrackKey(measure, segment, box), None) is None:
            return False
        self._notify('lyrics')
        return True

    def setMarker(self, measure: int, segment: int, text: str) -> bool:
        key: str = pseudoTrackKey(measure, segment)
        if self.markers.get(key) == text:
            return False
        self.markers[key] = text
        self._commit()
        self._notify('markers')
        return True

    def removeMarker(self, measure: int, segment: int) -> bool:
        if self.markers.pop(pseudoTrackKey(measure, segment), None) is None:
            return False
        self._commit()
        self._notify('markers')
        return True

    def addDynamic(
        self,
        position: int,
        dynamic: Dynamic | str,
        voicePart: VoicePart | str | None = None
    ) -> DynamicMarking:
        marking = DynamicMarking(position=position, dynamic=dynamic, voicePart=voicePart)
        self.dynamics = (*self.dynamics, marking)
        self._notify('dynamics')
        return marking

    def removeDynamic(self, markingId: str) -> bool:
        remaining: tuple[DynamicMarking, ...] = tuple(
            d for d in self.dynamics if d.id != markingId
        )
        if len(remaining) == len(self.dynamics):
            return False
        self.dynamics = remaining
        self._notify('dynamics')
        return True

    # clearing

    def clearTrack(self, kind: TrackKind | str):
        kind = TrackKind(kind)
        match kind:
            case TrackKind.Soprano | TrackKind.Alto | TrackKind.Tenor | TrackKind.Bass:
                self.tracks = self.tracks.withTrack(VoicePart(kind.value), ())
                self._commit()
                self._notify('notes')
            case TrackKind.Chord:
                self.chords = {}
                self.chordProgression = []
                self._notify('chords')
            case TrackKind.Lyrics:
                self.lyrics = {}
                self._notify('lyrics')
            case TrackKind.Marker:
                self.markers = {}
                self._commit()
                self._notify('markers')

    def clearAll(self):
        self.tracks = FourTracks.empty()
        self.markers = {}
        self.chordProgression = []
        self.chords = {}
        self.lyrics = {}
        self.dynamics = ()
        self._commit()
        self._notify('all')

    # views and exports

    def composition(self) -> Composition:
        return Composition(
            name=self.name,
            timeSignature=self.timeSignature,
            keySignatureName=keySignatureName(self.keySignature),
            tempo=self.tempo,
            measureCount=self.measureCount,
            tracks=self.tracks,
            markers=dict(self.markers),
            lyrics=dict(self.lyrics),
            chords=dict(self.chords),
            dynamics=self.dynamics
        )

    def toDict(self) -> dict[str, t.Any]:
        tracks: dict[str, list[dict[str, t.Any]]] = {}
        for part, notes in self.tracks.items():
            tracks[part.value] = [
                n.toDict() | {'inKey': self.isInKey(n)} for n in notes
            ]

        return {
            'name': self.name,
            'timeSignature': self.timeSignature.value,
            'barPattern': list(BAR_PATTERNS[self.timeSignature]),
            'keySignature': self.keySignature.toDict(),
            'tempo': self.tempo,
            'measureCount': self.measureCount,
            'tracks': tracks,
            'markers': dict(self.markers),
            'lyrics': dict(self.lyrics),
            'chords': {k: c.toDict() for k, c in self.chords.items()},
            'dynamics': [d.toDict() for d in self.dynamics],
            'chordProgression': [c.toDict() for c in self.chordProgression],
            'selection': self.selection.toDict(),
            'hasClipboard': self.clipboard is not None,
            'canUndo': self.canUndo(),
            'canRedo': self.canRedo(),
            'historyIndex': self.history.index,
            'historyLength': len(self.history),
        }

    def toMusic21Score(self) -> m21.stream.Score:
        return EngineUtilities.toMusic21Score(self.composition(), self.keySignature)

    def toMusicXML(self) -> str:
        return EngineUtilities.toMusicXML(self.toMusic21Score())

    def toHumdrum(self) -> str:
        return EngineUtilities.toHumdrum(self.toMusic21Score())

    def toMei(self) -> str:
        return EngineUtilities.toMei(self.toMusic21Score())

    def playbackSchedule(
        self,
        parts: t.Iterable[VoicePart | str] | None = None
    ) -> list[PlaybackEvent]:
        wanted: tuple[VoicePart, ...] = VOICE_PARTS
        if parts is not None:
            wanted = tuple(toVoicePart(p) for p in parts)
        return EngineUtilities.playbackSchedule(
            self.tracks, self.keySignature, self.tempo, wanted
        )
