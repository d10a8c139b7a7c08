import typing as t
import zlib
import pickle
from dataclasses import dataclass

import music21 as m21
from music21.common.numberTools import OffsetQL, opFrac

import converter21

from .scale import SolfaEngineException
from .scale import Accidental
from .scale import KeySignature
from .scale import DEGREE_LETTERS
from .scale import accidentalFor
from .scale import music21TonicName
from .notes import Note
from .notes import VoicePart
from .notes import VOICE_PARTS
from .notes import VOICE_PART_LABELS
from .notes import Articulation
from .notes import Composition
from .notes import DynamicMarking
from .notes import TimeSignature
from .notes import DURATION_BEATS
from .notes import SUBDIVISION_MULTIPLIERS
from .notes import SUB_POSITIONS
from .notes import beatsPerMeasure
from .notes import beatUnitQuarterLength
from .notes import parsePseudoTrackKey
from .harmony import ChordType
from .harmony import ChordSymbol

# Register the Humdrum and MEI readers/writers from converter21
converter21.register()


# the register the middle (unmarked) octave sounds in
BASE_OCTAVE: int = 4

M21_ACCIDENTAL_NAMES: dict[Accidental, str] = {
    Accidental.Sharp: 'sharp',
    Accidental.Flat: 'flat',
    Accidental.Natural: 'natural',
}

M21_CHORD_KINDS: dict[ChordType, str] = {
    ChordType.Major: 'major',
    ChordType.Minor: 'minor',
    ChordType.Diminished: 'diminished',
    ChordType.Augmented: 'augmented',
    ChordType.Dominant7: 'dominant-seventh',
    ChordType.Major7: 'major-seventh',
    ChordType.Minor7: 'minor-seventh',
}

# legato has no single-note articulation in music21; it is left out
M21_ARTICULATIONS: dict[Articulation, type] = {
    Articulation.Staccato: m21.articulations.Staccato,
    Articulation.Accent: m21.articulations.Accent,
    Articulation.Tenuto: m21.articulations.Tenuto,
    Articulation.Marcato: m21.articulations.StrongAccent,
}

M21_CLEFS: dict[VoicePart, t.Callable[[], m21.clef.Clef]] = {
    VoicePart.Soprano: m21.clef.TrebleClef,
    VoicePart.Alto: m21.clef.TrebleClef,
    VoicePart.Tenor: m21.clef.Treble8vbClef,
    VoicePart.Bass: m21.clef.BassClef,
}


@dataclass(frozen=True)
class PlaybackEvent:
    noteId: str
    voicePart: VoicePart
    startMs: float
    durationMs: float
    frequency: float

    def toDict(self) -> dict[str, t.Any]:
        return {
            'id': self.noteId,
            'voicePart': self.voicePart.value,
            'startMs': self.startMs,
            'durationMs': self.durationMs,
            'frequency': self.frequency,
        }


class EngineUtilities:
    @staticmethod
    def freeze(obj: t.Any) -> bytes:
        output: bytes = pickle.dumps(obj)
        output = zlib.compress(output)
        return output

    @staticmethod
    def thaw(frozen: bytes) -> t.Any:
        try:
            uncompressed: bytes = zlib.decompress(frozen)
            return pickle.loads(uncompressed)
        except Exception as e:
            print(f'thaw failed: {e}')
            return None

    @staticmethod
    def toPitch(note: Note, keySignature: KeySignature | None = None) -> m21.pitch.Pitch:
        # Fixed do: d is always C, whatever the key.  The key contributes only
        # its accidentals (if the note doesn't carry one already).
        p = m21.pitch.Pitch(DEGREE_LETTERS[note.type], octave=BASE_OCTAVE + note.octave)
        accidental: Accidental | None = note.accidental
        if accidental is None and keySignature is not None:
            accidental = accidentalFor(note.type, keySignature)
        if accidental is not None:
            p.accidental = m21.pitch.Accidental(M21_ACCIDENTAL_NAMES[accidental])
        return p

    @staticmethod
    def frequencyFor(note: Note, keySignature: KeySignature | None = None) -> float:
        return EngineUtilities.toPitch(note, keySignature).frequency

    @staticmethod
    def durationInBeats(note: Note) -> float:
        return DURATION_BEATS[note.duration] * SUBDIVISION_MULTIPLIERS[note.subdivision]

    @staticmethod
    def durationMs(note: Note, tempo: int) -> float:
        if tempo <= 0:
            raise SolfaEngineException(f'tempo must be positive, got {tempo}')
        return EngineUtilities.durationInBeats(note) * 60000.0 / tempo

    @staticmethod
    def startInBeats(note: Note) -> float:
        return note.position + note.subPosition / SUB_POSITIONS

    @staticmethod
    def playbackSchedule(
        tracks: t.Sequence[t.Sequence[Note]],
        keySignature: KeySignature | None,
        tempo: int,
        parts: t.Iterable[VoicePart] = VOICE_PARTS
    ) -> list[PlaybackEvent]:
        # This only computes what would be played, and when; there is no audio.
        if tempo <= 0:
            raise SolfaEngineException(f'tempo must be positive, got {tempo}')
        msPerBeat: float = 60000.0 / tempo
        wanted: set[VoicePart] = set(parts)

        events: list[PlaybackEvent] = []
        for part, notes in zip(VOICE_PARTS, tracks):
            if part not in wanted:
                continue
            for note in notes:
                events.append(PlaybackEvent(
                    noteId=note.noteId,
                    voicePart=part,
                    startMs=EngineUtilities.startInBeats(note) * msPerBeat,
                    durationMs=EngineUtilities.durationMs(note, tempo),
                    frequency=EngineUtilities.frequencyFor(note, keySignature)
                ))

        events.sort(key=lambda e: (e.startMs, VOICE_PARTS.index(e.voicePart)))
        return events

    @staticmethod
    def m21Offset(note: Note, timeSignature: TimeSignature | str) -> OffsetQL:
        return opFrac(EngineUtilities.startInBeats(note) * beatUnitQuarterLength(timeSignature))

    @staticmethod
    def toMusic21Note(
        note: Note,
        keySignature: KeySignature | None,
        timeSignature: TimeSignature | str
    ) -> m21.note.Note:
        m21Note = m21.note.Note(EngineUtilities.toPitch(note, keySignature))
        m21Note.quarterLength = opFrac(
            EngineUtilities.durationInBeats(note) * beatUnitQuarterLength(timeSignature)
        )
        m21Note.id = note.noteId
        if note.articulation is not None and note.articulation in M21_ARTICULATIONS:
            m21Note.articulations.append(M21_ARTICULATIONS[note.articulation]())
        return m21Note

    @staticmethod
    def toMusic21ChordSymbol(chord: ChordSymbol) -> m21.harmony.ChordSymbol:
        return m21.harmony.ChordSymbol(
            root=DEGREE_LETTERS[chord.root],
            kind=M21_CHORD_KINDS[chord.type]
        )

    @staticmethod
    def toMusic21Score(
        composition: Composition,
        keySignature: KeySignature | None
    ) -> m21.stream.Score:
        ts: TimeSignature = composition.timeSignature
        bpm: int = beatsPerMeasure(ts)
        beatQL: float = beatUnitQuarterLength(ts)

        score = m21.stream.Score()
        score.metadata = m21.metadata.Metadata()
        score.metadata.title = composition.name

        for part, notes in composition.tracks.items():
            m21Part = m21.stream.Part()
            m21Part.id = part.value
            m21Part.partName = VOICE_PART_LABELS[part]
            m21Part.insert(0, M21_CLEFS[part]())
            m21Part.insert(0, m21.meter.TimeSignature(ts.value))
            if keySignature is not None:
                tonicName: str | None = music21TonicName(keySignature)
                if tonicName is not None:
                    m21Part.insert(0, m21.key.Key(tonicName, keySignature.mode.value))
            if part == VoicePart.Soprano:
                m21Part.insert(0, m21.tempo.MetronomeMark(number=composition.tempo))

            notesBySlot: dict[tuple[int, int], m21.note.Note] = {}
            for offset, note, m21Note in EngineUtilities._voiceNotes(notes, keySignature, ts):
                m21Part.insert(offset, m21Note)
                notesBySlot[note.slot] = m21Note
                if note.dynamic is not None:
                    m21Part.insert(offset, m21.dynamics.Dynamic(note.dynamic.value))

            EngineUtilities._addDynamicMarkings(m21Part, part, composition.dynamics, beatQL)

            if part == VoicePart.Soprano:
                EngineUtilities._addLyrics(notesBySlot, composition.lyrics, bpm)
                EngineUtilities._addChordSymbols(m21Part, composition.chords, bpm, beatQL)
                EngineUtilities._addMarkers(m21Part, composition.markers, bpm, beatQL)

            # pad out to the end of the last measure
            totalQL: OffsetQL = opFrac(composition.measureCount * bpm * beatQL)
            highest: OffsetQL = m21Part.highestTime
            if highest < totalQL:
                m21Part.insert(highest, m21.note.Rest(quarterLength=opFrac(totalQL - highest)))

            m21Part.makeRests(fillGaps=True, inPlace=True)
            m21Part.makeNotation(inPlace=True)
            # notes cut short by the next one can end up with complex durations
            m21Part.splitAtDurations(recurse=True)
            score.insert(0, m21Part)

        return score

    @staticmethod
    def _voiceNotes(
        notes: t.Sequence[Note],
        keySignature: KeySignature | None,
        timeSignature: TimeSignature | str
    ) -> list[tuple[OffsetQL, Note, m21.note.Note]]:
        # A track is a single voice, so a note stops where the next note in the
        # track starts.  If a slot holds more than one note, the last one wins.
        offsets: list[OffsetQL] = [EngineUtilities.m21Offset(n, timeSignature) for n in notes]
        output: list[tuple[OffsetQL, Note, m21.note.Note]] = []
        for i, note in enumerate(notes):
            offset: OffsetQL = offsets[i]
            later: list[OffsetQL] = [o for o in offsets[i + 1:] if o > offset]
            if len(later) < len(offsets) - i - 1:
                print(f'dropping note {note.noteId}: its slot {note.slot} is taken')
                continue

            m21Note: m21.note.Note = EngineUtilities.toMusic21Note(note, keySignature, timeSignature)
            if later and opFrac(offset + m21Note.quarterLength) > later[0]:
                m21Note.quarterLength = opFrac(later[0] - offset)
            output.append((offset, note, m21Note))
        return output

    @staticmethod
    def _addDynamicMarkings(
        m21Part: m21.stream.Part,
        part: VoicePart,
        dynamics: t.Iterable[DynamicMarking],
        beatQL: float
    ):
        for marking in dynamics:
            if marking.appliesTo(part):
                m21Part.insert(
                    opFrac(marking.position * beatQL),
                    m21.dynamics.Dynamic(marking.dynamic.value)
                )

    @staticmethod
    def _addLyrics(
        notesBySlot: dict[tuple[int, int], m21.note.Note],
        lyrics: dict[str, str],
        bpm: int
    ):
        # lyric keys are measure-segment-box; a lyric needs a soprano note to hang on
        for key, text in lyrics.items():
            address: tuple[int, ...] = parsePseudoTrackKey(key)
            if len(address) != 3 or not text:
                continue
            measure, segment, box = address
            m21Note: m21.note.Note | None = notesBySlot.get((measure * bpm + segment, box))
            if m21Note is None:
                print(f'lyric {key}: no soprano note to attach "{text}" to')
                continue
            m21Note.addLyric(text)

    @staticmethod
    def _addChordSymbols(
        m21Part: m21.stream.Part,
        chords: dict[str, ChordSymbol],
        bpm: int,
        beatQL: float
    ):
        for key, chord in chords.items():
            measure, segment = parsePseudoTrackKey(key)[:2]
            cs: m21.harmony.ChordSymbol = EngineUtilities.toMusic21ChordSymbol(chord)
            cs.writeAsChord = False
            m21Part.insert(opFrac((measure * bpm + segment) * beatQL), cs)

    @staticmethod
    def _addMarkers(
        m21Part: m21.stream.Part,
        markers: dict[str, str],
        bpm: int,
        beatQL: float
    ):
        for key, text in markers.items():
            if not text:
                continue
            measure, segment = parsePseudoTrackKey(key)[:2]
            m21Part.insert(
                opFrac((measure * bpm + segment) * beatQL),
                m21.expressions.RehearsalMark(text)
            )

    @staticmethod
    def toMusicXML(score: m21.stream.Score) -> str:
        output: str | bytes = m21.converter.toData(score, fmt='musicxml', makeNotation=False)
        if t.TYPE_CHECKING:
            assert isinstance(output, str)
        return output

    @staticmethod
    def toHumdrum(score: m21.stream.Score) -> str:
        output: str | bytes = m21.converter.toData(score, fmt='humdrum', makeNotation=False)
        if t.TYPE_CHECKING:
            assert isinstance(output, str)
        return output

    @staticmethod
    def toMei(score: m21.stream.Score) -> str:
        output: str | bytes = m21.converter.toData(score, fmt='mei', makeNotation=False)
        if t.TYPE_CHECKING:
            assert isinstance(output, str)
        return output
