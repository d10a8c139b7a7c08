import pytest
import music21 as m21

from solfa_editor.scale import SolfaEngineException, ScaleDegree
from solfa_editor.notes import Note, VoicePart, Duration
from solfa_editor.harmony import (
    ChordType,
    ChordProgression,
    ChordSymbol,
    ChordContext,
    Tension,
    ModulationRequest,
    DiatonicSuggestions,
    NoSuggestions,
    STRICT_RULES,
    PERMISSIVE_RULES,
    chordNotes,
    realizeVoicing,
    hasSpacingProblem,
    checkVoiceLeading,
    suggestNextChord,
    applyModulation,
    harmonize,
)

C = ChordProgression(ChordType.Major, ScaleDegree.Do)
Dm = ChordProgression(ChordType.Minor, ScaleDegree.Re)
F = ChordProgression(ChordType.Major, ScaleDegree.Fa)
G = ChordProgression(ChordType.Major, ScaleDegree.Sol)


def rootsAndTypes(chords):
    return [(c.root, c.type) for c in chords]


def testChordNotesForCMajorTriad():
    assert chordNotes(ChordProgression(type='major', root='d', inversion=0)) == {
        VoicePart.Soprano: ScaleDegree.Do,
        VoicePart.Alto: ScaleDegree.Mi,
        VoicePart.Tenor: ScaleDegree.Sol,
        VoicePart.Bass: ScaleDegree.Do,
    }


def testChordNotesForSeventhUsesAllFourVoices():
    notes = chordNotes(ChordProgression(ChordType.Dominant7, ScaleDegree.Sol))
    assert [notes[p] for p in VoicePart] == [
        ScaleDegree.Sol, ScaleDegree.Ti, ScaleDegree.Re, ScaleDegree.Fa
    ]


def testChordNotesWraps():
    notes = chordNotes(ChordProgression(ChordType.Major, ScaleDegree.La))
    assert notes[VoicePart.Alto] == ScaleDegree.Do
    assert notes[VoicePart.Tenor] == ScaleDegree.Mi


def testChordNotesRejectsChromaticRoot():
    with pytest.raises(SolfaEngineException):
        chordNotes(ChordProgression(ChordType.Major, ScaleDegree.AltC))


def testChordSymbol():
    assert ChordSymbol(root='s', type='dominant7').symbol == 'G7'
    assert ChordSymbol(root='r', type='minor').symbol == 'Dm'
    assert ChordSymbol(root='d').toDict() == {'root': 'd', 'type': 'major', 'symbol': 'C'}
    with pytest.raises(SolfaEngineException):
        ChordSymbol(root='d', type='sus4')


def testRealizeVoicingIsCloseAndTopDown():
    voicing = realizeVoicing(C)
    assert [voicing[p].nameWithOctave for p in VoicePart] == ['C4', 'E3', 'G2', 'C2']
    assert not hasSpacingProblem(voicing)


def testRealizeVoicingInversionPutsThirdInBass():
    voicing = realizeVoicing(ChordProgression(ChordType.Major, ScaleDegree.Do, inversion=1))
    assert voicing[VoicePart.Bass].name == 'E'
    assert voicing[VoicePart.Bass].ps < voicing[VoicePart.Tenor].ps


def testSpacingProblems():
    wide = {
        VoicePart.Soprano: m21.pitch.Pitch('C5'),
        VoicePart.Alto: m21.pitch.Pitch('C3'),
        VoicePart.Tenor: m21.pitch.Pitch('G2'),
        VoicePart.Bass: m21.pitch.Pitch('C2'),
    }
    assert hasSpacingProblem(wide)

    crossed = {
        VoicePart.Soprano: m21.pitch.Pitch('C4'),
        VoicePart.Alto: m21.pitch.Pitch('E4'),
        VoicePart.Tenor: m21.pitch.Pitch('G3'),
        VoicePart.Bass: m21.pitch.Pitch('C3'),
    }
    assert hasSpacingProblem(crossed)


def testPermissiveRulesAlwaysPass():
    result = checkVoiceLeading(C, Dm, PERMISSIVE_RULES)
    assert result.valid
    assert result.issues == []
    assert [r.name for r in PERMISSIVE_RULES] == [r.name for r in STRICT_RULES]


def testStrictRulesFindParallelFifthsAndOctaves():
    # outer voices and tenor/bass both move up a step, keeping their intervals
    result = checkVoiceLeading(C, Dm)
    assert not result.valid
    assert result.issues == [
        'Avoid parallel fifths between voices',
        'Avoid parallel octaves between voices',
    ]


def testStrictRulesAllowRepeatedChord():
    result = checkVoiceLeading(C, C)
    assert result.valid
    assert result.issues == []


def testSuggestNextChordDefaultsToNoSuggestions():
    assert suggestNextChord(C, ChordContext(key=ScaleDegree.Do)) == []
    assert NoSuggestions().suggest(C, ChordContext(key=ScaleDegree.Do)) == []


def testDiatonicSuggestionsRanking():
    suggestions = suggestNextChord(C, ChordContext(key=ScaleDegree.Do), DiatonicSuggestions())
    assert rootsAndTypes(suggestions) == [
        (ScaleDegree.Do, ChordType.Major),       # no motion at all
        (ScaleDegree.Ti, ChordType.Diminished),  # parallel octaves only
        (ScaleDegree.Fa, ChordType.Major),       # I-IV
        (ScaleDegree.La, ChordType.Minor),       # I-vi
        (ScaleDegree.Re, ChordType.Minor),
        (ScaleDegree.Mi, ChordType.Minor),
        (ScaleDegree.Sol, ChordType.Major),
    ]


def testDiatonicSuggestionsMelodyAndTension():
    strategy = DiatonicSuggestions()
    withSol = strategy.suggest(C, ChordContext(key=ScaleDegree.Do, melody=ScaleDegree.Sol))
    assert rootsAndTypes(withSol) == [
        (ScaleDegree.Do, ChordType.Major),
        (ScaleDegree.Sol, ChordType.Major),
    ]

    withTi = strategy.suggest(C, ChordContext(key=ScaleDegree.Do, melody=ScaleDegree.Ti))
    assert [c.root for c in withTi] == [
        ScaleDegree.Ti, ScaleDegree.La, ScaleDegree.Mi, ScaleDegree.Sol
    ]
    tense = strategy.suggest(
        C,
        ChordContext(key=ScaleDegree.Do, melody=ScaleDegree.Ti, desiredTension=Tension.High)
    )
    assert [c.root for c in tense] == [
        ScaleDegree.Ti, ScaleDegree.La, ScaleDegree.Sol, ScaleDegree.Mi
    ]


def testApplyModulationWithPivot():
    request = ModulationRequest(ScaleDegree.Do, ScaleDegree.Sol, pivotChord=F)
    result = applyModulation([C, F, G], request)
    assert [c.root for c in result] == [ScaleDegree.Do, ScaleDegree.Fa, ScaleDegree.Re]
    assert result[0].modulation is None
    assert result[1].modulation is not None
    assert result[1].modulation.steps == 4
    assert result[2].modulation is None


def testApplyModulationWithoutPivot():
    result = applyModulation([C, F, G], ModulationRequest(ScaleDegree.Do, ScaleDegree.Sol))
    assert [c.root for c in result] == [ScaleDegree.Sol, ScaleDegree.Do, ScaleDegree.Re]
    assert result[0].modulation is not None


def testApplyModulationWithMissingPivotIsNoOp():
    request = ModulationRequest(ScaleDegree.Do, ScaleDegree.Sol, pivotChord=Dm)
    assert applyModulation([C, F, G], request) == [C, F, G]


def testHarmonize():
    soprano = Note(type='s', duration='half', position=4, subPosition=1)
    result = harmonize(soprano)
    assert result is not None
    assert rootsAndTypes([result.chord]) == [(ScaleDegree.Sol, ChordType.Major)]

    alto = result.notes[VoicePart.Alto]
    tenor = result.notes[VoicePart.Tenor]
    bass = result.notes[VoicePart.Bass]
    assert (alto.type, tenor.type, bass.type) == (ScaleDegree.Ti, ScaleDegree.Re, ScaleDegree.Sol)
    assert (alto.octave, tenor.octave, bass.octave) == (-1, -1, -2)
    for n in (alto, tenor, bass):
        assert n.slot == (4, 1)
        assert n.duration == Duration.Half
        assert n.noteId != soprano.noteId
    assert len({alto.noteId, tenor.noteId, bass.noteId}) == 3


def testHarmonizeClampsOctaves():
    result = harmonize(Note(type='d').withOctave(-2))
    assert result is not None
    assert all(n.octave == -2 for n in result.notes.values())

    result = harmonize(Note(type='d').withOctave(2))
    assert result is not None
    assert result.notes[VoicePart.Bass].octave == 0


def testHarmonizeSkipsChromaticSoprano():
    assert harmonize(Note(type='b')) is None


def testHarmonizeSubstitutesFirstSuggestion():
    soprano = Note(type='s')
    # permissive rules never reject the hypothesis
    assert harmonize(soprano, C).chord.root == ScaleDegree.Sol
    # strict rules with no suggestions keep it anyway
    assert harmonize(soprano, C, STRICT_RULES).chord.root == ScaleDegree.Sol

    result = harmonize(
        soprano,
        C,
        STRICT_RULES,
        DiatonicSuggestions(),
        ChordContext(key=ScaleDegree.Do, melody=ScaleDegree.Sol)
    )
    assert result.chord.root == ScaleDegree.Do
    assert result.notes[VoicePart.Tenor].type == ScaleDegree.Sol


@pytest.mark.parametrize('fromDegree,toDegree', [('c', 's'), ('d', 'b')])
def testApplyModulationRejectsChromaticDegrees(fromDegree, toDegree):
    with pytest.raises(SolfaEngineException):
        applyModulation([C, F, G], ModulationRequest(fromDegree, toDegree))
