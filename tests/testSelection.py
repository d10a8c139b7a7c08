import pytest

from solfa_editor.scale import SolfaEngineException
from solfa_editor.notes import Note, Duration, VoicePart, FourTracks
from solfa_editor.selection import (
    Selection,
    Clipboard,
    notesInRange,
    copyToClipboard,
    pasteFromClipboard,
    BatchOperations,
    isNoteInSelection,
    deleteSelection,
)


@pytest.fixture
def tracks() -> FourTracks:
    # 4/4: measure 0 is positions 0-3, measure 1 is 4-7, measure 2 is 8-11
    return FourTracks(
        soprano=[
            Note(type='d', position=0),
            Note(type='r', position=3, subPosition=2),
            Note(type='m', position=4),
            Note(type='f', position=9),
        ],
        alto=[Note(type='s', position=5)],
        bass=[Note(type='l', position=8)],
    )


def types(notes):
    return [n.type.value for n in notes]


def testNotesInRangeIsHalfOpenOnPositions(tracks):
    inRange = notesInRange(tracks, 1, 1, '4/4')
    assert types(inRange.soprano) == ['m']
    assert types(inRange.alto) == ['s']
    assert inRange.bass == ()

    inRange = notesInRange(tracks, 0, 1, '4/4')
    assert types(inRange.soprano) == ['d', 'r', 'm']


def testCopyToClipboard(tracks):
    clipboard = copyToClipboard(tracks, Selection.allParts(1, 2), '4/4')
    assert clipboard.startPosition == 4
    assert types(clipboard.notes.soprano) == ['m', 'f']
    assert types(clipboard.notes.bass) == ['l']


def testCopyPasteRoundTrip(tracks):
    selection = Selection.allParts(1, 2)
    clipboard = copyToClipboard(tracks, selection, '4/4')
    pasted = pasteFromClipboard(FourTracks.empty(), clipboard, selection.startMeasure, '4/4')
    assert pasted == notesInRange(tracks, 1, 2, '4/4')
    assert [n.position for n in pasted.soprano] == [4, 9]


def testPasteShiftsAndAppends(tracks):
    clipboard = copyToClipboard(tracks, Selection.allParts(0, 0), '4/4')
    pasted = pasteFromClipboard(tracks, clipboard, 3, '4/4')
    # appended after the existing notes, not merged or re-sorted
    assert types(pasted.soprano) == ['d', 'r', 'm', 'f', 'd', 'r']
    assert [n.slot for n in pasted.soprano[-2:]] == [(12, 0), (15, 2)]
    assert pasted.alto == tracks.alto

    # pasted notes are new notes
    originalIds = {n.noteId for n in tracks.soprano}
    assert not originalIds & {n.noteId for n in pasted.soprano[-2:]}


def testPasteEmptyClipboard(tracks):
    assert pasteFromClipboard(tracks, Clipboard(), 2, '4/4') == tracks


def testBatchTransposeMovesScaleSteps(tracks):
    transposed = BatchOperations.transpose(tracks, Selection.allParts(1, 1), 2, '4/4')
    assert types(transposed.soprano) == ['d', 'r', 's', 'f']
    assert types(transposed.alto) == ['t']
    assert transposed.bass == tracks.bass
    # ids survive
    assert transposed.soprano[2].noteId == tracks.soprano[2].noteId


def testBatchTransposeWraps(tracks):
    transposed = BatchOperations.transpose(tracks, Selection.allParts(2, 2), -7, '4/4')
    assert transposed == tracks
    transposed = BatchOperations.transpose(tracks, Selection.allParts(2, 2), 1, '4/4')
    assert types(transposed.bass) == ['t']


def testBatchMatchesByIdNotValue():
    # two equal notes, only one of them in range
    inside = Note(type='d', position=4)
    outside = Note(type='d', position=0)
    tracks = FourTracks(soprano=[outside, inside])
    changed = BatchOperations.changeDuration(tracks, Selection.allParts(1, 1), 'eighth', '4/4')
    assert changed.soprano[0].duration == Duration.Beat
    assert changed.soprano[1].duration == Duration.Eighth


def testIsNoteInSelectionUsesWholeBeats():
    selection = Selection(startMeasure=1, endMeasure=1, startBeat=1, endBeat=2)
    assert isNoteInSelection(Note(type='d', position=5, subPosition=3), selection, '4/4')
    assert isNoteInSelection(Note(type='d', position=6), selection, '4/4')
    assert not isNoteInSelection(Note(type='d', position=4), selection, '4/4')
    assert not isNoteInSelection(Note(type='d', position=7), selection, '4/4')
    assert not isNoteInSelection(Note(type='d', position=1), selection, '4/4')


def testDeleteSelection(tracks):
    selection = Selection(startMeasure=0, endMeasure=2, startBeat=0, endBeat=0)
    remaining = deleteSelection(tracks, selection, '4/4')
    assert types(remaining.soprano) == ['r', 'f']
    assert types(remaining.alto) == ['s']
    assert remaining.bass == ()


def testSelectionValidity():
    assert Selection(0, 3, 0, 3).isValid()
    assert not Selection(2, 1).isValid()
    assert not Selection(0, 0, 3, 1).isValid()


def testSelectionParts():
    selection = Selection()
    assert selection.selectedParts == frozenset(VoicePart)
    sopranoOut = selection.toggledPart('S')
    assert VoicePart.Soprano not in sopranoOut.selectedParts
    assert sopranoOut.toggledPart(VoicePart.Soprano) == selection
    assert sopranoOut.toDict()['selectedParts'] == ['A', 'T', 'B']


def testChangeDurationRejectsUnknownDurationWithNothingSelected(tracks):
    nothingThere = Selection.allParts(10, 12)
    assert BatchOperations.changeDuration(tracks, nothingThere, 'half', '4/4') == tracks
    with pytest.raises(SolfaEngineException):
        BatchOperations.changeDuration(tracks, nothingThere, 'whole', '4/4')
