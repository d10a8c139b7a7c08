from solfa_editor.notes import Note, FourTracks
from solfa_editor.selection import Selection, Clipboard, copyToClipboard
from solfa_editor.history import (
    History,
    HistoryEntry,
    ShortcutAction,
    ShortcutState,
    KEYBOARD_SHORTCUTS,
    keyToAction,
    handleKeyboardShortcut,
)


def entry(*positions: int) -> HistoryEntry:
    return HistoryEntry(FourTracks(soprano=[Note(type='d', position=p) for p in positions]))


def makeHistory(length: int) -> History:
    history = History()
    for i in range(length):
        history.commit(entry(*range(i)))
    return history


def testEmptyHistory():
    history = History()
    assert history.index == -1
    assert history.current is None
    assert not history.canUndo()
    assert not history.canRedo()
    assert history.undo() is None
    assert history.redo() is None


def testCommitAppends():
    history = makeHistory(3)
    assert len(history) == 3
    assert history.index == 2
    assert history.current == entry(0, 1)


def testCommitAfterUndoTruncates():
    history = makeHistory(5)
    history.moveTo(2)
    history.commit(entry(42))
    assert len(history) == 4  # pointer + 2
    assert history.index == 3
    assert history.current == entry(42)
    assert not history.canRedo()


def testUndoRedo():
    history = makeHistory(3)
    assert history.undo() == entry(0)
    assert history.undo() == entry()
    assert history.index == 0
    # boundary: no-op
    assert history.undo() is None
    assert history.index == 0

    assert history.redo() == entry(0)
    assert history.redo() == entry(0, 1)
    assert history.redo() is None
    assert history.index == 2


def testKeyboardTable():
    assert KEYBOARD_SHORTCUTS['Ctrl+C'] == ShortcutAction.Copy
    assert KEYBOARD_SHORTCUTS['Delete'] == ShortcutAction.Delete
    assert len(KEYBOARD_SHORTCUTS) == 10


def testKeyToAction():
    assert keyToAction('c', ctrl=True) == ShortcutAction.Copy
    assert keyToAction('Z', ctrl=True) == ShortcutAction.Undo
    assert keyToAction('Delete') == ShortcutAction.Delete
    assert keyToAction('ArrowLeft') == ShortcutAction.MoveLeft
    assert keyToAction('c') is None
    assert keyToAction('q', ctrl=True) is None
    assert keyToAction('Delete', ctrl=True) is None


def shortcutState(history: History | None = None, clipboard: Clipboard | None = None):
    tracks = FourTracks(
        soprano=[Note(type='d', position=0), Note(type='r', position=5)],
        bass=[Note(type='s', position=1)]
    )
    return ShortcutState(
        tracks=tracks,
        selection=Selection(startMeasure=0, endMeasure=0, startBeat=0, endBeat=3),
        clipboard=clipboard,
        history=history if history is not None else makeHistory(1)
    )


def testCopyShortcut():
    state = shortcutState()
    result = handleKeyboardShortcut('copy', state, '4/4')
    assert list(result) == ['clipboard']
    assert result['clipboard'] == copyToClipboard(state.tracks, state.selection, '4/4')


def testPasteShortcut():
    state = shortcutState()
    assert handleKeyboardShortcut(ShortcutAction.Paste, state, '4/4') == {}

    clipboard = copyToClipboard(state.tracks, state.selection, '4/4')
    state = shortcutState(clipboard=clipboard)
    result = handleKeyboardShortcut(ShortcutAction.Paste, state, '4/4')
    assert list(result) == ['tracks']
    # pasted back over measure 0: appended, not merged
    assert len(result['tracks'].soprano) == 3
    assert len(result['tracks'].bass) == 2


def testUndoRedoShortcutsAtBoundaries():
    history = makeHistory(3)
    history.moveTo(0)
    state = shortcutState(history)
    assert handleKeyboardShortcut(ShortcutAction.Undo, state, '4/4') == {}

    result = handleKeyboardShortcut(ShortcutAction.Redo, state, '4/4')
    assert result == {'tracks': entry(0).tracks, 'historyIndex': 1}
    # the history itself is left for the caller to move
    assert history.index == 0

    history.moveTo(2)
    assert handleKeyboardShortcut(ShortcutAction.Redo, state, '4/4') == {}
    result = handleKeyboardShortcut(ShortcutAction.Undo, state, '4/4')
    assert result['historyIndex'] == 1


def testDeleteShortcut():
    state = shortcutState()
    result = handleKeyboardShortcut(ShortcutAction.Delete, state, '4/4')
    assert [n.position for n in result['tracks'].soprano] == [5]
    assert result['tracks'].bass == ()


def testUnimplementedShortcutsReturnNothing():
    state = shortcutState()
    for action in ('selectAll', 'moveUp', 'moveDown', 'moveLeft', 'moveRight', 'bogus'):
        assert handleKeyboardShortcut(action, state, '4/4') == {}
