import typing as t
from dataclasses import dataclass, field

from .scale import MyStrEnum
from .notes import FourTracks
from .notes import TimeSignature
from .selection import Selection
from .selection import Clipboard
from .selection import copyToClipboard
from .selection import pasteFromClipboard
from .selection import deleteSelection


@dataclass(frozen=True)
class HistoryEntry:
    tracks: FourTracks
    markers: dict[str, str] = field(default_factory=dict)


class History:
    '''
    Linear undo/redo.  entries[index] is the active snapshot; index is -1 when
    there is nothing in the history at all.  A commit throws away everything
    after the active snapshot before appending.
    '''
    def __init__(self, entries: t.Iterable[HistoryEntry] = (), index: int | None = None):
        self.entries: list[HistoryEntry] = list(entries)
        if index is None:
            index = len(self.entries) - 1
        self.index: int = index

    def __len__(self) -> int:
        return len(self.entries)

    @property
    def current(self) -> HistoryEntry | None:
        if self.index < 0:
            return None
        return self.entries[self.index]

    def canUndo(self) -> bool:
        return self.index > 0

    def canRedo(self) -> bool:
        return self.index < len(self.entries) - 1

    def commit(self, entry: HistoryEntry):
        del self.entries[self.index + 1:]
        self.entries.append(entry)
        self.index = len(self.entries) - 1

    def moveTo(self, index: int) -> HistoryEntry | None:
        if not 0 <= index < len(self.entries):
            return None
        self.index = index
        return self.entries[index]

    def undo(self) -> HistoryEntry | None:
        if not self.canUndo():
            return None
        return self.moveTo(self.index - 1)

    def redo(self) -> HistoryEntry | None:
        if not self.canRedo():
            return None
        return self.moveTo(self.index + 1)

    def clear(self):
        self.entries = []
        self.index = -1


class ShortcutAction (MyStrEnum):
    Copy = 'copy'
    Paste = 'paste'
    Undo = 'undo'
    Redo = 'redo'
    Delete = 'delete'
    SelectAll = 'selectAll'
    MoveUp = 'moveUp'
    MoveDown = 'moveDown'
    MoveLeft = 'moveLeft'
    MoveRight = 'moveRight'


KEYBOARD_SHORTCUTS: dict[str, ShortcutAction] = {
    'Ctrl+C': ShortcutAction.Copy,
    'Ctrl+V': ShortcutAction.Paste,
    'Ctrl+Z': ShortcutAction.Undo,
    'Ctrl+Y': ShortcutAction.Redo,
    'Delete': ShortcutAction.Delete,
    'Ctrl+A': ShortcutAction.SelectAll,
    'ArrowUp': ShortcutAction.MoveUp,
    'ArrowDown': ShortcutAction.MoveDown,
    'ArrowLeft': ShortcutAction.MoveLeft,
    'ArrowRight': ShortcutAction.MoveRight,
}


def keyToAction(key: str, ctrl: bool = False) -> ShortcutAction | None:
    # Browsers report Ctrl+c as 'c', so single letters are upper-cased.
    if len(key) == 1:
        key = key.upper()
    if ctrl:
        key = 'Ctrl+' + key
    return KEYBOARD_SHORTCUTS.get(key)


@dataclass
class ShortcutState:
    tracks: FourTracks
    selection: Selection
    clipboard: Clipboard | None
    history: History


def handleKeyboardShortcut(
    action: ShortcutAction | str,
    state: ShortcutState,
    timeSignature: TimeSignature | str
) -> dict[str, t.Any]:
    '''
    Returns only the slots of state that the action changes: 'clipboard' for
    copy, 'tracks' for paste and delete, 'tracks' and 'historyIndex' for
    undo and redo.  Neither state nor state.history is modified; the caller
    applies the result (and commits paste/delete to history).
    '''
    try:
        action = ShortcutAction(action)
    except ValueError:
        return {}

    history: History = state.history
    match action:
        case ShortcutAction.Copy:
            return {'clipboard': copyToClipboard(state.tracks, state.selection, timeSignature)}
        case ShortcutAction.Paste:
            if state.clipboard is None:
                return {}
            return {
                'tracks': pasteFromClipboard(
                    state.tracks, state.clipboard, state.selection.startMeasure, timeSignature
                )
            }
        case ShortcutAction.Undo:
            if not history.canUndo():
                return {}
            return {
                'tracks': history.entries[history.index - 1].tracks,
                'historyIndex': history.index - 1,
            }
        case ShortcutAction.Redo:
            if not history.canRedo():
                return {}
            return {
                'tracks': history.entries[history.index + 1].tracks,
                'historyIndex': history.index + 1,
            }
        case ShortcutAction.Delete:
            return {'tracks': deleteSelection(state.tracks, state.selection, timeSignature)}
        case _:
            # selectAll and the arrow moves have no effect
            return {}
