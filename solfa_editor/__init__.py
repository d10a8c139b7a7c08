import typing as t
import os
import uuid
import zlib
from io import BytesIO

from flask import (
    Flask,
    Response,
    request,
    make_response,
    abort,
    send_file
)

from .scale import SolfaEngineException
from .scale import InKeyStrategy
from .notes import VoicePart
from .notes import toVoicePart
from .history import ShortcutAction
from .editor_engine import EditorEngine
from .editor_engine import TrackKind
from .editor_engine import makeTool

# flask knows how to find this (it has a standard name) when passed
# solfa_editor on the flask command line, e.g.
#       flask --app solfa_editor run --debug

# create and configure the app
app = Flask(__name__, instance_relative_config=True)
app.config.from_mapping(
    SECRET_KEY='dev',
    SESSION_UUID_COOKIE_SECURE=True,
    DEFAULT_TIME_SIGNATURE='4/4',
    DEFAULT_KEY_SIGNATURE='C major',
    DEFAULT_TEMPO=120,
    DEFAULT_MEASURE_COUNT=16,
    STRICT_VOICE_LEADING=False,
    IN_KEY_STRATEGY=InKeyStrategy.Legacy.value,
)

app.config.from_pyfile('config.py', silent=True)

# fakePerSessionDB is keyed by sessionUUID, and the value is a session dict that
# contains some of the following:
# {
#   'editorEngine': frozenEditorEngine,
#   'mei': zippedMeiString,
#   'humdrum': zippedHumdrumString,
#   'musicxml': zippedMusicXMLString
# }
# Because it is faked with a dict, everytime we restart the server, it goes away.
# It also doesn't support multiple instances of the server (since each will have
# its own fake DB).
fakePerSessionDB: dict[str, dict[str, bytes]] = {}

# ensure the instance folder exists
try:
    os.makedirs(app.instance_path)
except OSError:
    pass


FMT_TO_FILE_EXT: dict[str, str] = {
    'musicxml': 'musicxml',
    'humdrum': 'krn',
    'mei': 'mei'
}


def newEditorEngine() -> EditorEngine:
    return EditorEngine(
        timeSignature=app.config['DEFAULT_TIME_SIGNATURE'],
        keySignatureName=app.config['DEFAULT_KEY_SIGNATURE'],
        tempo=int(app.config['DEFAULT_TEMPO']),
        measureCount=int(app.config['DEFAULT_MEASURE_COUNT']),
        strictVoiceLeading=bool(app.config['STRICT_VOICE_LEADING']),
        inKeyStrategy=app.config['IN_KEY_STRATEGY']
    )


# "database" access routines (keyed by sessionUUID)
def getSessionData(sessionUUID: str) -> dict[str, bytes]:
    if sessionUUID not in fakePerSessionDB:
        fakePerSessionDB[sessionUUID] = {}
    return fakePerSessionDB[sessionUUID]


def getEditorEngineForSession(sessionUUID: str) -> EditorEngine:
    sessionData: dict[str, bytes] = getSessionData(sessionUUID)
    ee: EditorEngine | None = None
    if 'editorEngine' in sessionData:
        ee = EditorEngine.thaw(sessionData['editorEngine'])

    if ee is None:
        print(f'{sessionUUID}: no editor engine in session, starting a new one')
        ee = newEditorEngine()

    def logChange(engine: EditorEngine, event: str):
        print(f'{sessionUUID}: {event} changed')

    ee.subscribe(logChange)
    return ee


def storeEditorEngineForSession(
    ee: EditorEngine,
    sessionUUID: str,
    clearCachedFormats: bool = True
):
    sessionData: dict[str, bytes] = getSessionData(sessionUUID)
    sessionData['editorEngine'] = ee.freeze()

    if clearCachedFormats:
        # clear the cached formats of the score
        for key in FMT_TO_FILE_EXT:
            sessionData[key] = b''


def getTextScoreForSession(key: str, sessionUUID: str, cacheIt: bool = True) -> str:
    if key not in FMT_TO_FILE_EXT:
        return ''

    sessionData: dict[str, bytes] = getSessionData(sessionUUID)
    output: str = ''

    if sessionData.get(key):
        try:
            output = zlib.decompress(sessionData[key]).decode('utf-8')
        except zlib.error:
            print(f'{sessionUUID}: cached {key} is corrupt, regenerating it')
        if output:
            return output

    # couldn't use sessionData[key] (cached format), regenerate it from 'editorEngine'
    ee: EditorEngine = getEditorEngineForSession(sessionUUID)
    try:
        print(f'{sessionUUID}: producing {key}')
        if key == 'mei':
            output = ee.toMei()
        elif key == 'musicxml':
            output = ee.toMusicXML()
        else:
            output = ee.toHumdrum()
    except Exception as e:
        print(f'{sessionUUID}: failed to export {key}: {e}')
        abort(422, f'Failed to export {key}')  # Unprocessable Content

    if cacheIt:
        sessionData[key] = zlib.compress(output.encode('utf-8'))

    return output


def requireSessionUUID() -> str:
    sessionUUID: str | None = request.cookies.get('sessionUUID')
    if not sessionUUID:
        abort(400, 'No sessionUUID!')
    if t.TYPE_CHECKING:
        assert sessionUUID is not None
    return sessionUUID


def formInt(name: str, default: int | None = None) -> int:
    valueStr: str = request.form.get(name, '')
    if not valueStr:
        if default is None:
            print(f'Invalid request (no {name} specified)')
            abort(400, f'Invalid request (no {name} specified)')
        if t.TYPE_CHECKING:
            assert default is not None
        return default

    try:
        return int(valueStr)
    except ValueError:
        print(f'Invalid request (invalid {name} specified: "{valueStr}")')
        abort(400, f'Invalid request (invalid {name} specified: "{valueStr}")')


def formBool(name: str) -> bool:
    return request.form.get(name, '').lower() in ('1', 'true', 'yes', 'on')


def formStr(name: str) -> str:
    valueStr: str = request.form.get(name, '')
    if not valueStr:
        print(f'Invalid request (no {name} specified)')
        abort(400, f'Invalid request (no {name} specified)')
    return valueStr


def produceResult(ee: EditorEngine, sessionUUID: str, **extra: t.Any) -> dict[str, t.Any]:
    storeEditorEngineForSession(ee, sessionUUID)
    result: dict[str, t.Any] = {'state': ee.toDict()}
    result.update(extra)
    return result


@app.route('/')
def index() -> Response | dict:
    sessionUUID: str | None = request.cookies.get('sessionUUID')
    if not sessionUUID:
        sessionUUID = str(uuid.uuid4())
        print(f'index: new uuid = {sessionUUID}')
        ee: EditorEngine = getEditorEngineForSession(sessionUUID)
        resp = make_response(produceResult(ee, sessionUUID))
        # return the sessionUUID as a cookie in the response
        oneMonth: int = 31 * 24 * 3600
        resp.set_cookie(
            'sessionUUID',
            value=sessionUUID,
            max_age=oneMonth,
            secure=bool(app.config['SESSION_UUID_COOKIE_SECURE']),
            httponly=True
        )
        return resp

    print(f'index: uuid = {sessionUUID}')
    return produceResult(getEditorEngineForSession(sessionUUID), sessionUUID)


@app.route('/note', methods=['POST'])
def note() -> dict:
    sessionUUID: str = requireSessionUUID()
    action: str = request.form.get('action', 'add')
    print(f'note: uuid = {sessionUUID}, action = {action}')

    ee: EditorEngine = getEditorEngineForSession(sessionUUID)
    changed: bool = True
    try:
        voicePart: VoicePart = toVoicePart(formStr('voicePart'))
        position: int = formInt('position')
        subPosition: int = formInt('subPosition', 0)
        if action == 'add':
            ee.addNote(
                voicePart,
                position,
                subPosition,
                formStr('type'),
                octave=formInt('octave', 0),
                duration=request.form.get('duration') or None,
                subdivision=request.form.get('subdivision'),
                accidental=request.form.get('accidental') or None
            )
        elif action == 'remove':
            changed = ee.removeNote(voicePart, position, subPosition)
        elif action == 'applyTool':
            changed = ee.applyTool(voicePart, position, subPosition)
        else:
            print(f'Invalid note action: {action}')
            abort(400, 'Invalid note action')
    except SolfaEngineException as e:
        print(f'note: {action} failed: {e}')
        abort(400, str(e))

    return produceResult(ee, sessionUUID, changed=changed)


@app.route('/tool', methods=['POST'])
def tool() -> dict:
    sessionUUID: str = requireSessionUUID()
    category: str = formStr('category')
    value: str = request.form.get('value', '')
    print(f'tool: uuid = {sessionUUID}, category = {category}, value = {value}')

    ee: EditorEngine = getEditorEngineForSession(sessionUUID)
    try:
        ee.selectTool(makeTool(category, value))
    except SolfaEngineException as e:
        abort(400, str(e))

    return produceResult(ee, sessionUUID)


@app.route('/shortcut', methods=['POST'])
def shortcut() -> dict:
    sessionUUID: str = requireSessionUUID()
    key: str = formStr('key')
    ctrl: bool = formBool('ctrl')
    print(f'shortcut: uuid = {sessionUUID}, key = {key}, ctrl = {ctrl}')

    ee: EditorEngine = getEditorEngineForSession(sessionUUID)
    action: ShortcutAction | None = ee.handleKey(key, ctrl)
    if action is None:
        # left to the browser
        return {'handled': False}

    return produceResult(ee, sessionUUID, handled=True, action=action.value)


@app.route('/command', methods=['POST'])
def command() -> dict:
    sessionUUID: str = requireSessionUUID()

    # it's a command (like 'transpose'), maybe with some command-defined parameters
    cmd: str = request.form.get('command', '')
    print(f'command: uuid = {sessionUUID}, cmd = {cmd}')

    ee: EditorEngine = getEditorEngineForSession(sessionUUID)
    changed: bool | None = None
    try:
        if cmd == 'transpose':
            changed = ee.transposeSelection(formInt('steps'))
        elif cmd == 'changeDuration':
            changed = ee.changeSelectionDuration(formStr('duration'))
        elif cmd == 'setSelection':
            partsStr: str = request.form.get('parts', '')
            ee.setSelection(
                formInt('startMeasure'),
                formInt('endMeasure'),
                formInt('startBeat', 0),
                formInt('endBeat') if request.form.get('endBeat') else None,
                parts=partsStr.split(',') if partsStr else None
            )
        elif cmd == 'toggleSelectedPart':
            ee.toggleSelectedPart(formStr('voicePart'))
        elif cmd == 'setKeySignature':
            ee.setKeySignature(formStr('keySignature'))
        elif cmd == 'setTimeSignature':
            ee.setTimeSignature(formStr('timeSignature'))
        elif cmd == 'setTempo':
            changed = ee.setTempo(formInt('tempo'))
        elif cmd == 'addMeasure':
            ee.addMeasure()
        elif cmd == 'removeMeasure':
            changed = ee.removeMeasure()
        elif cmd == 'setChord':
            changed = ee.setChord(
                formInt('measure'),
                formInt('segment'),
                formStr('root'),
                request.form.get('chordType') or 'major'
            )
        elif cmd == 'removeChord':
            changed = ee.removeChord(formInt('measure'), formInt('segment'))
        elif cmd == 'setLyric':
            changed = ee.setLyric(
                formInt('measure'),
                formInt('segment'),
                formInt('box'),
                request.form.get('text', '')
            )
        elif cmd == 'removeLyric':
            changed = ee.removeLyric(formInt('measure'), formInt('segment'), formInt('box'))
        elif cmd == 'setMarker':
            changed = ee.setMarker(
                formInt('measure'), formInt('segment'), request.form.get('text', '')
            )
        elif cmd == 'removeMarker':
            changed = ee.removeMarker(formInt('measure'), formInt('segment'))
        elif cmd == 'addDynamic':
            ee.addDynamic(
                formInt('position'),
                formStr('dynamic'),
                request.form.get('voicePart') or None
            )
        elif cmd == 'removeDynamic':
            changed = ee.removeDynamic(formStr('id'))
        elif cmd == 'clearTrack':
            try:
                kind: TrackKind = TrackKind(formStr('track'))
            except ValueError:
                abort(400, 'Invalid clearTrack (unknown track)')
            ee.clearTrack(kind)
        elif cmd == 'clearAll':
            ee.clearAll()
        elif cmd == 'undo':
            changed = ee.undo()
        elif cmd == 'redo':
            changed = ee.redo()
        elif cmd == 'copy':
            changed = ee.copy()
        elif cmd == 'paste':
            changed = ee.paste()
        elif cmd == 'delete':
            changed = ee.deleteSelection()
        else:
            print(f'Invalid editor command: {cmd}')
            abort(400, 'Invalid editor command')
    except SolfaEngineException as e:
        print(f'command: {cmd} failed: {e}')
        abort(400, str(e))

    if changed is None:
        return produceResult(ee, sessionUUID)
    return produceResult(ee, sessionUUID, changed=changed)


@app.route('/playback', methods=['GET'])
def playback() -> dict:
    sessionUUID: str = requireSessionUUID()
    partsStr: str = request.args.get('parts', '')
    ee: EditorEngine = getEditorEngineForSession(sessionUUID)
    try:
        events = ee.playbackSchedule(partsStr.split(',') if partsStr else None)
    except SolfaEngineException as e:
        abort(400, str(e))
    return {'tempo': ee.tempo, 'events': [e.toDict() for e in events]}


def downloadScore(key: str, downloadName: str) -> Response:
    sessionUUID: str = requireSessionUUID()
    scoreStr: str = getTextScoreForSession(key, sessionUUID)
    scoreBytes: bytes = scoreStr.encode('utf-8')
    return send_file(BytesIO(scoreBytes), download_name=downloadName, as_attachment=True)


@app.route('/musicxml', methods=['GET'])
def musicxml() -> Response:
    return downloadScore('musicxml', 'Score.musicxml')


@app.route('/humdrum', methods=['GET'])
def humdrum() -> Response:
    return downloadScore('humdrum', 'Score.krn')


@app.route('/mei', methods=['GET'])
def mei() -> Response:
    return downloadScore('mei', 'Score.mei')
