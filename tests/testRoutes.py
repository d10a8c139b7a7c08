import pytest

from solfa_editor import app, fakePerSessionDB


@pytest.fixture
def client():
    app.config['TESTING'] = True
    fakePerSessionDB.clear()
    with app.test_client() as client:
        client.set_cookie('sessionUUID', 'test-session')
        yield client
    fakePerSessionDB.clear()


def testIndexSetsSessionCookie():
    fakePerSessionDB.clear()
    with app.test_client() as client:
        response = client.get('/')
        assert response.status_code == 200
        assert 'sessionUUID=' in response.headers['Set-Cookie']
        state = response.get_json()['state']
        assert state['measureCount'] == 16
        assert state['historyLength'] == 1


def testIndexWithSession(client):
    response = client.get('/')
    assert response.status_code == 200
    assert 'Set-Cookie' not in response.headers
    assert 'test-session' in fakePerSessionDB


def testRequestsWithoutSessionAreRejected():
    with app.test_client() as client:
        assert client.post('/note', data={'voicePart': 'S', 'position': '0'}).status_code == 400


def testAddAndRemoveNote(client):
    response = client.post('/note', data={
        'voicePart': 'S', 'position': '0', 'type': 'd', 'duration': 'half'
    })
    assert response.status_code == 200
    state = response.get_json()['state']
    assert [n['type'] for n in state['tracks']['B']] == ['d']
    assert state['tracks']['S'][0]['duration'] == 'half'

    # the engine survives between requests
    response = client.post('/note', data={
        'action': 'remove', 'voicePart': 'B', 'position': '0'
    })
    body = response.get_json()
    assert body['changed'] is True
    assert body['state']['tracks']['B'] == []


def testBadNoteRequests(client):
    assert client.post('/note', data={'voicePart': 'X', 'position': '0'}).status_code == 400
    assert client.post('/note', data={'voicePart': 'S'}).status_code == 400
    assert client.post('/note', data={
        'voicePart': 'S', 'position': 'zero', 'type': 'd'
    }).status_code == 400
    assert client.post('/note', data={
        'voicePart': 'S', 'position': '0', 'type': 'q'
    }).status_code == 400
    assert client.post('/note', data={
        'action': 'smudge', 'voicePart': 'S', 'position': '0'
    }).status_code == 400


def testToolAndApplyTool(client):
    client.post('/note', data={'voicePart': 'A', 'position': '2', 'type': 'm'})
    response = client.post('/tool', data={'category': 'accidental', 'value': 'sharp'})
    assert response.status_code == 200

    response = client.post('/note', data={'action': 'applyTool', 'voicePart': 'A', 'position': '2'})
    assert response.get_json()['state']['tracks']['A'][0]['accidental'] == 'sharp'

    assert client.post('/tool', data={'category': 'eraser'}).status_code == 400


def testShortcut(client):
    client.post('/note', data={'voicePart': 'A', 'position': '0', 'type': 'd'})

    response = client.post('/shortcut', data={'key': 'z', 'ctrl': 'true'})
    body = response.get_json()
    assert body['handled'] is True
    assert body['action'] == 'undo'
    assert body['state']['tracks']['A'] == []

    response = client.post('/shortcut', data={'key': 'q', 'ctrl': 'true'})
    assert response.get_json() == {'handled': False}


def testCommands(client):
    client.post('/note', data={'voicePart': 'T', 'position': '4', 'type': 'd'})

    response = client.post('/command', data={
        'command': 'setSelection', 'startMeasure': '1', 'endMeasure': '1', 'parts': 'T,B'
    })
    assert response.get_json()['state']['selection']['selectedParts'] == ['T', 'B']

    response = client.post('/command', data={'command': 'transpose', 'steps': '2'})
    body = response.get_json()
    assert body['changed'] is True
    assert body['state']['tracks']['T'][0]['type'] == 'm'

    response = client.post('/command', data={'command': 'setTempo', 'tempo': '96'})
    assert response.get_json()['state']['tempo'] == 96

    response = client.post('/command', data={
        'command': 'setChord', 'measure': '0', 'segment': '0', 'root': 's', 'chordType': 'dominant7'
    })
    assert response.get_json()['state']['chords']['0-0']['symbol'] == 'G7'

    response = client.post('/command', data={'command': 'clearTrack', 'track': 'Chord'})
    assert response.get_json()['state']['chords'] == {}


def testCommandErrors(client):
    assert client.post('/command', data={'command': 'explode'}).status_code == 400
    assert client.post('/command', data={'command': 'setTempo', 'tempo': '0'}).status_code == 400
    assert client.post('/command', data={
        'command': 'setKeySignature', 'keySignature': 'H major'
    }).status_code == 400
    assert client.post('/command', data={
        'command': 'setSelection', 'startMeasure': '2', 'endMeasure': '1'
    }).status_code == 400
    assert client.post('/command', data={'command': 'clearTrack', 'track': 'Drums'}).status_code == 400


def testRemoveMeasureStopsAtOne(client):
    for _ in range(15):
        client.post('/command', data={'command': 'removeMeasure'})
    response = client.post('/command', data={'command': 'removeMeasure'})
    body = response.get_json()
    assert body['changed'] is False
    assert body['state']['measureCount'] == 1


def testPlayback(client):
    client.post('/note', data={'voicePart': 'S', 'position': '1', 'type': 'l'})
    response = client.get('/playback?parts=S')
    body = response.get_json()
    assert body['tempo'] == 120
    assert len(body['events']) == 1
    assert body['events'][0]['startMs'] == 500.0
    assert body['events'][0]['frequency'] == pytest.approx(440.0)

    assert client.get('/playback?parts=Q').status_code == 400


def testDownloads(client):
    client.post('/note', data={'voicePart': 'S', 'position': '0', 'type': 'd'})

    response = client.get('/musicxml')
    assert response.status_code == 200
    assert 'attachment' in response.headers['Content-Disposition']
    assert b'<score-partwise' in response.data

    # cached until the next edit
    assert fakePerSessionDB['test-session']['musicxml']
    client.post('/note', data={'voicePart': 'S', 'position': '1', 'type': 'r'})
    assert fakePerSessionDB['test-session']['musicxml'] == b''

    assert b'**kern' in client.get('/humdrum').data
    assert b'<mei' in client.get('/mei').data


def testChangeDurationValidatesWithEmptySelection(client):
    response = client.post('/command', data={'command': 'changeDuration', 'duration': 'bogus'})
    assert response.status_code == 400
    response = client.post('/command', data={'command': 'changeDuration', 'duration': 'half'})
    assert response.get_json()['changed'] is False


def testFlatKeyExport(client):
    client.post('/command', data={'command': 'setKeySignature', 'keySignature': 'Bb major'})
    client.post('/note', data={'voicePart': 'A', 'position': '0', 'type': 'd'})
    client.post('/note', data={'voicePart': 'A', 'position': '0', 'subPosition': '2', 'type': 'r'})
    response = client.get('/musicxml')
    assert response.status_code == 200
    assert b'<fifths>-2</fifths>' in response.data
