import pytest  # noqa
import gitsubmit
import gitsubmit.series
import gitsubmit.patches
import gitsubmit.send
import requests

from types import SimpleNamespace

PREV_MSG = b"""From: Thomas Gummerer <t.gummerer@example.com>
To: git@vger.example.org
Cc: peff@example.net, Junio C Hamano <gitster@example.com>,
 Thomas Gummerer <t.gummerer@example.com>
Subject: [PATCH 0/2] frobnicate the widgets
Message-Id: <1453136238-19448-1-git-send-email-t.gummerer@example.com>

Hello.
"""


class FakeResponse:
    def __init__(self, content, status=200):
        self.content = content
        self.status_code = status

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError('%s error' % self.status_code)

    def close(self):
        pass


class FakeSession:
    def __init__(self, response=None, exc=None):
        self.urls = list()
        self.response = response
        self.exc = exc

    def get(self, url):
        self.urls.append(url)
        if self.exc:
            raise self.exc
        return self.response


@pytest.fixture(scope="function")
def online(monkeypatch):
    session = FakeSession(response=FakeResponse(PREV_MSG))
    gitsubmit.can_network = True
    monkeypatch.setattr(gitsubmit, 'get_requests_session', lambda: session)
    return session


@pytest.fixture(scope="function")
def patchset(gitdir):
    revrange = gitsubmit.series.resolve(gitdir)
    yield gitsubmit.patches.format_patches(gitdir, revrange, 'master', 1)


def test_get_thread_addresses(online):
    tos, froms, ccs = gitsubmit.send.get_thread_addresses('1453136238-19448-1-git-send-email-t.gummerer@example.com')
    assert online.urls == [
        'https://lore.kernel.org/all/1453136238-19448-1-git-send-email-t.gummerer@example.com/raw'
    ]
    assert tos == ['git@vger.example.org']
    assert froms == ['Thomas Gummerer <t.gummerer@example.com>']
    assert ccs == ['peff@example.net', 'Junio C Hamano <gitster@example.com>',
                   'Thomas Gummerer <t.gummerer@example.com>']


def test_resolve_recipients_command_line():
    to, cc = gitsubmit.send.resolve_recipients(['test@example.com', 'snd@example.com'], None)
    assert to == ['test@example.com', 'snd@example.com']
    assert cc == []


def test_resolve_recipients_from_thread(online):
    to, cc = gitsubmit.send.resolve_recipients(['test@example.com'], ['peff@example.net'],
                                               in_reply_to='some@msgid')
    assert to == ['test@example.com', 'git@vger.example.org', 'Thomas Gummerer <t.gummerer@example.com>']
    assert cc == ['peff@example.net', 'Junio C Hamano <gitster@example.com>',
                  'Thomas Gummerer <t.gummerer@example.com>']


def test_resolve_recipients_offline(monkeypatch):
    monkeypatch.setattr(gitsubmit.send, 'get_thread_addresses',
                        lambda msgid: pytest.fail('should not look anything up'))
    to, cc = gitsubmit.send.resolve_recipients(['test@example.com'], None, in_reply_to='some@msgid')
    assert to == ['test@example.com']


@pytest.mark.parametrize('session', [
    FakeSession(exc=requests.exceptions.ConnectionError('no route')),
    FakeSession(response=FakeResponse(b'', status=404)),
])
def test_lookup_failure(monkeypatch, session):
    gitsubmit.can_network = True
    monkeypatch.setattr(gitsubmit, 'get_requests_session', lambda: session)
    with pytest.raises(gitsubmit.LookupFailed):
        gitsubmit.send.resolve_recipients(None, None, in_reply_to='some@msgid')


def test_send_patches_no_recipients(gitdir, patchset, monkeypatch):
    monkeypatch.setattr(gitsubmit, 'run_interactive', lambda *a, **kw: pytest.fail('should not run'))
    with pytest.raises(gitsubmit.NoRecipients):
        gitsubmit.send.send_patches(gitdir, patchset, [], [])


def test_send_patches_args(gitdir, patchset, monkeypatch):
    calls = list()

    def fake_run(cmdargs, rundir=None):
        calls.append((cmdargs, rundir))
        return 0

    monkeypatch.setattr(gitsubmit, 'run_interactive', fake_run)
    gitsubmit.MAIN_CONFIG['sendemail-identity'] = 'work'
    gitsubmit.send.send_patches(gitdir, patchset, ['a@example.com'], ['b@example.com', 'c@example.com'],
                                in_reply_to='some@msgid', dryrun=True)
    assert calls == [(['git', 'send-email', '--identity=work', '--dry-run', '--to=a@example.com',
                       '--cc=b@example.com', '--cc=c@example.com', '--in-reply-to=some@msgid']
                      + patchset.artifacts, gitdir)]


@pytest.mark.parametrize('outcome', [1, FileNotFoundError('git')])
def test_send_patches_failure(gitdir, patchset, monkeypatch, outcome):
    def fake_run(cmdargs, rundir=None):
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    monkeypatch.setattr(gitsubmit, 'run_interactive', fake_run)
    with pytest.raises(gitsubmit.DispatchFailed):
        gitsubmit.send.send_patches(gitdir, patchset, ['a@example.com'], [])


def test_sign_patches_needs_patatt(patchset, monkeypatch):
    monkeypatch.setattr(gitsubmit.send, 'can_patatt', False)
    with pytest.raises(gitsubmit.ConfigError):
        gitsubmit.send.sign_patches(patchset)


def test_sign_patches(patchset, monkeypatch):
    class NoKeyError(Exception):
        pass

    class SigningError(Exception):
        pass

    signed = list()

    def rfc2822_sign(bdata):
        signed.append(bdata)
        return b'X-Developer-Signature: v=1; a=ed25519-sha256\n' + bdata

    fake = SimpleNamespace(rfc2822_sign=rfc2822_sign, NoKeyError=NoKeyError, SigningError=SigningError)
    monkeypatch.setattr(gitsubmit.send, 'patatt', fake, raising=False)
    monkeypatch.setattr(gitsubmit.send, 'can_patatt', True)
    gitsubmit.send.sign_patches(patchset)
    assert len(signed) == 2
    for bdata in signed:
        assert not bdata.startswith(b'From ')
    for artifact in patchset:
        with open(artifact, 'rb') as fh:
            lines = fh.read().split(b'\n')
        assert lines[0].startswith(b'From ')
        assert lines[1].startswith(b'X-Developer-Signature:')


def test_sign_patches_no_key(patchset, monkeypatch, caplog):
    class NoKeyError(Exception):
        pass

    class SigningError(Exception):
        pass

    def rfc2822_sign(bdata):
        raise NoKeyError('no signing key')

    fake = SimpleNamespace(rfc2822_sign=rfc2822_sign, NoKeyError=NoKeyError, SigningError=SigningError)
    monkeypatch.setattr(gitsubmit.send, 'patatt', fake, raising=False)
    monkeypatch.setattr(gitsubmit.send, 'can_patatt', True)
    with pytest.raises(gitsubmit.ConfigError, match='no key configured'):
        gitsubmit.send.sign_patches(patchset)
    # cmd_submit reports the error itself
    assert any('patatt genkey' in x.getMessage() for x in caplog.records)
    assert not any(x.getMessage().startswith('CRITICAL') for x in caplog.records)
