import pytest  # noqa
import gitsubmit
import os


@pytest.fixture(scope="function", autouse=True)
def settestdefaults(tmp_path, monkeypatch):
    gitsubmit.can_network = False
    gitsubmit.MAIN_CONFIG = dict(gitsubmit.DEFAULT_CONFIG)
    gitsubmit.REQSESSION = None
    # Keep the user's own git config out of the way
    home = tmp_path / 'home'
    home.mkdir()
    monkeypatch.setenv('HOME', str(home))
    monkeypatch.setenv('XDG_CONFIG_HOME', str(home))
    monkeypatch.setenv('GIT_CONFIG_NOSYSTEM', '1')
    monkeypatch.setenv('EDITOR', 'true')


def git_commit(gitdir, filename, message):
    with open(os.path.join(gitdir, filename), 'w') as fh:
        fh.write("Hello it's me!\n")
    ecode, out = gitsubmit.git_run_command(gitdir, ['add', filename])
    assert ecode == 0
    ecode, out = gitsubmit.git_run_command(gitdir, ['commit', '-q', '-m', message], logstderr=True)
    assert ecode == 0, out
    return gitsubmit.git_get_head(gitdir)


@pytest.fixture(scope="function")
def add_commit():
    return git_commit


@pytest.fixture(scope="function")
def gitdir(tmp_path):
    """Three commits on master, with branch test pointing at the first one."""
    dest = str(tmp_path / 'repo')
    ecode, out = gitsubmit.git_run_command(None, ['init', '-q', dest])
    assert ecode == 0
    gitsubmit.git_run_command(dest, ['symbolic-ref', 'HEAD', 'refs/heads/master'])
    gitsubmit.git_set_config(dest, 'user.name', 'Test Override')
    gitsubmit.git_set_config(dest, 'user.email', 'test-override@example.com')
    gitsubmit.git_set_config(dest, 'commit.gpgsign', 'false')
    commit1 = git_commit(dest, '1', 'commit 1')
    git_commit(dest, '2', 'commit 2')
    git_commit(dest, '3', 'commit 3')
    ecode, out = gitsubmit.git_run_command(dest, ['branch', 'test', commit1])
    assert ecode == 0
    yield dest
