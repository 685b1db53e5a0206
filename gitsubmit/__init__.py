# SPDX-License-Identifier: GPL-2.0-or-later
# Copyright (C) 2020 by the Linux Foundation
import subprocess
import logging
import re
import os
import copy
import email.utils
import urllib.parse

import requests

from typing import Optional, Tuple, List, Dict, Iterator

__VERSION__ = '0.3.0'

logger = logging.getLogger('gitsubmit')

# global setting allowing us to turn off networking
can_network = True

OUTPUT_PREFIX = 'output-'

DEFAULT_CONFIG = {
    # Where to look up previous messages when --in-reply-to is given
    'midmask': 'https://lore.kernel.org/all/%s',
    # Editor command line; falls back to $EDITOR when not set
    'editor': None,
    # Flags used when reapplying the edited patches
    'am-flags': '--3way',
    # Comma-separated ref prefixes whose tips bound the series
    'boundary-refs': 'refs/heads/',
    # Refuse to send version 2+ without --in-reply-to
    'require-in-reply-to': 'yes',
    # When sending mail, use this sendemail identity configuration
    'sendemail-identity': None,
    # Sign patches with patatt before handing them to send-email
    'patatt-sign': 'no',
}

# This is where we store actual config
MAIN_CONFIG = None
# Used for storing our requests session
REQSESSION = None


class SubmitError(RuntimeError):
    pass


class PreconditionError(SubmitError):
    pass


class NoCurrentBranch(PreconditionError):
    pass


class EmptySeries(PreconditionError):
    pass


class ResolutionFailed(SubmitError):
    pass


class ConfigError(SubmitError):
    pass


class ToolError(SubmitError):
    """An external program exited with an error or could not be started."""
    pass


class GenerationFailed(ToolError):
    pass


class EditFailed(ToolError):
    pass


class ApplyFailed(ToolError):
    pass


class DispatchFailed(ToolError):
    pass


class TagError(SubmitError):
    pass


class NoRecipients(SubmitError):
    pass


class LookupFailed(SubmitError):
    pass


def _run_command(cmdargs: List[str], stdin: Optional[bytes] = None,
                 rundir: Optional[str] = None) -> Tuple[int, bytes, bytes]:
    if rundir:
        logger.debug('Running %s (in %s)', ' '.join(cmdargs), rundir)
    else:
        logger.debug('Running %s', ' '.join(cmdargs))
    sp = subprocess.Popen(cmdargs, stdout=subprocess.PIPE, stdin=subprocess.PIPE, stderr=subprocess.PIPE,
                          cwd=rundir)
    (output, error) = sp.communicate(input=stdin)

    return sp.returncode, output, error


def run_interactive(cmdargs: List[str], rundir: Optional[str] = None) -> int:
    """Run a program attached to our own stdin/stdout/stderr and wait for it.

    Raises OSError if the program cannot be started at all."""
    logger.debug('Running %s', ' '.join(cmdargs))
    sp = subprocess.Popen(cmdargs, cwd=rundir)
    return sp.wait()


def _git_base_args(gitdir: Optional[str]) -> Tuple[List[str], Optional[str]]:
    cmdargs = ['git', '--no-pager']
    rundir = None
    if gitdir:
        if os.path.exists(os.path.join(gitdir, '.git')):
            # Work tree operations (reset, am, format-patch) need to run from inside it
            rundir = gitdir
        else:
            cmdargs += ['--git-dir', gitdir]
    return cmdargs, rundir


def git_run_command(gitdir: Optional[str], args: List[str], stdin: Optional[bytes] = None,
                    logstderr: bool = False) -> Tuple[int, str]:
    cmdargs, rundir = _git_base_args(gitdir)

    # counteract some potential local settings
    if args[0] == 'log':
        args.insert(1, '--no-abbrev-commit')

    cmdargs += args

    ecode, out, err = _run_command(cmdargs, stdin=stdin, rundir=rundir)

    out = out.decode(errors='replace')

    if logstderr and len(err.strip()):
        err = err.decode(errors='replace')
        logger.debug('Stderr: %s', err)
        out += err

    return ecode, out


def git_get_command_lines(gitdir: Optional[str], args: list) -> List[str]:
    ecode, out = git_run_command(gitdir, args)
    lines = list()
    if out:
        for line in out.split('\n'):
            if line == '':
                continue
            lines.append(line)

    return lines


def git_iter_command_lines(gitdir: Optional[str], args: List[str]) -> Iterator[str]:
    """Lazily yield output lines of a git command as it produces them.

    The git process is terminated if the consumer stops iterating early.
    Raises ResolutionFailed if git exits with an error after producing no output."""
    cmdargs, rundir = _git_base_args(gitdir)
    cmdargs += args
    logger.debug('Streaming %s', ' '.join(cmdargs))
    sp = subprocess.Popen(cmdargs, stdout=subprocess.PIPE, stderr=subprocess.PIPE, cwd=rundir)
    produced = False
    finished = False
    try:
        for bline in sp.stdout:
            line = bline.decode(errors='replace').rstrip('\n')
            if not line:
                continue
            produced = True
            yield line
        finished = True
    finally:
        if not finished and sp.poll() is None:
            sp.terminate()
        sp.stdout.close()
        err = sp.stderr.read()
        sp.stderr.close()
        ecode = sp.wait()
    if ecode > 0 and not produced:
        raise ResolutionFailed('git %s failed: %s' % (args[0], err.decode(errors='replace').strip()))


def git_get_repo_status(gitdir: Optional[str] = None, untracked: bool = False) -> List[str]:
    args = ['status', '--porcelain=v1']
    if not untracked:
        args.append('--untracked-files=no')
    return git_get_command_lines(gitdir, args)


def git_is_clean(gitdir: Optional[str] = None) -> bool:
    return not len(git_get_repo_status(gitdir))


def git_get_toplevel(path: Optional[str] = None) -> Optional[str]:
    topdir = None
    # Are we in a git tree and if so, what is our toplevel?
    gitargs = ['rev-parse', '--show-toplevel']
    if path:
        gitargs = ['-C', path] + gitargs
    lines = git_get_command_lines(None, gitargs)
    if len(lines) == 1:
        topdir = lines[0]
    return topdir


def git_get_current_branch(gitdir: Optional[str] = None, short: bool = True) -> Optional[str]:
    gitargs = ['symbolic-ref', '-q', 'HEAD']
    ecode, out = git_run_command(gitdir, gitargs)
    if ecode > 0:
        logger.debug('Not able to get current branch (git symbolic-ref HEAD)')
        return None
    mybranch = out.strip()
    if short:
        return re.sub(r'^refs/heads/', '', mybranch)
    return mybranch


def git_get_head(gitdir: Optional[str] = None) -> Optional[str]:
    ecode, out = git_run_command(gitdir, ['rev-parse', '--verify', '-q', 'HEAD^{commit}'])
    if ecode > 0:
        return None
    return out.strip()


def git_get_ref_tips(gitdir: Optional[str], prefixes: List[str]) -> Dict[str, str]:
    """Map full ref names under the given prefixes to the commit they point at."""
    gitargs = ['for-each-ref', '--format=%(objectname) %(refname)'] + prefixes
    tips = dict()
    for line in git_get_command_lines(gitdir, gitargs):
        objectname, refname = line.split(' ', 1)
        tips[refname] = objectname
    return tips


def git_get_tag_names(gitdir: Optional[str], pattern: str) -> List[str]:
    return git_get_command_lines(gitdir, ['tag', '-l', pattern])


def git_reset_hard(gitdir: Optional[str], commitish: str) -> Tuple[int, str]:
    return git_run_command(gitdir, ['reset', '--hard', commitish], logstderr=True)


def git_get_path(gitdir: str, name: str) -> str:
    """Resolve a path inside the git directory (handles linked worktrees)."""
    ecode, out = git_run_command(gitdir, ['rev-parse', '--git-path', name])
    path = out.strip()
    if ecode > 0 or not path:
        path = os.path.join('.git', name)
    if not os.path.isabs(path):
        path = os.path.join(gitdir, path)
    return path


def git_revparse_obj(gitobj: str, gitdir: Optional[str] = None) -> str:
    ecode, out = git_run_command(gitdir, ['rev-parse', '--verify', '-q', gitobj])
    if ecode > 0:
        raise ResolutionFailed('No such object: %s' % gitobj)
    return out.strip()


def git_set_config(fullpath: Optional[str], param: str, value: str, operation: str = '--replace-all'):
    args = ['config', operation, param, value]
    ecode, out = git_run_command(fullpath, args)
    return ecode


def get_config_from_git(regexp: str, defaults: Optional[dict] = None,
                        multivals: Optional[list] = None, gitdir: Optional[str] = None) -> dict:
    if multivals is None:
        multivals = list()
    args = ['config', '-z', '--get-regexp', regexp]
    ecode, out = git_run_command(gitdir, args)
    gitconfig = defaults
    if not gitconfig:
        gitconfig = dict()
    if not out:
        return gitconfig

    for line in out.split('\x00'):
        if not line:
            continue
        try:
            key, value = line.split('\n', 1)
        except ValueError:
            logger.debug('Ignoring git config entry %s', line)
            continue
        chunks = key.split('.')
        cfgkey = chunks[-1].lower()
        if cfgkey in multivals:
            if cfgkey not in gitconfig:
                gitconfig[cfgkey] = list()
            gitconfig[cfgkey].append(value)
        else:
            gitconfig[cfgkey] = value

    return gitconfig


def get_main_config(gitdir: Optional[str] = None) -> dict:
    global MAIN_CONFIG
    if MAIN_CONFIG is None:
        defcfg = copy.deepcopy(DEFAULT_CONFIG)
        config = get_config_from_git(r'submit\..*', defaults=defcfg, gitdir=gitdir)
        MAIN_CONFIG = config

    return MAIN_CONFIG


def config_is_true(value: Optional[str]) -> bool:
    if value is None:
        return False
    return str(value).lower() in {'yes', 'true', 'y', '1', 'on'}


def get_requests_session():
    global REQSESSION
    if REQSESSION is None:
        REQSESSION = requests.session()
        REQSESSION.headers.update({'User-Agent': 'git-submit/%s' % __VERSION__})
    return REQSESSION


def get_clean_msgid(msgid: Optional[str]) -> Optional[str]:
    if msgid is None:
        return None
    msgid = msgid.strip().strip('<>')
    if not msgid:
        return None
    # Does it look like a public-inbox URL?
    matches = re.search(r'^https?://[^/]+/([^/]+)/([^/]+@[^/]+)', msgid, re.IGNORECASE)
    if matches:
        chunks = matches.groups()
        msgid = urllib.parse.unquote(chunks[1])
    # Handle special case when msgid is prepended by id: or rfc822msgid:
    if msgid.find('id:') >= 0:
        msgid = re.sub(r'^\w*id:', '', msgid)

    return msgid


def format_addrs(pairs: List[Tuple[str, str]]) -> List[str]:
    addrs = list()
    for pair in pairs:
        if not pair[0] or pair[0] == pair[1]:
            addrs.append(pair[1])
            continue
        addrs.append(email.utils.formataddr(pair))
    return addrs


def get_output_dir(topdir: str, branch: str) -> str:
    return os.path.join(topdir, '%s%s' % (OUTPUT_PREFIX, branch.replace('/', '_')))
