# SPDX-License-Identifier: GPL-2.0-or-later
# Copyright (C) 2020 by the Linux Foundation
#
# Working out which commits make up the series we are about to submit.
import gitsubmit

from typing import Optional, List, Set, Iterator, Iterable

logger = gitsubmit.logger


class RevisionRange:
    """Commits unique to the current branch, newest first."""
    commits: List[str]

    def __init__(self, commits: Optional[Iterable[str]] = None):
        self.commits = list(commits) if commits else list()

    def __len__(self):
        return len(self.commits)

    def __iter__(self):
        return iter(self.commits)

    def __getitem__(self, item):
        return self.commits[item]

    def __repr__(self):
        out = list()
        out.append('--- RevisionRange (%s commits) ---' % len(self.commits))
        for commit in self.commits:
            out.append('  %s' % commit)
        return '\n'.join(out)

    @property
    def newest(self) -> str:
        return self.commits[0]

    @property
    def oldest(self) -> str:
        return self.commits[-1]

    @property
    def base(self) -> str:
        # The commit right before the series, which is what we rebuild on top of
        return f'{self.oldest}~'

    @property
    def range_expr(self) -> str:
        return f'{self.oldest}~..{self.newest}'


def current_branch(gitdir: Optional[str]) -> str:
    mybranch = gitsubmit.git_get_current_branch(gitdir, short=False)
    if not mybranch or not mybranch.startswith('refs/heads/'):
        raise gitsubmit.NoCurrentBranch('No branch is pointing to HEAD (detached HEAD?)')
    return mybranch


def get_boundary_prefixes() -> List[str]:
    config = gitsubmit.get_main_config()
    prefixes = list()
    for entry in config.get('boundary-refs', 'refs/heads/').split(','):
        entry = entry.strip()
        if entry:
            prefixes.append(entry)
    return prefixes


def get_boundary_tips(gitdir: Optional[str], exclude: str) -> Set[str]:
    """Tips of every boundary ref other than the one named in exclude.

    A foreign branch that points at the same commit as ours still counts."""
    tips = set()
    for refname, objectname in gitsubmit.git_get_ref_tips(gitdir, get_boundary_prefixes()).items():
        if refname == exclude:
            continue
        logger.debug('Boundary tip %s at %s', refname, objectname)
        tips.add(objectname)
    return tips


def walk_history(gitdir: Optional[str], start: str = 'HEAD') -> Iterator[str]:
    return gitsubmit.git_iter_command_lines(gitdir, ['rev-list', start])


def take_until_boundary(history: Iterator[str], boundary: Set[str]) -> Iterator[str]:
    for commit in history:
        if commit in boundary:
            logger.debug('Reached boundary commit %s', commit)
            return
        yield commit


def resolve(gitdir: Optional[str]) -> RevisionRange:
    mybranch = current_branch(gitdir)
    if gitsubmit.git_get_head(gitdir) is None:
        raise gitsubmit.ResolutionFailed('Could not read HEAD of %s (no commits yet?)' % mybranch)

    boundary = get_boundary_tips(gitdir, mybranch)
    history = walk_history(gitdir)
    try:
        revrange = RevisionRange(take_until_boundary(history, boundary))
    finally:
        history.close()

    if not len(revrange):
        raise gitsubmit.EmptySeries('Nothing to submit: %s has no commits of its own' % mybranch)

    # We rebuild on top of the commit before the series, so it has to exist
    try:
        gitsubmit.git_revparse_obj(f'{revrange.base}^{{commit}}', gitdir=gitdir)
    except gitsubmit.ResolutionFailed:
        raise gitsubmit.ResolutionFailed('Series reaches the root commit %s, nothing to rebuild on'
                                         % revrange.oldest)

    logger.debug('Resolved %s commits for %s', len(revrange), mybranch)
    return revrange
