# SPDX-License-Identifier: GPL-2.0-or-later
# Copyright (C) 2020 by the Linux Foundation
#
import argparse
import sys
import gitsubmit
import gitsubmit.series
import gitsubmit.tags
import gitsubmit.patches
import gitsubmit.send

from typing import Optional, List

from gitsubmit.series import RevisionRange
from gitsubmit.patches import PatchSet

logger = gitsubmit.logger

STATE_CLEAN = 'clean'
STATE_GENERATED = 'patches-generated'
STATE_EDITED = 'edited'
STATE_REBUILDING = 'rebuilding'
STATE_REBUILT = 'rebuilt'
STATE_TAGGED = 'tagged'
STATE_SENT = 'sent'
STATE_ROLLED_BACK = 'rolled-back'


class SubmitSession:
    """One run of the pipeline against one repository.

    Each step moves the session forward by one state. When a step fails,
    abort() runs the compensating actions that belong to the furthest state
    reached, so a failed run never leaves a tag, a rewritten branch or patch
    files behind that it does not mean to.
    """
    gitdir: str
    branch: str
    revrange: RevisionRange
    version: int
    orig_head: Optional[str]
    patchset: Optional[PatchSet]
    state: str

    COMPENSATIONS = {
        STATE_CLEAN: (),
        STATE_GENERATED: ('remove_artifacts',),
        STATE_EDITED: ('remove_artifacts',),
        STATE_REBUILDING: ('restore_head', 'remove_artifacts'),
        STATE_REBUILT: ('remove_artifacts',),
        STATE_TAGGED: ('remove_tag', 'remove_artifacts'),
        STATE_SENT: ('remove_artifacts',),
        STATE_ROLLED_BACK: (),
    }

    def __init__(self, gitdir: str, branch: str, revrange: RevisionRange, version: int):
        self.gitdir = gitdir
        self.branch = branch
        self.revrange = revrange
        self.version = version
        self.orig_head = None
        self.patchset = None
        self.state = STATE_CLEAN

    def __repr__(self):
        return '<SubmitSession %s v%s state=%s>' % (self.branch, self.version, self.state)

    @classmethod
    def start(cls, gitdir: str) -> 'SubmitSession':
        if not gitsubmit.git_is_clean(gitdir):
            raise gitsubmit.PreconditionError('Repository contains uncommitted changes. '
                                              'Stash or commit them first.')
        mybranch = gitsubmit.series.current_branch(gitdir)
        revrange = gitsubmit.series.resolve(gitdir)
        branch = mybranch[len('refs/heads/'):]
        version = gitsubmit.tags.next_version(gitdir, branch)
        return cls(gitdir, branch, revrange, version)

    def _advance(self, state: str) -> None:
        logger.debug('%s: %s -> %s', self.branch, self.state, state)
        self.state = state

    def generate(self) -> PatchSet:
        self.patchset = gitsubmit.patches.format_patches(self.gitdir, self.revrange, self.branch, self.version)
        self._advance(STATE_GENERATED)
        return self.patchset

    def edit(self) -> None:
        gitsubmit.patches.edit_patches(self.gitdir, self.patchset)
        self._advance(STATE_EDITED)
        gitsubmit.patches.check_cover(self.patchset)

    def rebuild(self) -> None:
        self.orig_head = gitsubmit.git_get_head(self.gitdir)
        if self.orig_head is None:
            raise gitsubmit.ResolutionFailed('Could not read HEAD')
        self._advance(STATE_REBUILDING)
        try:
            gitsubmit.patches.rebuild_branch(self.gitdir, self.revrange, self.patchset, self.orig_head)
        except gitsubmit.ApplyFailed:
            # rebuild_branch already put HEAD back and removed the patches
            self._advance(STATE_ROLLED_BACK)
            raise
        self._advance(STATE_REBUILT)

    def sign(self) -> None:
        gitsubmit.send.sign_patches(self.patchset)

    def tag(self) -> str:
        tagname = gitsubmit.tags.tag_version(self.gitdir, self.branch, self.version)
        self._advance(STATE_TAGGED)
        return tagname

    def send(self, to: List[str], cc: List[str], in_reply_to: Optional[str] = None,
             dryrun: bool = False) -> None:
        gitsubmit.send.send_patches(self.gitdir, self.patchset, to, cc, in_reply_to=in_reply_to, dryrun=dryrun)
        self._advance(STATE_SENT)

    def finish(self) -> None:
        self.remove_artifacts()

    # Compensating actions
    def remove_artifacts(self) -> bool:
        if self.patchset is None:
            return True
        return gitsubmit.patches.remove_patches(self.patchset)

    def remove_tag(self) -> bool:
        return gitsubmit.tags.untag_version(self.gitdir, self.branch, self.version)

    def restore_head(self) -> bool:
        if self.orig_head is None:
            return True
        logger.info('Restoring HEAD to %s', self.orig_head)
        ecode, out = gitsubmit.git_reset_hard(self.gitdir, self.orig_head)
        if ecode > 0:
            logger.critical('Could not reset to %s: %s', self.orig_head, out.strip())
            return False
        return True

    def abort(self) -> bool:
        """Undo whatever the furthest state reached calls for; never raises."""
        success = True
        for action in self.COMPENSATIONS[self.state]:
            logger.debug('Compensating %s with %s', self.state, action)
            if not getattr(self, action)():
                logger.critical('Cleanup step %s did not complete', action)
                success = False
        return success


def show_info(gitdir: str) -> None:
    mybranch = gitsubmit.series.current_branch(gitdir)
    branch = mybranch[len('refs/heads/'):]
    revrange = gitsubmit.series.resolve(gitdir)
    version = gitsubmit.tags.next_version(gitdir, branch)
    logger.info('branch: %s', branch)
    logger.info('next-version: %s', version)
    logger.info('next-tag: %s', gitsubmit.tags.tag_name(branch, version))
    logger.info('commits: %s', len(revrange))
    lines = gitsubmit.git_get_command_lines(gitdir, ['log', '--oneline', '--no-decorate', revrange.range_expr])
    for line in lines:
        logger.info('  %s', line)


def run_submit(gitdir: str, to: Optional[List[str]] = None, cc: Optional[List[str]] = None,
               in_reply_to: Optional[str] = None, dryrun: bool = False,
               sign: Optional[bool] = None) -> SubmitSession:
    config = gitsubmit.get_main_config()
    in_reply_to = gitsubmit.get_clean_msgid(in_reply_to)

    session = SubmitSession.start(gitdir)
    logger.info('Preparing v%s of %s (%s commits)', session.version, session.branch, len(session.revrange))
    if (session.version > 1 and not in_reply_to
            and gitsubmit.config_is_true(config.get('require-in-reply-to'))):
        raise gitsubmit.PreconditionError('This is version %s of the patch series, '
                                          '--in-reply-to=<previous-message-id> should be used'
                                          % session.version)

    todests, ccdests = gitsubmit.send.resolve_recipients(to, cc, in_reply_to)
    if not todests and not ccdests:
        raise gitsubmit.NoRecipients('Please specify at least one address')

    if sign is None:
        sign = gitsubmit.config_is_true(config.get('patatt-sign'))

    try:
        session.generate()
        session.edit()
        session.rebuild()
        if sign:
            session.sign()
        session.tag()
        session.send(todests, ccdests, in_reply_to=in_reply_to, dryrun=dryrun)
    except (Exception, KeyboardInterrupt):
        # Whatever went wrong, undo what this run did before reporting it
        session.abort()
        raise

    if dryrun:
        # Don't use up a version number on a dry run
        session.remove_tag()
    session.finish()
    return session


def cmd_submit(cmdargs: argparse.Namespace) -> None:
    topdir = gitsubmit.git_get_toplevel(cmdargs.gitdir)
    if not topdir:
        logger.critical('CRITICAL: Not a git repository: %s', cmdargs.gitdir or '.')
        sys.exit(1)

    # Read config for the repository we operate on
    gitsubmit.get_main_config(topdir)

    try:
        if cmdargs.show_info:
            show_info(topdir)
            return
        session = run_submit(topdir, to=cmdargs.to, cc=cmdargs.cc, in_reply_to=cmdargs.in_reply_to,
                             dryrun=cmdargs.dryrun, sign=cmdargs.sign)
    except gitsubmit.SubmitError as ex:
        logger.critical('CRITICAL: %s', ex)
        sys.exit(1)

    if cmdargs.dryrun:
        logger.info('DRYRUN: %s v%s was not sent', session.branch, session.version)
        return
    logger.info('Sent %s v%s', session.branch, session.version)
