# SPDX-License-Identifier: GPL-2.0-or-later
# Copyright (C) 2020 by the Linux Foundation
#
import os
import re
import shlex
import shutil
import gitsubmit

from typing import Optional, List

from gitsubmit.series import RevisionRange

logger = gitsubmit.logger

# git-format-patch names the cover letter 0000-cover-letter.patch (v2-0000-... for rerolls)
COVER_RE = re.compile(r'^(v\d+-)?0000-')
COVER_PLACEHOLDERS = ('*** SUBJECT HERE ***', '*** BLURB HERE ***')


class PatchSet:
    """The patch files generated for one run, in the order they were generated."""
    outdir: str
    artifacts: List[str]

    def __init__(self, outdir: str):
        self.outdir = outdir
        self.artifacts = list()
        self.refresh()

    def __len__(self):
        return len(self.artifacts)

    def __iter__(self):
        return iter(self.artifacts)

    def __repr__(self):
        out = list()
        out.append('--- PatchSet in %s ---' % self.outdir)
        for artifact in self.artifacts:
            out.append('  %s' % os.path.basename(artifact))
        return '\n'.join(out)

    def refresh(self) -> None:
        if not os.path.isdir(self.outdir):
            self.artifacts = list()
            return
        self.artifacts = sorted(os.path.join(self.outdir, entry) for entry in os.listdir(self.outdir))

    @staticmethod
    def is_cover(path: str) -> bool:
        return COVER_RE.search(os.path.basename(path)) is not None

    @property
    def cover(self) -> Optional[str]:
        for artifact in self.artifacts:
            if self.is_cover(artifact):
                return artifact
        return None

    @property
    def patches(self) -> List[str]:
        return [x for x in self.artifacts if not self.is_cover(x)]

    def exists(self) -> bool:
        return os.path.isdir(self.outdir)

    def remove(self) -> None:
        if not self.exists():
            return
        logger.debug('Removing %s', self.outdir)
        shutil.rmtree(self.outdir)
        self.artifacts = list()


def remove_patches(patchset: PatchSet) -> bool:
    """Best-effort removal used while tearing down; never raises."""
    try:
        patchset.remove()
    except OSError as ex:
        logger.critical('Could not remove %s: %s', patchset.outdir, ex)
        return False
    return True


def format_patches(gitdir: str, revrange: RevisionRange, branch: str, version: int) -> PatchSet:
    if not len(revrange):
        raise gitsubmit.EmptySeries('Nothing to format')
    outdir = gitsubmit.get_output_dir(gitdir, branch)
    if os.path.exists(outdir):
        raise gitsubmit.PreconditionError('Output directory %s already exists (left over from an earlier run?)'
                                          % outdir)

    gitargs = ['format-patch', '-o', outdir]
    if len(revrange) >= 3:
        gitargs.append('--cover-letter')
    if version > 1:
        gitargs.append(f'-v{version}')
    gitargs.append(revrange.range_expr)

    ecode, out = gitsubmit.git_run_command(gitdir, gitargs, logstderr=True)
    patchset = PatchSet(outdir)
    if ecode > 0:
        remove_patches(patchset)
        raise gitsubmit.GenerationFailed('git format-patch failed: %s' % out.strip())

    logger.info('Wrote %s patches into %s', len(patchset), outdir)
    for artifact in patchset:
        logger.info('  %s', os.path.basename(artifact))
    return patchset


def get_editor_cmd() -> List[str]:
    config = gitsubmit.get_main_config()
    editor = config.get('editor') or os.environ.get('EDITOR')
    if not editor or not editor.strip():
        raise gitsubmit.ConfigError('EDITOR environment variable (or submit.editor) has to be set')
    logger.debug('editor=%s', editor)
    sp = shlex.shlex(editor, posix=True)
    sp.whitespace_split = True
    return list(sp)


def edit_patches(gitdir: str, patchset: PatchSet) -> None:
    cmdargs = get_editor_cmd()
    for artifact in patchset:
        try:
            artifact.encode('utf-8')
        except UnicodeEncodeError:
            raise gitsubmit.ConfigError('Path is not valid utf-8: %r' % artifact)
    for artifact in patchset:
        try:
            ecode = gitsubmit.run_interactive(cmdargs + [artifact], rundir=gitdir)
        except OSError as ex:
            raise gitsubmit.EditFailed('Could not run %s: %s' % (cmdargs[0], ex))
        if ecode > 0:
            logger.warning('Editor exited with %s while editing %s', ecode, os.path.basename(artifact))
    patchset.refresh()


def check_cover(patchset: PatchSet) -> None:
    cover = patchset.cover
    if cover is None:
        return
    with open(cover, 'r', encoding='utf-8', errors='replace') as fh:
        content = fh.read()
    for placeholder in COVER_PLACEHOLDERS:
        if placeholder in content:
            raise gitsubmit.PreconditionError('Looks like the cover letter needs to be edited first (found %s)'
                                              % placeholder)


def rollback(gitdir: str, orig_head: str, patchset: PatchSet) -> bool:
    """Put HEAD back where it was before the rebuild and drop the patches.

    Returns False if any step did not succeed; errors are logged, never raised."""
    success = True
    if os.path.isdir(gitsubmit.git_get_path(gitdir, 'rebase-apply')):
        ecode, out = gitsubmit.git_run_command(gitdir, ['am', '--abort'], logstderr=True)
        if ecode > 0:
            logger.critical('Could not abort git am: %s', out.strip())
            success = False
    logger.info('Restoring HEAD to %s', orig_head)
    ecode, out = gitsubmit.git_reset_hard(gitdir, orig_head)
    if ecode > 0:
        logger.critical('Could not reset to %s: %s', orig_head, out.strip())
        success = False
    if not remove_patches(patchset):
        success = False
    return success


def rebuild_branch(gitdir: str, revrange: RevisionRange, patchset: PatchSet, orig_head: str) -> None:
    config = gitsubmit.get_main_config()
    amflags = shlex.split(config.get('am-flags') or '')
    patchset.refresh()
    if not patchset.patches:
        # Resetting now would throw the whole series away
        remove_patches(patchset)
        raise gitsubmit.ApplyFailed('No patches left in %s to rebuild from' % patchset.outdir)

    logger.info('Rebuilding %s commits from the edited patches', len(revrange))
    ecode, out = gitsubmit.git_reset_hard(gitdir, revrange.base)
    if ecode > 0:
        rollback(gitdir, orig_head, patchset)
        raise gitsubmit.ApplyFailed('Could not reset to %s: %s' % (revrange.base, out.strip()))

    for artifact in patchset.patches:
        gitargs = ['am'] + amflags + [artifact]
        ecode, out = gitsubmit.git_run_command(gitdir, gitargs, logstderr=True)
        if ecode > 0:
            logger.critical('Applying %s failed:', os.path.basename(artifact))
            logger.critical(out.strip())
            rollback(gitdir, orig_head, patchset)
            raise gitsubmit.ApplyFailed('git am failed on %s' % os.path.basename(artifact))
        logger.info('  Applied %s', os.path.basename(artifact))
