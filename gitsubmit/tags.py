# SPDX-License-Identifier: GPL-2.0-or-later
# Copyright (C) 2020 by the Linux Foundation
#
# Version markers: {branch}-v{version} lightweight tags
import re
import gitsubmit

from typing import Optional

logger = gitsubmit.logger


def tag_name(branch: str, version: int) -> str:
    return f'{branch}-v{version}'


def next_version(gitdir: Optional[str], branch: str) -> int:
    prefix = f'{branch}-v'
    maxver = 0
    for tagname in gitsubmit.git_get_tag_names(gitdir, f'{prefix}*'):
        if not tagname.startswith(prefix):
            continue
        suffix = tagname[len(prefix):]
        # Tags not following our naming are none of our business
        if not re.fullmatch(r'[0-9]+', suffix):
            logger.debug('Ignoring tag %s', tagname)
            continue
        maxver = max(maxver, int(suffix))

    return maxver + 1


def tag_version(gitdir: Optional[str], branch: str, version: int) -> str:
    tagname = tag_name(branch, version)
    logger.info('Tagging %s as %s', branch, tagname)
    gitargs = ['tag', '-f', tagname, f'refs/heads/{branch}']
    ecode, out = gitsubmit.git_run_command(gitdir, gitargs, logstderr=True)
    if ecode > 0:
        raise gitsubmit.TagError('Could not tag %s as %s: %s' % (branch, tagname, out.strip()))
    return tagname


def untag_version(gitdir: Optional[str], branch: str, version: int) -> bool:
    tagname = tag_name(branch, version)
    logger.info('Removing tag %s', tagname)
    ecode, out = gitsubmit.git_run_command(gitdir, ['tag', '-d', tagname], logstderr=True)
    if ecode > 0:
        logger.critical('Could not remove tag %s: %s', tagname, out.strip())
        return False
    return True
