#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: GPL-2.0-or-later
# Copyright (C) 2020 by the Linux Foundation
#
import argparse
import logging
import gitsubmit

logger = gitsubmit.logger


def cmd_submit(cmdargs):
    import gitsubmit.submit
    gitsubmit.submit.cmd_submit(cmdargs)


def setup_parser() -> argparse.ArgumentParser:
    # noinspection PyTypeChecker
    parser = argparse.ArgumentParser(
        prog='git-submit',
        description='Send the commits unique to the current branch as a versioned patch series',
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument('--version', action='version', version=gitsubmit.__VERSION__)
    parser.add_argument('-d', '--debug', action='store_true', default=False,
                        help='Add more debugging info to the output')
    parser.add_argument('-q', '--quiet', action='store_true', default=False,
                        help='Output critical information only')
    parser.add_argument('--offline-mode', action='store_true', default=False,
                        help='Do not perform any network queries')
    parser.add_argument('-g', '--gitdir', default=None,
                        help='Operate on this git tree instead of current dir')
    parser.add_argument('--to', action='append', default=None, metavar='ADDR',
                        help='Add an address to the To: list (may be repeated)')
    parser.add_argument('--cc', action='append', default=None, metavar='ADDR',
                        help='Add an address to the Cc: list (may be repeated)')
    parser.add_argument('--in-reply-to', dest='in_reply_to', default=None, metavar='MSGID',
                        help='Message-ID of the previous revision; its recipients are added, too')
    parser.add_argument('--dry-run', dest='dryrun', action='store_true', default=False,
                        help='Do everything except actually sending the mail, and do not keep the version tag')
    parser.add_argument('--sign', dest='sign', action='store_true', default=None,
                        help='Sign the patches with patatt before sending')
    parser.add_argument('--no-sign', dest='sign', action='store_false', default=None,
                        help='Do not sign the patches, even if submit.patatt-sign is set')
    parser.add_argument('--show-info', dest='show_info', action='store_true', default=False,
                        help='Show the series and the version that would be sent, then exit')
    parser.set_defaults(func=cmd_submit)

    return parser


def cmd():
    parser = setup_parser()
    cmdargs = parser.parse_args()
    logger.setLevel(logging.DEBUG)

    ch = logging.StreamHandler()
    formatter = logging.Formatter('%(message)s')
    ch.setFormatter(formatter)

    if cmdargs.quiet:
        ch.setLevel(logging.CRITICAL)
    elif cmdargs.debug:
        ch.setLevel(logging.DEBUG)
    else:
        ch.setLevel(logging.INFO)

    logger.addHandler(ch)

    if cmdargs.offline_mode:
        logger.info('Running in OFFLINE mode')
        gitsubmit.can_network = False

    cmdargs.func(cmdargs)


if __name__ == '__main__':
    cmd()
