# SPDX-License-Identifier: GPL-2.0-or-later
# Copyright (C) 2020 by the Linux Foundation
#
import email
import email.message
import email.utils
import urllib.parse
import requests
import gitsubmit

from typing import Optional, List, Tuple

from gitsubmit.patches import PatchSet

try:
    import patatt
    can_patatt = True
except ModuleNotFoundError:
    can_patatt = False

logger = gitsubmit.logger


def get_thread_message(msgid: str) -> email.message.Message:
    config = gitsubmit.get_main_config()
    qmsgid = urllib.parse.quote(msgid, safe='@')
    url = '%s/raw' % (config['midmask'] % qmsgid).rstrip('/')
    logger.info('Looking up %s', url)
    session = gitsubmit.get_requests_session()
    try:
        resp = session.get(url)
        resp.raise_for_status()
    except requests.exceptions.RequestException as ex:
        raise gitsubmit.LookupFailed('Could not retrieve %s: %s' % (msgid, ex))
    msg = email.message_from_bytes(resp.content)
    resp.close()
    return msg


def get_thread_addresses(msgid: str) -> Tuple[List[str], List[str], List[str]]:
    """Return the To, From and Cc addresses of a previously sent message."""
    msg = get_thread_message(msgid)
    found = list()
    for hdr in ('To', 'From', 'Cc'):
        pairs = email.utils.getaddresses([str(x) for x in msg.get_all(hdr, [])])
        found.append(gitsubmit.format_addrs([x for x in pairs if x[1]]))
    return found[0], found[1], found[2]


def _dedupe(addrs: List[str]) -> List[str]:
    seen = set()
    deduped = list()
    for addr in addrs:
        key = email.utils.parseaddr(addr)[1].lower() or addr
        if key in seen:
            continue
        seen.add(key)
        deduped.append(addr)
    return deduped


def resolve_recipients(to: Optional[List[str]], cc: Optional[List[str]],
                       in_reply_to: Optional[str] = None) -> Tuple[List[str], List[str]]:
    todests = list(to) if to else list()
    ccdests = list(cc) if cc else list()
    if in_reply_to:
        if not gitsubmit.can_network:
            logger.warning('Offline mode: not looking up recipients of %s', in_reply_to)
        else:
            ttos, tfroms, tccs = get_thread_addresses(in_reply_to)
            # Whoever sent the previous revision should hear about this one, too
            todests += ttos + tfroms
            ccdests += tccs
    return _dedupe(todests), _dedupe(ccdests)


def sign_patches(patchset: PatchSet) -> None:
    if not can_patatt:
        raise gitsubmit.ConfigError('Signing requires patatt, which is not installed')
    logger.info('Signing %s patches with patatt', len(patchset))
    for artifact in patchset:
        with open(artifact, 'rb') as fh:
            bdata = fh.read()
        unixfrom = b''
        if bdata.startswith(b'From '):
            unixfrom, bdata = bdata.split(b'\n', 1)
            unixfrom += b'\n'
        try:
            bdata = patatt.rfc2822_sign(bdata)
        except patatt.NoKeyError as ex:
            logger.critical('Run "patatt genkey" or configure "user.signingKey" to use PGP')
            logger.critical('As a last resort, rerun with --no-sign')
            raise gitsubmit.ConfigError('Error signing: no key configured (%s)' % ex)
        except patatt.SigningError as ex:
            raise gitsubmit.ToolError('Failure trying to patatt-sign: %s' % str(ex))
        with open(artifact, 'wb') as fh:
            fh.write(unixfrom + bdata)


def send_patches(gitdir: str, patchset: PatchSet, to: List[str], cc: List[str],
                 in_reply_to: Optional[str] = None, dryrun: bool = False) -> None:
    if not to and not cc:
        raise gitsubmit.NoRecipients('Please specify at least one address')

    config = gitsubmit.get_main_config()
    cmdargs = ['git', 'send-email']
    identity = config.get('sendemail-identity')
    if identity:
        cmdargs.append(f'--identity={identity}')
    if dryrun:
        cmdargs.append('--dry-run')
    for addr in to:
        cmdargs.append(f'--to={addr}')
    for addr in cc:
        cmdargs.append(f'--cc={addr}')
    if in_reply_to:
        cmdargs.append(f'--in-reply-to={in_reply_to}')
    cmdargs += patchset.artifacts

    try:
        ecode = gitsubmit.run_interactive(cmdargs, rundir=gitdir)
    except OSError as ex:
        raise gitsubmit.DispatchFailed('Could not run git send-email: %s' % ex)
    if ecode > 0:
        raise gitsubmit.DispatchFailed('git send-email exited with %s' % ecode)
