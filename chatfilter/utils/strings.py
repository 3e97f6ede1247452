import re


def natural_truncate(str_: str, maxlen: int, ellipsis_='[…]') -> str:
    """
    If the string is too long, truncate to up to maxlen along word boundaries, with ellipsis_
    appended to the end.
    """
    j = get_natural_truncate_index(str_, maxlen, ellipsis_)
    ellipsis_end = (' ' + ellipsis_) if ellipsis_ else ''
    if j == len(str_):
        return str_
    else:
        return str_[:j].strip() + ellipsis_end


def get_natural_truncate_index(str_: str, maxlen: int, ellipsis_='[…]') -> int:
    """
    Index to cut the string at so that it fits in maxlen, cutting on a word boundary where
    possible and leaving room for a space and the ellipsis.
    """
    if len(str_) <= maxlen:
        return len(str_)

    maxlen_net = maxlen - len(ellipsis_) - 1 if ellipsis_ else maxlen
    if str_[maxlen_net].isspace():  # exactly on the end of a word
        return maxlen_net

    match = re.search(r'\W\w*?$', str_[:maxlen_net])
    if match:
        return match.start() + 1
    return maxlen_net  # no word boundaries


def format_on_off(value: bool) -> str:
    return 'on' if value else 'off'
