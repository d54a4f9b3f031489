"""
Translate file names for OpenDrive.

These characters are reserved by OpenDrive and can't be used in folder or
file names:

    \\ : * ? " < > |

Each is swapped for its full-width look-alike on the way out and swapped
back when names are read from the server. A full-width look-alike that is
already in a local name, and the quote character itself, are sent with
QUOTE in front of them so the mapping stays reversible.
"""

from typing import List

CHAR_MAP = {
    '\\': '＼',  # FULLWIDTH REVERSE SOLIDUS
    ':': '：',  # FULLWIDTH COLON
    '*': '＊',  # FULLWIDTH ASTERISK
    '?': '？',  # FULLWIDTH QUESTION MARK
    '"': '＂',  # FULLWIDTH QUOTATION MARK
    '<': '＜',  # FULLWIDTH LESS-THAN SIGN
    '>': '＞',  # FULLWIDTH GREATER-THAN SIGN
    '|': '｜',  # FULLWIDTH VERTICAL LINE
}
INV_CHAR_MAP = {v: k for k, v in CHAR_MAP.items()}

QUOTE = '‛'  # SINGLE HIGH-REVERSED-9 QUOTATION MARK


def replace_reserved_chars(name: str) -> str:
    out: List[str] = []
    for c in name:
        if c in INV_CHAR_MAP or c == QUOTE:
            out.append(QUOTE + c)
        else:
            out.append(CHAR_MAP.get(c, c))
    return "".join(out)


def restore_reserved_chars(name: str) -> str:
    out: List[str] = []
    quoted = False
    for c in name:
        if quoted:
            out.append(c)
            quoted = False
        elif c == QUOTE:
            quoted = True
        else:
            out.append(INV_CHAR_MAP.get(c, c))
    # a trailing quote has nothing to protect
    if quoted:
        out.append(QUOTE)
    return "".join(out)
