"""Small line-parsing combinators shared by fact collectors and patchers.

Every config format the baseline touches is line oriented: ``KEY value``
(login.defs), ``key = value`` (faillock.conf, pwquality.conf), flag lists
(audit rules), whitespace-separated columns (fstab, PAM stacks). Matchers
are plain callables ``str -> bool`` so they compose with ``all_of`` /
``any_of`` / ``negate`` and can be reused verbatim by the check side and
the write side of a rule.

Example:
-------
    >>> m = all_of(active, regex(r"pam_pwquality\\.so"))
    >>> scan(["# password requisite pam_pwquality.so", "password requisite pam_pwquality.so retry=3"], m)
    [(2, 'password requisite pam_pwquality.so retry=3')]

"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable

Matcher = Callable[[str], bool]


# ── Line basics ────────────────────────────────────────────────────────────


def active(line: str) -> bool:
    """Matcher: non-blank and not a comment."""
    s = line.strip()
    return bool(s) and not s.startswith("#")


def tokenize(line: str) -> list[str]:
    """Split an active line into whitespace-separated tokens."""
    return line.split()


def normalize_ws(line: str) -> str:
    return " ".join(line.split())


# ── Combinators ────────────────────────────────────────────────────────────


def all_of(*matchers: Matcher) -> Matcher:
    return lambda line: all(m(line) for m in matchers)


def any_of(*matchers: Matcher) -> Matcher:
    return lambda line: any(m(line) for m in matchers)


def negate(matcher: Matcher) -> Matcher:
    return lambda line: not matcher(line)


def regex(pattern: str, flags: int = 0) -> Matcher:
    compiled = re.compile(pattern, flags)
    return lambda line: compiled.search(line) is not None


def exact_line(text: str) -> Matcher:
    """Active line equal to ``text`` modulo runs of whitespace."""
    want = normalize_ws(text)
    return lambda line: active(line) and normalize_ws(line) == want


def scan(lines: Iterable[str], matcher: Matcher) -> list[tuple[int, str]]:
    """Return ``(line_no, line)`` pairs (1-based) for lines the matcher accepts."""
    return [(i, line) for i, line in enumerate(lines, 1) if matcher(line)]


# ── key / value ────────────────────────────────────────────────────────────


def _key_pattern(key: str, separator: str | None) -> re.Pattern:
    k = re.escape(key)
    if separator is None:
        sep = r"(?:\s*=\s*|\s+)"
    elif separator.strip() == "":
        sep = r"\s+"
    else:
        sep = rf"\s*{re.escape(separator.strip())}\s*"
    return re.compile(rf"^\s*{k}{sep}(?P<value>.*?)\s*$")


def key_matcher(key: str, separator: str | None = None) -> Matcher:
    """Matcher: active line that assigns ``key`` (value may be empty)."""
    k = re.escape(key)
    if separator is None or separator.strip() == "":
        pattern = re.compile(rf"^\s*{k}(?:\s|=|$)")
    else:
        pattern = re.compile(rf"^\s*{k}\s*{re.escape(separator.strip())}")
    return lambda line: active(line) and pattern.search(line) is not None


def parse_value(line: str, key: str, separator: str | None = None) -> str | None:
    """Extract the value assigned to ``key`` on an active line, else None.

    Handles ``KEY value``, ``KEY=value`` and ``key = value``; strips one level
    of quotes and a trailing `` # comment``.

    Example:
    -------
        >>> parse_value("PASS_MIN_DAYS   7", "PASS_MIN_DAYS")
        '7'
        >>> parse_value("deny = 5", "deny", "=")
        '5'
        >>> parse_value("#PASS_MIN_DAYS 7", "PASS_MIN_DAYS") is None
        True

    """
    if not active(line):
        return None
    m = _key_pattern(key, separator).match(line)
    if m is None:
        return None
    value = re.sub(r"\s+#.*$", "", m.group("value")).strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
        value = value[1:-1]
    return value


def key_values(lines: Iterable[str], key: str, separator: str | None = None) -> list[tuple[int, str, str]]:
    """All active assignments of ``key`` as ``(line_no, line, value)``."""
    found = []
    for i, line in enumerate(lines, 1):
        value = parse_value(line, key, separator)
        if value is not None:
            found.append((i, line, value))
    return found


def format_assignment(key: str, value: str, separator: str = " ") -> str:
    if separator.strip():
        return f"{key}{separator}{value}"
    return f"{key}{separator or ' '}{value}"


# ── Token lists (mount options, kernel args, module args) ─────────────────


def split_tokens(value: str, sep: str = ",") -> list[str]:
    if sep.strip() == "":
        return value.split()
    return [t.strip() for t in value.split(sep) if t.strip()]


def merge_tokens(value: str, tokens: Iterable[str], sep: str = ",", *, keyed: bool = False) -> str:
    """Append missing tokens to a separated list, keeping existing order.

    With ``keyed``, a ``name=value`` token replaces an existing token of
    the same name in place instead of being appended next to it.

    Example:
    -------
        >>> merge_tokens("nodev,nosuid", ["noexec", "nodev"])
        'nodev,nosuid,noexec'
        >>> merge_tokens("quiet audit_backlog_limit=64", ["audit_backlog_limit=8192"], " ", keyed=True)
        'quiet audit_backlog_limit=8192'

    """
    current = split_tokens(value, sep)
    for tok in tokens:
        if tok in current:
            continue
        if keyed and "=" in tok:
            same = [i for i, c in enumerate(current) if token_key(c) == token_key(tok)]
            if same:
                current[same[0]] = tok
                for i in reversed(same[1:]):
                    del current[i]
                continue
        current.append(tok)
    joiner = " " if sep.strip() == "" else sep
    return joiner.join(current)


def missing_tokens(value: str, tokens: Iterable[str], sep: str = ",") -> list[str]:
    have = set(split_tokens(value, sep))
    return [t for t in tokens if t not in have]


def token_value(value: str, name: str, sep: str = " ") -> str | None:
    """Value of ``name=...`` in a token list; "" for a bare ``name``; None if absent.

    Example:
    -------
        >>> token_value("ro quiet audit=1", "audit")
        '1'

    """
    found = None
    for tok in split_tokens(value, sep):
        if tok == name:
            found = ""
        elif tok.startswith(name + "="):
            found = tok.split("=", 1)[1]
    return found


def token_key(token: str) -> str:
    """Name part of a ``name=value`` token."""
    return token.split("=", 1)[0]


# ── Flag sets (audit rules) ────────────────────────────────────────────────


def _normalize_flag(flag: str, value: str) -> set[tuple[str, str]]:
    if flag in ("-S", "--syscall"):
        return {("-S", s) for s in value.split(",") if s}
    if flag == "-k":
        return {("-F", f"key={value}")}
    if flag == "-F" and value.startswith("key="):
        return {("-F", value)}
    if flag == "-p":
        return {("-p", ch) for ch in value}
    if flag in ("-a", "-A"):
        return {(flag, ",".join(sorted(value.split(","))))}
    return {(flag, value)}


def flag_set(line: str) -> frozenset[tuple[str, str]]:
    """Parse a flag-style line into an order-independent set of (flag, value).

    Equivalent spellings collapse to the same pairs: ``-S a -S b`` and
    ``-S a,b``; ``-k name`` and ``-F key=name``; ``always,exit`` and
    ``exit,always``; ``-p wa`` and ``-p aw``.

    Example:
    -------
        >>> flag_set("-a always,exit -F arch=b64 -S adjtimex -k t") == flag_set(
        ...     "-a exit,always -k t -S adjtimex -F arch=b64")
        True

    """
    tokens = tokenize(line)
    pairs: set[tuple[str, str]] = set()
    i = 0
    while i < len(tokens):
        tok = tokens[i]
        if tok.startswith("-") and i + 1 < len(tokens) and not tokens[i + 1].startswith("-"):
            pairs |= _normalize_flag(tok, tokens[i + 1])
            i += 2
        else:
            pairs.add((tok, ""))
            i += 1
    return frozenset(pairs)


def contains_flags(required: str) -> Matcher:
    """Matcher: active line whose flag set includes every flag of ``required``."""
    want = flag_set(required)
    return lambda line: active(line) and want <= flag_set(line)
