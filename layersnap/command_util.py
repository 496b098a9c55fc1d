"""Resolve instruction arguments: variable expansion, copy destinations and ownership."""

from __future__ import annotations

import grp
import logging
import os
import posixpath
import pwd
import re
import stat
from dataclasses import dataclass
from typing import Iterable, Sequence

logger = logging.getLogger(__name__)

PATH_SEPARATOR = "/"
ROOT_DIR = "/"
DEFAULT_ESCAPE_TOKEN = "\\"
DO_NOT_CHANGE_UID = -1
DO_NOT_CHANGE_GID = -1

_MAX_ID = 2**32 - 1
_DIGITS = re.compile(r"[0-9]+")
_SCHEME = re.compile(r"[A-Za-z][A-Za-z0-9+.\-]*")
_HOST_CHARS = frozenset("-_.~!$&'()*+,;=:[]<>\"%")
_USERINFO_CHARS = frozenset("-._:~!$&'()*+,;=%@")
_HEX = frozenset("0123456789abcdefABCDEF")
_SPECIAL_PARAMS = frozenset("@*#?-$!0")
_WILDCARD_CHARS = frozenset("*?[")


@dataclass(frozen=True)
class KeyValuePair:
    """An environment variable assignment."""

    key: str
    value: str


@dataclass(frozen=True)
class User:
    """A user account as found in the passwd database, or a bare uid."""

    uid: str
    gid: str = ""
    username: str = ""
    name: str = ""
    home_dir: str = ""


# ---------------------------------------------------------------------------
# Path helpers with the semantics of slash-separated, cleaned paths.


def _clean(path: str) -> str:
    cleaned = posixpath.normpath(path)
    if cleaned.startswith("//"):
        cleaned = cleaned[1:]
    return cleaned


def _join(*parts: str) -> str:
    present = [part for part in parts if part]
    return _clean(PATH_SEPARATOR.join(present)) if present else ""


def _base(path: str) -> str:
    if not path:
        return "."
    stripped = path.rstrip(PATH_SEPARATOR)
    if not stripped:
        return PATH_SEPARATOR
    return stripped[stripped.rfind(PATH_SEPARATOR) + 1 :]


def _file_name(path: str) -> str:
    return path[path.rfind(PATH_SEPARATOR) + 1 :]


# ---------------------------------------------------------------------------
# Word expansion following shell-like quoting and ${...} substitution rules.


def _env_lookup(envs: Iterable[str] | None) -> dict[str, str]:
    lookup: dict[str, str] = {}
    for entry in envs or ():
        key, sep, value = entry.partition("=")
        lookup.setdefault(key, value if sep else "")
    return lookup


class _WordLexer:
    def __init__(self, word: str, envs: Iterable[str] | None, escape: str) -> None:
        self._word = word
        self._pos = 0
        self._escape = escape
        self._env = _env_lookup(envs)

    def _peek(self) -> str | None:
        return self._word[self._pos] if self._pos < len(self._word) else None

    def _next(self) -> str | None:
        ch = self._peek()
        if ch is not None:
            self._pos += 1
        return ch

    def process(self) -> str:
        return self._process_until(None)

    def _process_until(self, stop: str | None) -> str:
        out: list[str] = []
        while (ch := self._peek()) is not None:
            if stop is not None and ch == stop:
                self._next()
                return "".join(out)
            if ch == "$":
                out.append(self._dollar())
            elif ch == "'":
                out.append(self._single_quote())
            elif ch == '"':
                out.append(self._double_quote())
            else:
                self._next()
                if ch == self._escape:
                    ch = self._next()
                    if ch is None:
                        break
                out.append(ch)
        if stop is not None:
            raise ValueError(
                f"unexpected end of statement while looking for matching {stop}"
            )
        return "".join(out)

    def _single_quote(self) -> str:
        self._next()
        out: list[str] = []
        while True:
            ch = self._next()
            if ch is None:
                raise ValueError(
                    "unexpected end of statement while looking for matching single-quote"
                )
            if ch == "'":
                return "".join(out)
            out.append(ch)

    def _double_quote(self) -> str:
        self._next()
        out: list[str] = []
        while True:
            ch = self._peek()
            if ch is None:
                raise ValueError(
                    "unexpected end of statement while looking for matching double-quote"
                )
            if ch == '"':
                self._next()
                return "".join(out)
            if ch == "$":
                out.append(self._dollar())
                continue
            self._next()
            if ch == self._escape:
                following = self._peek()
                if following is None:
                    continue
                if following in ('"', "$", self._escape):
                    ch = self._next()
            out.append(ch)

    def _name(self) -> str:
        first = self._peek()
        if first is None:
            return ""
        if first.isdecimal():
            digits: list[str] = []
            while (ch := self._peek()) is not None and ch.isdecimal():
                digits.append(ch)
                self._next()
            return "".join(digits)
        if first in _SPECIAL_PARAMS:
            self._next()
            return first
        name: list[str] = []
        while (ch := self._peek()) is not None and (
            ch.isalpha() or ch.isdecimal() or ch == "_"
        ):
            name.append(ch)
            self._next()
        return "".join(name)

    def _word_until_brace(self) -> str:
        try:
            return self._process_until("}")
        except ValueError:
            if self._peek() is None:
                raise ValueError("syntax error: missing '}'") from None
            raise

    def _dollar(self) -> str:
        self._next()
        if self._peek() != "{":
            name = self._name()
            return self._env.get(name, "") if name else "$"

        self._next()
        ch = self._peek()
        if ch is None:
            raise ValueError("syntax error: missing '}'")
        if ch in "{}:":
            raise ValueError("syntax error: bad substitution")

        name = self._name()
        ch = self._next()
        if ch == "}":
            return self._env.get(name, "")
        if ch == "?":
            word = self._word_until_brace()
            if name not in self._env:
                raise ValueError(f"{name}: {word or 'is not allowed to be unset'}")
            return self._env[name]
        if ch == ":":
            modifier = self._next()
            word = self._word_until_brace()
            value = self._env.get(name)
            if modifier == "+":
                return word if value else ""
            if modifier == "-":
                return value if value else word
            if modifier == "?":
                if value is None:
                    raise ValueError(f"{name}: {word or 'is not allowed to be unset'}")
                if value == "":
                    raise ValueError(f"{name}: {word or 'is not allowed to be empty'}")
                return value
            raise ValueError(f"unsupported modifier ({modifier}) in substitution")
        if ch is None:
            raise ValueError("syntax error: missing '}'")
        raise ValueError(f"unsupported modifier ({ch}) in substitution")


def resolve_environment_replacement(
    value: str, envs: Iterable[str] | None, is_filepath: bool
) -> str:
    """Expand variables from ``envs`` ("KEY=value" entries) in ``value``.

    For file paths the result is cleaned, keeping a trailing slash; remote
    URLs are returned as expanded. Raises ValueError on malformed input.
    """
    expanded = _WordLexer(value, envs, DEFAULT_ESCAPE_TOKEN).process()
    if not is_filepath or is_src_remote_file_url(expanded):
        return expanded
    is_dir = expanded.endswith(PATH_SEPARATOR)
    cleaned = _clean(expanded)
    if is_dir and not cleaned.endswith(PATH_SEPARATOR):
        cleaned += PATH_SEPARATOR
    return cleaned


def resolve_environment_replacement_list(
    values: Iterable[str], envs: Iterable[str] | None, is_filepath: bool
) -> list[str]:
    """Expand every value in ``values``."""
    env_list = list(envs or ())
    resolved = []
    for value in values:
        result = resolve_environment_replacement(value, env_list, is_filepath)
        logger.debug("Resolved %s to %s", value, result)
        resolved.append(result)
    return resolved


# ---------------------------------------------------------------------------
# Source matching.


def contains_wildcards(paths: Iterable[str]) -> bool:
    """True if any path contains one of ``*``, ``?`` or ``[``."""
    return any(_WILDCARD_CHARS.intersection(path) for path in paths)


def _class_char(pattern: str, pos: int) -> tuple[str, int]:
    if pos >= len(pattern) or pattern[pos] in "-]":
        raise ValueError("syntax error in pattern")
    if pattern[pos] == "\\":
        pos += 1
        if pos >= len(pattern):
            raise ValueError("syntax error in pattern")
    return pattern[pos], pos + 1


def _glob_regex(pattern: str) -> re.Pattern[str]:
    out: list[str] = []
    pos = 0
    size = len(pattern)
    while pos < size:
        ch = pattern[pos]
        if ch == "*":
            out.append("[^/]*")
            pos += 1
        elif ch == "?":
            out.append("[^/]")
            pos += 1
        elif ch == "\\":
            if pos + 1 >= size:
                raise ValueError("syntax error in pattern")
            out.append(re.escape(pattern[pos + 1]))
            pos += 2
        elif ch == "[":
            pos += 1
            negated = pos < size and pattern[pos] == "^"
            if negated:
                pos += 1
            items: list[str] = []
            ranges = 0
            while True:
                if pos < size and pattern[pos] == "]" and ranges > 0:
                    pos += 1
                    break
                low, pos = _class_char(pattern, pos)
                high = low
                if pos < size and pattern[pos] == "-":
                    high, pos = _class_char(pattern, pos + 1)
                ranges += 1
                if low <= high:
                    items.append(f"{re.escape(low)}-{re.escape(high)}")
            body = "".join(items)
            if negated:
                out.append(f"[^{body}]" if body else "(?s:.)")
            else:
                out.append(f"[{body}]" if body else "(?!)")
        else:
            out.append(re.escape(ch))
            pos += 1
    return re.compile("".join(out), re.DOTALL)


def match_sources(srcs: Iterable[str], files: Sequence[str]) -> list[str]:
    """The files matching each source pattern; remote URLs pass through.

    Raises ValueError for a malformed pattern.
    """
    matched: list[str] = []
    for src in srcs:
        if is_src_remote_file_url(src):
            matched.append(src)
            continue
        src = _clean(src)
        pattern = _glob_regex(src)
        absolute = posixpath.isabs(src)
        for file in files:
            candidate = _join(ROOT_DIR, file) if absolute else file
            if pattern.fullmatch(candidate) or src == candidate:
                matched.append(candidate)
    return matched


# ---------------------------------------------------------------------------
# Destinations.


def is_dest_dir(path: str) -> bool:
    """True if ``path`` is an existing directory, or looks like one when missing."""
    try:
        info = os.stat(path)
    except OSError:
        return path.endswith(PATH_SEPARATOR) or path == "."
    return stat.S_ISDIR(info.st_mode)


def destination_filepath(src: str, dest: str, cwd: str) -> str:
    """Where ``src`` from the build context lands in the image.

    A directory destination receives the source's file name; relative
    destinations are placed under ``cwd``.
    """
    src_file_name = _file_name(src)
    new_dest = dest
    if not posixpath.isabs(new_dest):
        new_dest = _join(cwd, new_dest)
        if dest.endswith(PATH_SEPARATOR) or dest.endswith("."):
            new_dest += PATH_SEPARATOR
    if is_dest_dir(new_dest):
        new_dest = _join(new_dest, src_file_name)
    if not src_file_name and not new_dest.endswith(PATH_SEPARATOR):
        new_dest += PATH_SEPARATOR
    return new_dest


def url_destination_filepath(
    rawurl: str, dest: str, cwd: str, envs: Iterable[str] | None
) -> str:
    """Where a file downloaded from ``rawurl`` should be saved."""
    if not is_dest_dir(dest):
        return dest if posixpath.isabs(dest) else _join(cwd, dest)
    url_base = resolve_environment_replacement(_base(rawurl), envs, True)
    dest_path = _join(dest, url_base)
    if not posixpath.isabs(dest):
        dest_path = _join(cwd, dest_path)
    return dest_path


def _valid_escapes(text: str) -> bool:
    pos = text.find("%")
    while pos >= 0:
        if pos + 2 >= len(text) or not (text[pos + 1] in _HEX and text[pos + 2] in _HEX):
            return False
        pos = text.find("%", pos + 3)
    return True


def _valid_port(port: str) -> bool:
    return port == "" or (port.startswith(":") and port[1:].isascii() and port[1:].isdigit()) or port == ":"


def _valid_host(host: str) -> bool:
    if host.startswith("["):
        close = host.find("]")
        if close < 0 or not _valid_port(host[close + 1 :]):
            return False
    elif ":" in host:
        if not _valid_port(host[host.rfind(":") :]):
            return False
    if not all(ch.isalnum() or ch in _HOST_CHARS or ord(ch) >= 0x80 for ch in host):
        return False
    return _valid_escapes(host)


def is_src_remote_file_url(rawurl: str) -> bool:
    """True if ``rawurl`` is an absolute URL with both a scheme and a host."""
    if not rawurl or any(ord(ch) < 0x20 or ord(ch) == 0x7F for ch in rawurl):
        return False
    scheme, sep, rest = rawurl.partition(":")
    if not sep or not _SCHEME.fullmatch(scheme):
        return False
    rest = rest.split("?", 1)[0]
    if not rest.startswith("//"):
        return False
    authority = rest[2:].split(PATH_SEPARATOR, 1)[0]
    userinfo, at, host = authority.rpartition("@")
    if at and not (
        all(ch.isalnum() or ch in _USERINFO_CHARS for ch in userinfo)
        and _valid_escapes(userinfo)
    ):
        return False
    return bool(host) and _valid_host(host)


# ---------------------------------------------------------------------------
# Environment configuration.


def _split_env(entry: str) -> KeyValuePair:
    key, sep, value = entry.partition("=")
    if not sep:
        raise ValueError(f"environment entry {entry!r} is not of the form KEY=value")
    return KeyValuePair(key=key, value=value)


def update_config_env(
    env_vars: Iterable[KeyValuePair],
    config_env: Iterable[str] | None,
    replacement_envs: Iterable[str] | None,
) -> list[str]:
    """Merge ``env_vars`` (after expansion) into ``config_env``, preserving order.

    Existing keys are replaced in place, new ones appended. Returns the new
    list of "KEY=value" entries.
    """
    replacements = list(replacement_envs or ())
    new_envs = [
        KeyValuePair(
            key=resolve_environment_replacement(pair.key, replacements, False),
            value=resolve_environment_replacement(pair.value, replacements, False),
        )
        for pair in env_vars
    ]

    pairs = [_split_env(entry) for entry in config_env or ()]
    for new_env in new_envs:
        for index, existing in enumerate(pairs):
            if existing.key == new_env.key:
                logger.debug(
                    "Replacing environment variable %s with %s in config", existing, new_env
                )
                pairs[index] = new_env
                break
        else:
            pairs.append(new_env)
    return [f"{pair.key}={pair.value}" for pair in pairs]


# ---------------------------------------------------------------------------
# Users and groups.


def _parse_id(text: str) -> int:
    if not _DIGITS.fullmatch(text):
        raise ValueError(f"parsing {text!r}: invalid syntax")
    value = int(text)
    if value > _MAX_ID:
        raise ValueError(f"parsing {text!r}: value out of range")
    return value


def _from_passwd(entry: pwd.struct_passwd) -> User:
    return User(
        uid=str(entry.pw_uid),
        gid=str(entry.pw_gid),
        username=entry.pw_name,
        name=entry.pw_gecos.split(",", 1)[0],
        home_dir=entry.pw_dir,
    )


def lookup_user(user_str: str) -> User:
    """Look ``user_str`` up by name, then by uid; a bare uid need not exist.

    Raises ValueError if it is neither a known user nor a valid uid.
    """
    try:
        return _from_passwd(pwd.getpwnam(user_str))
    except (KeyError, ValueError):
        pass
    try:
        uid = _parse_id(user_str)
    except ValueError:
        raise ValueError(
            f"user {user_str} is not a uid and does not exist on the system"
        ) from None
    try:
        return _from_passwd(pwd.getpwuid(uid))
    except (KeyError, OverflowError):
        return User(uid=str(uid), home_dir="/")


def _gid_from_name(group: str, fallback_to_uid: bool) -> int | None:
    """The gid for a group name or number; None means "use the uid"."""
    try:
        text = str(grp.getgrnam(group).gr_gid)
    except (KeyError, ValueError):
        text = group
    try:
        return _parse_id(text)
    except ValueError:
        if fallback_to_uid:
            return None
        raise


def uid_and_gid_from_string(user_group: str, fallback_to_uid: bool) -> tuple[int, int]:
    """Parse "user[:group]" into (uid, gid).

    Names are looked up; numeric ids need not exist. Without a usable group
    the gid equals the uid when ``fallback_to_uid`` is set, otherwise
    ValueError is raised.
    """
    parts = user_group.split(":")
    group = parts[1] if len(parts) > 1 else ""
    uid = _parse_id(lookup_user(parts[0]).uid)
    gid = _gid_from_name(group, fallback_to_uid)
    return uid, uid if gid is None else gid


def get_user_group(chown: str, env: Iterable[str] | None) -> tuple[int, int]:
    """The (uid, gid) for a --chown value, or (-1, -1) when it is empty."""
    if not chown:
        return DO_NOT_CHANGE_UID, DO_NOT_CHANGE_GID
    resolved = resolve_environment_replacement(chown, env, False)
    return uid_and_gid_from_string(resolved, True)