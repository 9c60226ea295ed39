"""Generate bootstrap scripts and classify how risky they are to run.

dotapply only ever writes and reads these scripts. Running one is left to a
human after reviewing the classification.
"""

from __future__ import annotations

import logging
import os
import re
import shlex
from pathlib import Path
from typing import Iterable, Iterator

import click

from .config import Profile
from .errors import ScriptBlocked, ScriptDangerous
from .models import BootstrapAction, BootstrapScript, PatternMatch, SafetyLevel

logger = logging.getLogger(__name__)

SCRIPT_MODE = 0o755

_SEPARATORS = {";", "&&", "||", "|", "&", ";;"}
_ESCALATION = {"sudo", "doas", "pkexec", "su"}
# Short option letters and long options whose value is a separate word.
_VALUE_OPTIONS: dict[str, tuple[str, frozenset[str]]] = {
    "sudo": (
        "CDgpRrTtUu",
        frozenset(
            {
                "--chdir",
                "--chroot",
                "--close-from",
                "--command-timeout",
                "--group",
                "--host",
                "--other-user",
                "--prompt",
                "--role",
                "--type",
                "--user",
            }
        ),
    ),
    "doas": ("Cu", frozenset()),
    "pkexec": ("", frozenset({"--user"})),
    "su": (
        "cgGsw",
        frozenset({"--command", "--group", "--session-command", "--shell", "--supp-group", "--whitelist-environment"}),
    ),
}
_SU_COMMAND_OPTIONS = {"-c", "--command", "--session-command"}
_SHELL_VALUE_OPTIONS = ("oO", frozenset({"--init-file", "--rcfile"}))
_SHELLS = {"sh", "bash", "zsh", "ksh", "dash", "fish"}
_DOWNLOADERS = {"curl", "wget"}
_TOP_LEVEL = re.compile(r"/[^/]+")
_NUMERIC_MODE = re.compile(r"[0-7]{3,4}")
_SYMBOLIC_WORLD_WRITE = re.compile(r"(^|,)([ugo]*[ao][ugo]*)?\+[rwxXst]*w")


def classify_text(text: str, path: Path | None = None) -> BootstrapScript:
    """Classify script ``text`` without touching the filesystem."""

    matches: list[PatternMatch] = []
    for line_number, line in enumerate(text.splitlines(), start=1):
        matches.extend(_classify_line(line, line_number))

    level = SafetyLevel.SAFE
    for match in matches:
        if match.level.severity > level.severity:
            level = match.level

    ordered = sorted(matches, key=lambda match: (-match.level.severity, match.line_number))
    return BootstrapScript(path=path, level=level, matches=tuple(ordered))


def classify(path: Path) -> BootstrapScript:
    """Read and classify the script at ``path``."""

    return classify_text(path.read_text(errors="replace"), path)


def ensure_reviewable(script: BootstrapScript) -> None:
    """Raise if ``script`` must not be offered for manual execution as-is."""

    if script.level is SafetyLevel.BLOCKED:
        raise ScriptBlocked(script.path)
    if script.level is SafetyLevel.DANGEROUS:
        raise ScriptDangerous(script.path)


def script_path(profile: Profile, repo_root: Path) -> Path | None:
    """Return where the profile's bootstrap script lives, if it has one."""

    if profile.bootstrap_script:
        candidate = Path(profile.bootstrap_script)
        return candidate if candidate.is_absolute() else repo_root / candidate
    if profile.system_commands:
        return repo_root / "scripts" / f"bootstrap-{profile.name}.sh"
    return None


def render_script(profile: Profile, path: Path) -> str:
    lines = [
        "#!/usr/bin/env bash",
        f"# Bootstrap script for profile '{profile.name}'.",
        "# Generated by dotapply, which never runs it. Review it, then run it manually:",
        f"#   bash {path}",
        "set -euo pipefail",
        "",
    ]
    lines.extend(profile.system_commands)
    return "\n".join(lines) + "\n"


def prepare_script(
    profile: Profile, repo_root: Path, *, dry_run: bool = False
) -> tuple[BootstrapAction, BootstrapScript | None]:
    """Generate the profile's script when missing, then classify it.

    An existing script is never overwritten so manual edits survive.
    """

    path = script_path(profile, repo_root)
    if path is None:
        return BootstrapAction.NONE, None

    if path.exists():
        return BootstrapAction.EXISTING, classify(path)

    text = render_script(profile, path)
    if dry_run:
        return BootstrapAction.WOULD_GENERATE, classify_text(text, path)

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)
    path.chmod(SCRIPT_MODE)
    logger.info("Generated bootstrap script %s", path)
    return BootstrapAction.GENERATED, classify_text(text, path)


def edit_script(path: Path) -> None:
    """Open ``path`` in the user's editor; the only sanctioned way to change it."""

    click.edit(filename=str(path))


# ----------------------------------------------------------------------
# Line analysis


def _classify_line(line: str, line_number: int) -> list[PatternMatch]:
    excerpt = line.strip()
    if not excerpt or excerpt.startswith("#"):
        return []
    return _classify_commands(line, line_number, excerpt)


def _classify_commands(text: str, line_number: int, excerpt: str) -> list[PatternMatch]:
    commands = list(_split_commands(_tokenize(text)))
    matches: list[PatternMatch] = []

    for index, command in enumerate(commands):
        words, escalated, nested = _unwrap(command)
        if escalated:
            matches.append(PatternMatch(SafetyLevel.DANGEROUS, "privilege escalation", line_number, excerpt))
        # Strings run through ``su -c`` or ``sh -c`` are scripts of their own.
        for payload in nested:
            matches.extend(_classify_commands(payload, line_number, excerpt))
        if not words:
            continue

        program = os.path.basename(words[0])
        args = words[1:]
        if program == "rm":
            level = _classify_rm(args)
            if level is SafetyLevel.BLOCKED:
                matches.append(PatternMatch(level, "recursive forced delete of a root-level path", line_number, excerpt))
            elif level is SafetyLevel.WARNING:
                matches.append(PatternMatch(level, "recursive forced delete", line_number, excerpt))
        elif program == "chmod" and any(_is_permissive_mode(arg) for arg in args):
            matches.append(PatternMatch(SafetyLevel.WARNING, "permissive chmod", line_number, excerpt))
        elif program.startswith("mkfs") or (program == "dd" and any(arg.startswith("of=/dev/") for arg in args)):
            matches.append(PatternMatch(SafetyLevel.DANGEROUS, "raw disk write", line_number, excerpt))
        elif program in _DOWNLOADERS and index + 1 < len(commands):
            next_words, _, _ = _unwrap(commands[index + 1])
            if next_words and os.path.basename(next_words[0]) in _SHELLS:
                matches.append(PatternMatch(SafetyLevel.WARNING, "download piped to a shell", line_number, excerpt))

    return matches


def _tokenize(line: str) -> list[str]:
    lexer = shlex.shlex(line, posix=True, punctuation_chars=True)
    lexer.whitespace_split = True
    try:
        return list(lexer)
    except ValueError:
        return line.split()


def _split_commands(tokens: Iterable[str]) -> Iterator[list[str]]:
    current: list[str] = []
    for token in tokens:
        if token in _SEPARATORS:
            if current:
                yield current
            current = []
            continue
        current.append(token)
    if current:
        yield current


def _unwrap(words: list[str]) -> tuple[list[str], bool, list[str]]:
    """Peel escalation wrappers and ``-c`` shells off a command.

    Returns the command that actually runs, whether it runs escalated, and
    any command strings handed to ``su -c`` or ``<shell> -c`` for separate
    classification.
    """

    escalated = False
    index = _skip_assignments(words, 0)
    while index < len(words):
        program = os.path.basename(words[index])
        rest = words[index + 1 :]
        if program == "su":
            return [], True, _su_commands(rest)
        if program in _ESCALATION:
            escalated = True
            _, start = _parse_options(rest, *_VALUE_OPTIONS[program])
            index = _skip_assignments(words, index + 1 + start)
            continue
        if program in _SHELLS:
            options, start = _parse_options(rest, *_SHELL_VALUE_OPTIONS)
            if any(name == "-c" for name, _ in options) and start < len(rest):
                return [], escalated, [rest[start]]
        break
    return words[index:], escalated, []


def _skip_assignments(words: list[str], index: int) -> int:
    while index < len(words) and "=" in words[index] and not words[index].startswith("-"):
        index += 1
    return index


def _su_commands(words: list[str]) -> list[str]:
    # su accepts options before and after the user name.
    commands: list[str] = []
    index = 0
    while index < len(words):
        options, start = _parse_options(words[index:], *_VALUE_OPTIONS["su"])
        commands.extend(value for name, value in options if name in _SU_COMMAND_OPTIONS)
        index += max(start, 1)
    return commands


def _parse_options(
    words: list[str], short_values: str, long_values: frozenset[str]
) -> tuple[list[tuple[str, str]], int]:
    """Split leading options from operands.

    Options named in ``short_values`` or ``long_values`` take the next word
    (or the rest of a short-option cluster) as their value. Returns the
    options as ``(name, value)`` pairs and the index of the first operand.
    """

    options: list[tuple[str, str]] = []
    index = 0
    while index < len(words):
        word = words[index]
        if word == "--":
            return options, index + 1
        if not word.startswith("-") or word == "-":
            break
        index += 1

        if word.startswith("--"):
            name, has_value, value = word.partition("=")
            if name in long_values and not has_value and index < len(words):
                value = words[index]
                index += 1
            options.append((name, value))
            continue

        for position, letter in enumerate(word[1:], start=2):
            if letter not in short_values:
                options.append((f"-{letter}", ""))
                continue
            value = word[position:]
            if not value and index < len(words):
                value = words[index]
                index += 1
            options.append((f"-{letter}", value))
            break
    return options, index


def _classify_rm(args: list[str]) -> SafetyLevel:
    recursive = forced = False
    targets: list[str] = []
    options_done = False
    for arg in args:
        if options_done or not arg.startswith("-") or arg == "-":
            targets.append(arg)
        elif arg == "--":
            options_done = True
        elif arg.startswith("--"):
            recursive = recursive or arg == "--recursive"
            forced = forced or arg == "--force"
        else:
            flags = arg[1:]
            recursive = recursive or "r" in flags or "R" in flags
            forced = forced or "f" in flags

    if not (recursive and forced):
        return SafetyLevel.SAFE
    if any(_is_root_level(target) for target in targets):
        return SafetyLevel.BLOCKED
    return SafetyLevel.WARNING


def _is_root_level(target: str) -> bool:
    if not target.startswith("/"):
        return False
    stripped = target
    while stripped.endswith("*") or (stripped.endswith("/") and len(stripped) > 1):
        stripped = stripped[:-1]
    if stripped in ("", "/"):
        return True
    return bool(_TOP_LEVEL.fullmatch(stripped))


def _is_permissive_mode(arg: str) -> bool:
    if _NUMERIC_MODE.fullmatch(arg):
        return bool(int(arg[-1]) & 0o2)
    return bool(_SYMBOLIC_WORLD_WRITE.search(arg)) and not arg.startswith("-")
