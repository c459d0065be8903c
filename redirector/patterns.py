"""Pattern compiler for Simple Redirect.

Turns a stored pattern string into a structured matcher and into the two
forms the enforcement paths need:

  build_condition()  — declarative RuleCondition for the rule engine
  url_matches()      — direct comparator used by the fallback matcher

Both the in-memory declarative engine (condition_matches) and the fallback
matcher go through host_matches() / path_matches() below. There is exactly one
implementation of "does this navigation match this pattern".

Pattern grammar:
    [scheme://]domain[/path]
    scheme  — "*://", "http://" or "https://" (stripped, case-insensitive)
    domain  — host name, optionally prefixed with "*." (domain + all subdomains)
    path    — literal path with "*" wildcards; "/*" or absent means every path

IMPORT RULES:
  - `import re2` ONLY — wildcard paths are user input and must not be able to
    trigger catastrophic backtracking.
"""

from __future__ import annotations

import functools
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlsplit

import re2

from redirector.constants import CATCH_ALL_PATH, RESOURCE_TYPE_MAIN_FRAME, SCHEME_PREFIXES
from redirector.errors import InvalidPatternError
from redirector.models import RuleCondition

# Host names after an optional "*." prefix: labels of [a-z0-9-] joined by dots.
_DOMAIN_RE = re2.compile(r"^(\*\.)?[a-z0-9-]+(\.[a-z0-9-]+)*$")

_WILDCARD_PREFIX = "*."

# Only web navigations are ever matched (about:, chrome:, file: etc. are not).
_NAVIGABLE_SCHEMES = frozenset({"http", "https"})


# ─── Compiled pattern ─────────────────────────────────────────────────────────


@dataclass(frozen=True)
class CompiledPattern:
    """Structured form of a pattern string.

    domain: raw domain for exact display/comparison (may start with "*.")
    path:   path suffix including the leading "/", or None for every path
            (an absent path and "/*" compile to the same pattern)
    """

    domain: str
    path: Optional[str] = None

    @property
    def include_subdomains(self) -> bool:
        return self.domain.startswith(_WILDCARD_PREFIX)

    @property
    def host_suffix(self) -> str:
        """Domain with the "*." prefix stripped — used for subdomain comparison."""
        if self.include_subdomains:
            return self.domain[len(_WILDCARD_PREFIX):]
        return self.domain

    @property
    def path_filter(self) -> Optional[str]:
        """Path that must be checked, or None when every path matches."""
        return self.path

    @property
    def normalized(self) -> str:
        return self.domain + (self.path if self.path is not None else CATCH_ALL_PATH)


def compile_pattern(pattern: str) -> CompiledPattern:
    """Compile a pattern string.

    Raises:
        InvalidPatternError: empty pattern, empty or malformed domain.
    """
    if not isinstance(pattern, str):
        raise InvalidPatternError(pattern, "pattern must be a string")

    text = pattern.strip()
    lowered = text.lower()
    for prefix in SCHEME_PREFIXES:
        if lowered.startswith(prefix):
            text = text[len(prefix):]
            break

    if not text:
        raise InvalidPatternError(pattern, "pattern is empty")

    slash = text.find("/")
    if slash == -1:
        domain, path = text, None
    else:
        domain, path = text[:slash], text[slash:]
        if path == CATCH_ALL_PATH:
            path = None

    domain = domain.lower()
    if not domain:
        raise InvalidPatternError(pattern, "pattern has no domain")
    if not _DOMAIN_RE.match(domain):
        raise InvalidPatternError(pattern, f"malformed domain {domain!r}")

    return CompiledPattern(domain=domain, path=path)


def normalize_pattern(pattern: str) -> str:
    """Return the canonical form of a pattern: scheme stripped, bare domain → "/*".

    Normalising an already-normalised pattern is a no-op.
    """
    return compile_pattern(pattern).normalized


def is_valid_pattern(pattern: str) -> bool:
    try:
        compile_pattern(pattern)
    except InvalidPatternError:
        return False
    return True


# ─── Declarative condition ────────────────────────────────────────────────────


def build_condition(compiled: CompiledPattern) -> RuleCondition:
    """Build the declarative condition for a compiled pattern.

    Always scoped to top-level navigations. A catch-all path adds no filter —
    it is redundant with domain-only scoping.
    """
    return RuleCondition(
        request_domains=(compiled.host_suffix,),
        url_filter=compiled.path_filter,
        resource_types=(RESOURCE_TYPE_MAIN_FRAME,),
    )


def condition_matches(condition: RuleCondition, url: str) -> bool:
    """Evaluate a declarative condition against a top-level navigation URL.

    Used by the in-memory rule engine. Never raises.
    """
    parts = _split(url)
    if parts is None:
        return False
    host, target = parts
    if condition.request_domains and not any(
        _host_in_domain(host, domain) for domain in condition.request_domains
    ):
        return False
    if condition.url_filter is not None and not _path_regex(condition.url_filter).match(target):
        return False
    return True


# ─── Direct comparator ────────────────────────────────────────────────────────


def host_matches(compiled: CompiledPattern, url: str) -> bool:
    """True if the URL's host equals the pattern's domain or is a subdomain of it.

    Malformed URLs never match.
    """
    parts = _split(url)
    if parts is None:
        return False
    return _host_in_domain(parts[0], compiled.host_suffix)


def path_matches(compiled: CompiledPattern, url: str) -> bool:
    """True if the URL's path (plus query) satisfies the pattern's path filter."""
    path_filter = compiled.path_filter
    if path_filter is None:
        return _split(url) is not None
    parts = _split(url)
    if parts is None:
        return False
    return _path_regex(path_filter).match(parts[1]) is not None


def url_matches(pattern: "str | CompiledPattern", url: str) -> bool:
    """Full match of a navigation URL against a pattern (domain + path).

    Accepts a raw pattern string or an already-compiled pattern. A malformed
    pattern or URL is "no match", never an exception.
    """
    try:
        compiled = pattern if isinstance(pattern, CompiledPattern) else compile_pattern(pattern)
    except InvalidPatternError:
        return False
    return host_matches(compiled, url) and path_matches(compiled, url)


# ─── Internals ────────────────────────────────────────────────────────────────


def _split(url: object) -> Optional[tuple[str, str]]:
    """Return (host, path-plus-query) for a URL, or None if it is unusable."""
    if not isinstance(url, str) or not url:
        return None
    try:
        parts = urlsplit(url)
        host = parts.hostname
    except ValueError:
        return None
    if parts.scheme not in _NAVIGABLE_SCHEMES or not host:
        return None
    target = parts.path or "/"
    if parts.query:
        target = f"{target}?{parts.query}"
    return host.lower(), target


def _host_in_domain(host: str, domain: str) -> bool:
    return host == domain or host.endswith("." + domain)


@functools.lru_cache(maxsize=512)
def _path_regex(path_filter: str):
    """Compile a wildcard path into an anchored-at-start, open-ended regex."""
    body = ".*".join(re2.escape(chunk) for chunk in path_filter.split("*"))
    return re2.compile("^" + body)
