"""Domain name matchers: full, sub-domain, keyword, regexp and a mix of them.

All matchers are case-insensitive and ignore a trailing dot, so
``"Example.COM."`` and ``"example.com"`` behave the same. A successful
match returns the value stored with the matching pattern; a failed match
raises KeyError.
"""

from __future__ import annotations

import re
from typing import (
    Callable,
    Dict,
    Generic,
    Iterable,
    Iterator,
    Optional,
    Protocol,
    Tuple,
    TypeVar,
    Union,
)

T = TypeVar("T")

MATCHER_FULL = "full"
MATCHER_DOMAIN = "domain"
MATCHER_REGEXP = "regexp"
MATCHER_KEYWORD = "keyword"

ParseStringFunc = Callable[[str], Tuple[str, T]]


class Matcher(Protocol[T]):
    def match(self, s: str) -> T:
        ...


class WriteableMatcher(Matcher[T], Protocol[T]):
    def add(self, pattern: str, value: T) -> None:
        ...


class NoDefaultMatcherError(ValueError):
    """A pattern without a type prefix was added and no default type is set."""

    def __init__(self) -> None:
        super().__init__("default matcher is not set")


def trim_dot(s: str) -> str:
    """Remove one trailing '.' from ``s``."""
    return s[:-1] if s.endswith(".") else s


def normalize_domain(s: str) -> str:
    """Lower-case ``s`` and drop its trailing dot: "GOOGLE.com." -> "google.com"."""
    return trim_dot(s).lower()


class ReverseDomainScanner:
    """Walks the labels of a domain from the last one to the first."""

    def __init__(self, s: str) -> None:
        self._s = trim_dot(s)
        self._p = len(self._s)
        self._t = len(self._s)

    def scan(self) -> bool:
        """Advance to the previous label; return False when none is left."""
        if self._p <= 0:
            return False
        self._t = self._p
        self._p = self._s.rfind(".", 0, self._p)
        return True

    def next_label_offset(self) -> int:
        """Offset of the current label within the domain."""
        return self._p + 1

    def next_label(self) -> str:
        """The current label."""
        return self._s[self._p + 1 : self._t]

    def all(self) -> Iterator[str]:
        """Yield every non-empty label, last label first."""
        for label in reversed(self._s.split(".")):
            if label:
                yield label


class _LabelNode(Generic[T]):
    __slots__ = ("children", "value", "has_value")

    def __init__(self) -> None:
        self.children: Dict[str, _LabelNode[T]] = {}
        self.value: Optional[T] = None
        self.has_value = False

    def store(self, value: T) -> None:
        self.value = value
        self.has_value = True

    def __len__(self) -> int:
        return sum(len(node) + node.has_value for node in self.children.values())


class SubDomainMatcher(Generic[T]):
    """Matches a domain and all of its sub-domains; the longest pattern wins."""

    def __init__(self) -> None:
        self._root: _LabelNode[T] = _LabelNode()

    def match(self, s: str) -> T:
        node = self._root
        found, value = node.has_value, node.value
        for label in ReverseDomainScanner(normalize_domain(s)).all():
            child = node.children.get(label)
            if child is None:
                break
            if child.has_value:
                found, value = True, child.value
            node = child
        if not found:
            raise KeyError(s)
        return value  # type: ignore[return-value]

    def __len__(self) -> int:
        return len(self._root)

    def add(self, pattern: str, value: T) -> None:
        node = self._root
        for label in ReverseDomainScanner(normalize_domain(pattern)).all():
            node = node.children.setdefault(label, _LabelNode())
        node.store(value)


class FullMatcher(Generic[T]):
    """Matches exactly the domains that were added."""

    def __init__(self) -> None:
        self._domains: Dict[str, T] = {}

    def add(self, pattern: str, value: T) -> None:
        self._domains[normalize_domain(pattern)] = value

    def match(self, s: str) -> T:
        try:
            return self._domains[normalize_domain(s)]
        except KeyError:
            raise KeyError(s) from None

    def __len__(self) -> int:
        return len(self._domains)


class KeywordMatcher(Generic[T]):
    """Matches domains that contain one of the keywords."""

    def __init__(self) -> None:
        self._keywords: Dict[str, T] = {}

    def add(self, pattern: str, value: T) -> None:
        self._keywords[normalize_domain(pattern)] = value

    def match(self, s: str) -> T:
        s = normalize_domain(s)
        for keyword, value in self._keywords.items():
            if keyword in s:
                return value
        raise KeyError(s)

    def __len__(self) -> int:
        return len(self._keywords)


class RegexMatcher(Generic[T]):
    """Matches domains against regular expressions.

    Expressions are searched in the lower-case domain without trailing dot.
    """

    def __init__(self) -> None:
        self._regs: Dict[str, Tuple[re.Pattern, T]] = {}

    def add(self, pattern: str, value: T) -> None:
        """Add an expression; raises ValueError if it does not compile."""
        existing = self._regs.get(pattern)
        if existing is not None:
            self._regs[pattern] = (existing[0], value)
            return
        try:
            compiled = re.compile(pattern)
        except re.error as e:
            raise ValueError(f"invalid regexp {pattern!r}: {e}") from e
        self._regs[pattern] = (compiled, value)

    def match(self, s: str) -> T:
        s = normalize_domain(s)
        for compiled, value in self._regs.values():
            if compiled.search(s):
                return value
        raise KeyError(s)

    def __len__(self) -> int:
        return len(self._regs)


class MixMatcher(Generic[T]):
    """Combines the four matchers; patterns carry a "type:" prefix.

    Without a prefix the default type set by :meth:`set_default_matcher`
    is used. Matching tries full, domain, regexp and keyword in that order.
    """

    def __init__(self) -> None:
        self._default_matcher = ""
        self._full: FullMatcher[T] = FullMatcher()
        self._domain: SubDomainMatcher[T] = SubDomainMatcher()
        self._regex: RegexMatcher[T] = RegexMatcher()
        self._keyword: KeywordMatcher[T] = KeywordMatcher()

    def set_default_matcher(self, typ: str) -> None:
        self._default_matcher = typ

    def get_sub_matcher(self, typ: str) -> Optional[WriteableMatcher[T]]:
        """Return the matcher for ``typ``, or None if the type is unknown."""
        return {
            MATCHER_FULL: self._full,
            MATCHER_DOMAIN: self._domain,
            MATCHER_REGEXP: self._regex,
            MATCHER_KEYWORD: self._keyword,
        }.get(typ)

    def add(self, pattern: str, value: T) -> None:
        """Add a pattern; raises ValueError for an unknown or missing type."""
        typ, sep, rest = pattern.partition(":")
        if not sep:
            typ, rest = "", pattern
        if not typ:
            if not self._default_matcher:
                raise NoDefaultMatcherError()
            typ = self._default_matcher
        sub = self.get_sub_matcher(typ)
        if sub is None:
            raise ValueError(f"unsupported match type [{typ}]")
        sub.add(rest, value)

    def match(self, s: str) -> T:
        for matcher in (self._full, self._domain, self._regex, self._keyword):
            try:
                return matcher.match(s)
            except KeyError:
                continue
        raise KeyError(s)

    def __len__(self) -> int:
        return len(self._full) + len(self._domain) + len(self._regex) + len(self._keyword)


def _pattern_only(s: str) -> Tuple[str, None]:
    if any(c.isspace() for c in s):
        raise ValueError("rule string has more than one section")
    return s, None


def load(
    matcher: WriteableMatcher[T],
    s: str,
    parse_string: Optional[ParseStringFunc] = None,
) -> None:
    """Parse ``s`` into a pattern and value and add them to ``matcher``.

    Without ``parse_string`` the whole string is the pattern and the value
    is None; a string holding whitespace is then rejected.
    """
    pattern, value = (parse_string or _pattern_only)(s)
    matcher.add(pattern, value)


def load_from_text_reader(
    matcher: WriteableMatcher[T],
    reader: Iterable[Union[str, bytes]],
    parse_string: Optional[ParseStringFunc] = None,
) -> None:
    """Load one rule per line; '#' starts a comment and blank lines are skipped.

    Raises ValueError naming the offending line.
    """
    for line_no, line in enumerate(reader, 1):
        if isinstance(line, bytes):
            line = line.decode()
        s = line.partition("#")[0].strip()
        if not s:
            continue
        try:
            load(matcher, s, parse_string)
        except ValueError as e:
            raise ValueError(f"line {line_no}: {e}") from e


def new_domain_mix_matcher() -> MixMatcher[None]:
    """Return a :class:`MixMatcher` whose default type is "domain"."""
    m: MixMatcher[None] = MixMatcher()
    m.set_default_matcher(MATCHER_DOMAIN)
    return m