"""
Upstream Sources
================
Definitions of the upstream transit data providers and their ID namespaces.

Each source is an immutable value passed explicitly to the ID normalizer and
the override merge engine; nothing reads it from process-wide state.
"""

from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

from ..config import API_BASES


@dataclass(frozen=True)
class Source:
    """
    One upstream transit data provider.

    Attributes:
        id: Short unique name (e.g. 'tbilisi', 'rustavi').
        internal_prefix: Prepended to produce internal IDs. Empty for the
            default source.
        namespace_prefixes: Upstream namespace prefixes this source emits,
            in rule order. The first entry is the primary one.
        separator: Placed between internal_prefix and the rest of the ID.
        api_base: Base URL of the v2 API.
    """

    id: str
    internal_prefix: str = ''
    namespace_prefixes: Tuple[str, ...] = ('1:',)
    separator: str = ''
    api_base: str = ''

    def __post_init__(self):
        if not self.namespace_prefixes:
            raise ValueError(f"Source '{self.id}' needs at least one namespace prefix")
        # Lists from config files are accepted but stored as a tuple
        object.__setattr__(self, 'namespace_prefixes', tuple(self.namespace_prefixes))

    @property
    def is_default(self) -> bool:
        return not self.internal_prefix

    @property
    def primary_prefix(self) -> str:
        return self.namespace_prefixes[0]

    @property
    def secondary_prefixes(self) -> Tuple[str, ...]:
        return self.namespace_prefixes[1:]

    @property
    def api_base_v3(self) -> str:
        return self.api_base.replace('/v2', '/v3')

    def has_internal_prefix(self, value: str) -> bool:
        """True if value starts with this source's internal prefix (case-insensitive)."""
        if self.is_default:
            return False
        marker = (self.internal_prefix + self.separator).lower()
        return value.lower().startswith(marker)

    def claims(self, row_id: str) -> bool:
        """
        True if an on-disk row ID belongs to this (non-default) source.

        A row is claimed when it carries the internal prefix, or when it is a
        legacy row still tagged with one of the secondary namespaces. The
        primary namespace is shared with the default source, so rows tagged
        with it are left to the default source.
        """
        if self.is_default or not isinstance(row_id, str):
            return False
        if self.has_internal_prefix(row_id):
            return True
        return any(row_id.startswith(p) for p in self.secondary_prefixes)


# ============================================================================
# REGISTRY
# ============================================================================

SOURCES: Tuple[Source, ...] = (
    Source(
        id='tbilisi',
        namespace_prefixes=('1:',),
        api_base=API_BASES['tbilisi'],
    ),
    Source(
        id='rustavi',
        internal_prefix='r',
        separator='',
        namespace_prefixes=('1:', '2:'),
        api_base=API_BASES['rustavi'],
    ),
)


def validate_sources(sources: Iterable[Source]) -> None:
    """Check that IDs are unique and exactly one source is the default."""
    sources = list(sources)
    ids = [s.id for s in sources]
    if len(set(ids)) != len(ids):
        raise ValueError(f"Duplicate source ids: {ids}")
    defaults = [s.id for s in sources if s.is_default]
    if len(defaults) != 1:
        raise ValueError(f"Expected exactly one default source, found {defaults}")


def get_source(source_id: str, sources: Iterable[Source] = SOURCES) -> Source:
    """Look up a source by id."""
    for source in sources:
        if source.id == source_id:
            return source
    raise KeyError(f"Unknown source: {source_id}")


def default_source(sources: Iterable[Source] = SOURCES) -> Source:
    for source in sources:
        if source.is_default:
            return source
    raise ValueError("No default source configured")


def owner_of(row_id: str, sources: Iterable[Source] = SOURCES) -> Optional[Source]:
    """
    Find the source an override table row belongs to.

    Non-default sources are asked first; anything left over belongs to the
    default source.
    """
    fallback = None
    for source in sources:
        if source.is_default:
            fallback = source
        elif source.claims(row_id):
            return source
    return fallback


validate_sources(SOURCES)
