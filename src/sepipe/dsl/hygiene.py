"""
Hygienic Substitution Engine

Rewrites a templated code block by replacing free identifiers with
caller-supplied strings:

- Simultaneous: the whole replacement table is built first and applied in
  one pass over the original tokens, so replacement text is never itself
  substituted. {a -> b, b -> a} swaps.
- Token-exact: only whole identifier tokens are replaced; `xyz` is not an
  occurrence of `x`. Names inside string literals or comments are left
  alone, as are attribute names after `.` and keyword argument names in
  `f(k=...)`.
- Capture-avoiding: a bare identifier replacement that is already used in
  the block is either rejected (CaptureConflict) or the existing binding is
  renamed to a fresh identifier first, depending on CapturePolicy.
- Deterministic: placeholders are handled in lexicographic order and fresh
  names come from a counter local to the call.
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Set, Tuple, Union

from ..models import CapturePolicy, PipelineConfig, resolve_config
from ..sepipe_exceptions import (
    CaptureConflict,
    EmptyExpression,
    InvalidIdentifier,
    UnknownPlaceholder,
)
from .spec_model import IdentifierPolicy, get_identifier_policy
from .tokenizer import TokenStream, Tokenizer

logger = logging.getLogger(__name__)

Block = Union[str, TokenStream]


@dataclass(frozen=True)
class SubstitutionResult:
    """Outcome of one hygienic rewrite.

    ::: This is-in-layer Domain-Specific-Language-Layer.
    ::: This is a value-object.
    ::: This is stateless.
    """
    text: str
    replacements: Dict[str, int] = field(default_factory=dict)
    renamed: Dict[str, str] = field(default_factory=dict)
    unknown_placeholders: Tuple[str, ...] = ()

    def __str__(self) -> str:
        return self.text


@dataclass(frozen=True)
class _Entry:
    placeholder: str
    replacement: str
    bare_identifier: bool


class HygienicSubstituter:
    """
    Applies SubstitutionMaps to code blocks under one configuration.

    Usage:
        sub = HygienicSubstituter(PipelineConfig(capture_policy="rename"))
        result = sub.substitute("y = x + 1", {"x": "y"})
        result.text  # "y_1 = y + 1"

    ::: This is-in-layer Domain-Specific-Language-Layer.
    ::: This is a rewriter.
    ::: This is-in-process Main-Process.
    ::: This is stateless.
    """

    def __init__(self, config: Optional[PipelineConfig] = None):
        self.config = resolve_config(config)
        self.policy: IdentifierPolicy = get_identifier_policy(self.config.identifier_policy)
        self.tokenizer = Tokenizer()

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def substitute(self, block: Block, mapping: Mapping[str, str]) -> SubstitutionResult:
        """
        Replace every free occurrence of each placeholder in block.

        Args:
            block: Source string or a TokenStream from the tokenizer
            mapping: placeholder -> replacement text

        Returns:
            SubstitutionResult with the rewritten text

        Raises:
            MalformedBlock: block or a replacement cannot be tokenized
            InvalidIdentifier: a placeholder is not a legal identifier
            EmptyExpression: a replacement is blank
            CaptureConflict: under REJECT, a replacement would be captured
            UnknownPlaceholder: under strict_placeholders, a placeholder
                does not occur in the block
        """
        stream = self._as_stream(block)
        entries = self._build_entries(mapping)
        free = self._free_positions(stream)

        occurring = {stream.tokens[i].value for i in free}
        unknown = tuple(e.placeholder for e in entries if e.placeholder not in occurring)
        if unknown:
            logger.debug(f"Placeholders not in block: {', '.join(unknown)}")
            if self.config.strict_placeholders:
                raise UnknownPlaceholder(unknown)

        placeholders = {e.placeholder for e in entries}
        scope = self.binding_scope(stream, placeholders)
        renamed = self._resolve_captures(entries, scope, stream)

        rewrite: Dict[str, str] = {e.placeholder: e.replacement for e in entries}
        rewrite.update(renamed)

        text, counts = self._splice(stream, free, rewrite)
        logger.debug(
            f"Substituted {sum(counts.values())} occurrence(s) "
            f"of {len(entries)} placeholder(s), renamed {len(renamed)}"
        )
        return SubstitutionResult(
            text=text,
            replacements={e.placeholder: counts.get(e.placeholder, 0) for e in entries},
            renamed=renamed,
            unknown_placeholders=unknown,
        )

    def binding_scope(self, block: Block, exclude: Iterable[str] = ()) -> Set[str]:
        """Identifiers already used in block, minus excluded names and reserved words."""
        stream = self._as_stream(block)
        excluded = set(exclude)
        return {
            stream.tokens[i].value
            for i in self._free_positions(stream)
            if stream.tokens[i].value not in excluded
        }

    def free_identifiers(self, block: Block) -> List[str]:
        """Free identifiers of block, in order of first occurrence."""
        stream = self._as_stream(block)
        seen: Dict[str, None] = {}
        for i in self._free_positions(stream):
            seen.setdefault(stream.tokens[i].value, None)
        return list(seen)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _as_stream(self, block: Block) -> TokenStream:
        if isinstance(block, TokenStream):
            return block
        return self.tokenizer.tokenize(block)

    def _free_positions(self, stream: TokenStream) -> List[int]:
        positions = []
        for i, token in enumerate(stream.tokens):
            if not token.is_identifier:
                continue
            if stream.is_attribute(i) or stream.is_keyword_argument(i):
                continue
            if self.policy.is_reserved(token.value):
                continue
            positions.append(i)
        return positions

    def _build_entries(self, mapping: Mapping[str, str]) -> List[_Entry]:
        entries = []
        for placeholder in sorted(mapping):
            reason = self.policy.check(placeholder)
            if reason is not None:
                raise InvalidIdentifier(placeholder, self.policy.name, reason)

            replacement = mapping[placeholder]
            if not isinstance(replacement, str):
                raise InvalidIdentifier(
                    replacement, self.policy.name,
                    f"replacement for '{placeholder}' must be str"
                )
            if not replacement.strip():
                raise EmptyExpression(placeholder)

            tokens = self.tokenizer.tokenize(replacement).tokens
            bare = (
                len(tokens) == 1
                and tokens[0].is_identifier
                and not self.policy.is_reserved(tokens[0].value)
            )
            entries.append(_Entry(placeholder, replacement, bare))
        return entries

    def _resolve_captures(self, entries: List[_Entry], scope: Set[str],
                          stream: TokenStream) -> Dict[str, str]:
        """Return old -> fresh renames, or raise under the reject policy."""
        conflicts: List[Tuple[str, str]] = []
        for entry in entries:
            name = entry.replacement.strip()
            if entry.bare_identifier and name in scope:
                conflicts.append((name, entry.placeholder))

        if not conflicts:
            return {}

        if self.config.capture_policy is CapturePolicy.REJECT:
            identifier, placeholder = conflicts[0]
            raise CaptureConflict(identifier, placeholder, CapturePolicy.REJECT.value)

        taken = set(stream.identifiers())
        for entry in entries:
            taken.add(entry.placeholder)
            taken.update(self.tokenizer.tokenize(entry.replacement).identifiers())

        counter = itertools.count(1)
        renamed: Dict[str, str] = {}
        for identifier, placeholder in conflicts:
            if identifier in renamed:
                continue
            fresh = self._fresh_name(identifier, placeholder, taken, counter)
            taken.add(fresh)
            renamed[identifier] = fresh
            logger.debug(
                f"Renamed binding '{identifier}' -> '{fresh}' "
                f"to avoid capture by replacement for '{placeholder}'"
            )
        return renamed

    def _fresh_name(self, base: str, placeholder: str, taken: Set[str], counter) -> str:
        # Distinct n give distinct candidates, so len(taken) + 1 tries suffice
        # unless the policy rejects the generated names outright.
        for n in itertools.islice(counter, len(taken) + 1):
            candidate = self.config.fresh_name_template.format(name=base, n=n)
            if candidate not in taken and self.policy.check(candidate) is None:
                return candidate
        raise CaptureConflict(base, placeholder, CapturePolicy.RENAME.value)

    @staticmethod
    def _splice(stream: TokenStream, free: List[int],
                rewrite: Mapping[str, str]) -> Tuple[str, Dict[str, int]]:
        source = stream.source
        pieces: List[str] = []
        counts: Dict[str, int] = {}
        last = 0
        for i in free:
            token = stream.tokens[i]
            if token.value not in rewrite:
                continue
            pieces.append(source[last:token.start])
            pieces.append(rewrite[token.value])
            counts[token.value] = counts.get(token.value, 0) + 1
            last = token.end
        pieces.append(source[last:])
        return "".join(pieces), counts


# =============================================================================
# Reusable templates
# =============================================================================

@dataclass(frozen=True)
class CodeTemplate:
    """A code block tokenized once and rendered with different maps.

    ::: This is-in-layer Domain-Specific-Language-Layer.
    ::: This is a value-object.
    ::: This is stateless.
    """
    stream: TokenStream

    @classmethod
    def from_source(cls, source: str) -> "CodeTemplate":
        return cls(Tokenizer().tokenize(source))

    @property
    def source(self) -> str:
        return self.stream.source

    def free_identifiers(self, config: Optional[PipelineConfig] = None) -> List[str]:
        return HygienicSubstituter(config).free_identifiers(self.stream)

    def render(self, mapping: Mapping[str, str],
               config: Optional[PipelineConfig] = None) -> SubstitutionResult:
        return HygienicSubstituter(config).substitute(self.stream, mapping)


def substitute(block: Block, mapping: Mapping[str, str],
               config: Optional[PipelineConfig] = None) -> SubstitutionResult:
    """Apply mapping to block with a one-off HygienicSubstituter."""
    return HygienicSubstituter(config).substitute(block, mapping)


def free_identifiers(block: Block, config: Optional[PipelineConfig] = None) -> List[str]:
    """Free identifiers of block, in order of first occurrence."""
    return HygienicSubstituter(config).free_identifiers(block)
