# ==============================
# Query Resolver
# ==============================
"""
Resolve one user turn into exactly one Resolution.

States:
1) Normalize: trim; blank input raises EmptyInputError.
   An exact "/name" naming a catalogued command resolves directly.
2) Embed the turn once; the vector is reused by both probes.
3) Command probe (skipped when no commands are indexed):
   top score >= command_threshold AND top - second >= margin -> CommandInvocation.
4) Content probe: items >= content_threshold, in rank order, until the token
   budget is exhausted. Items that do not fit are dropped from the tail.

Failure policy:
- Command collection unreachable, or embedding failure while commands exist:
  surfaced to the caller (fatal to the turn).
- Content probe failure: empty ContextBundle marked degraded.

The resolver only reads the index. It persists nothing.
"""

from __future__ import annotations

import logging
import math
from typing import List, Optional, Sequence, Tuple, Union

from intentchat.config.schema import ResolverConfig, Settings
from intentchat.contracts.chunk_schema import CollectionName, QueryResultItem
from intentchat.contracts.command_schema import CommandCatalog, normalize_command_name
from intentchat.contracts.errors import EmbeddingError, EmptyInputError, VectorIndexError
from intentchat.contracts.resolution_schema import CommandInvocation, ContextBundle
from intentchat.knowledge.embedder import EmbedderAdapter
from intentchat.knowledge.vector_index import VectorIndex
from intentchat.utils.cancellation import CancellationToken, check

logger = logging.getLogger("intentchat.resolver")

COMMAND_REF_PREFIX = "command:"


def estimate_tokens(text: str, chars_per_token: int) -> int:
    return int(math.ceil(len(text) / max(1, chars_per_token)))


def split_slash_token(text: str) -> Tuple[Optional[str], str]:
    """
    "/name rest of line" -> ("name", "rest of line"); no slash -> (None, text).
    """
    if not text.startswith("/"):
        return None, text
    parts = text[1:].split(None, 1)
    if not parts:
        return None, ""
    name = normalize_command_name(parts[0])
    rest = parts[1].strip() if len(parts) > 1 else ""
    return (name or None), rest


def command_name_of(item: QueryResultItem) -> str:
    ref = item.source_ref
    return ref[len(COMMAND_REF_PREFIX):] if ref.startswith(COMMAND_REF_PREFIX) else ref


class QueryResolver:
    def __init__(
        self,
        *,
        embedder: EmbedderAdapter,
        index: VectorIndex,
        catalog: CommandCatalog,
        config: Optional[ResolverConfig] = None,
    ) -> None:
        self.embedder = embedder
        self.index = index
        self.catalog = catalog
        self.config = config or ResolverConfig()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        embedder: EmbedderAdapter,
        index: VectorIndex,
        catalog: CommandCatalog,
    ) -> "QueryResolver":
        return cls(embedder=embedder, index=index, catalog=catalog, config=settings.resolver)

    # ==============================
    # Public API
    # ==============================

    def resolve(
        self,
        text: str,
        *,
        cancel: Optional[CancellationToken] = None,
    ) -> Union[CommandInvocation, ContextBundle]:
        normalized = (text or "").strip()
        if not normalized:
            raise EmptyInputError("input is empty")
        check(cancel)

        slash_name, rest = split_slash_token(normalized)
        if slash_name is not None:
            descriptor = self.catalog.get(slash_name)
            if descriptor is not None:
                logger.debug(f"explicit command /{descriptor.name}", extra={"op": "resolve"})
                return CommandInvocation(name=descriptor.name, raw_args=rest, handler_ref=descriptor.handler_ref)

        probe_text = normalized[1:].strip() if normalized.startswith("/") else normalized
        raw_args = rest if normalized.startswith("/") else normalized
        commands_indexed = self._commands_indexed()

        try:
            vector = self.embedder.embed_query(probe_text or normalized, cancel=cancel)
        except EmbeddingError as exc:
            if commands_indexed:
                raise
            logger.warning(f"embedding failed, continuing without context: {exc}", extra={"op": "resolve"})
            return ContextBundle(degraded=True, degraded_reason=f"embedding failed: {exc}")
        check(cancel)

        if commands_indexed:
            invocation = self._command_probe(vector, raw_args)
            if invocation is not None:
                return invocation
            check(cancel)

        return self._content_probe(vector)

    # ==============================
    # Probes
    # ==============================

    def _commands_indexed(self) -> bool:
        if self.catalog.is_empty():
            return False
        info = self.index.collection_info(CollectionName.COMMANDS.value)
        return info is not None and info.count > 0

    def _command_probe(self, vector: Sequence[float], raw_args: str) -> Optional[CommandInvocation]:
        cfg = self.config
        hits = self.index.query(CollectionName.COMMANDS.value, vector, cfg.k_cmd)
        known = set(self.catalog.names())
        hits = [h for h in hits if command_name_of(h) in known]
        if not hits:
            return None

        top = hits[0]
        second = hits[1].score if len(hits) > 1 else None
        gap = None if second is None else round(top.score - second, 6)
        logger.debug(
            f"command probe top={command_name_of(top)} score={top.score:.4f} gap={gap}",
            extra={"op": "command_probe"},
        )
        if top.score < cfg.command_threshold:
            return None
        if gap is not None and gap < cfg.margin:
            return None

        descriptor = self.catalog.get(command_name_of(top))
        return CommandInvocation(
            name=descriptor.name,
            raw_args=raw_args,
            handler_ref=descriptor.handler_ref,
            score=top.score,
        )

    def _content_probe(self, vector: Sequence[float]) -> ContextBundle:
        cfg = self.config
        collection = CollectionName.CONTENT.value
        try:
            info = self.index.collection_info(collection)
            if info is None or info.count == 0:
                return ContextBundle()
            hits = self.index.query(collection, vector, cfg.k_ctx)
        except VectorIndexError as exc:
            logger.warning(f"content probe failed, continuing without context: {exc}", extra={"op": "content_probe"})
            return ContextBundle(degraded=True, degraded_reason=str(exc))

        items: List[QueryResultItem] = []
        used = 0
        for hit in hits:
            if hit.score < cfg.content_threshold:
                break
            cost = estimate_tokens(hit.text, cfg.chars_per_token)
            if used + cost > cfg.context_budget_tokens:
                break
            items.append(hit)
            used += cost
        return ContextBundle(items=items, total_token_budget_used=used)
