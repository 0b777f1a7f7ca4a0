from __future__ import annotations

import asyncio
import re
from typing import Dict, Iterable, List, Optional

import structlog
from langchain_core.language_models.chat_models import BaseChatModel

from lesson_engine.core.llm import get_llm, response_to_text
from lesson_engine.core.settings import settings
from lesson_engine.core.utils.json_payload import extract_json_object
from lesson_engine.core.utils.text import normalize_text
from lesson_engine.domain.exceptions import ExpansionFailure
from lesson_engine.infrastructure.caching.cache_service import CacheService

logger = structlog.get_logger(__name__)


# Common synonyms for the programming-for-kids curriculum.
DEFAULT_SYNONYMS: Dict[str, List[str]] = {
    "algoritmo": ["procedimiento", "pasos", "secuencia", "instrucciones"],
    "condicional": ["if", "decisión", "selección", "condición"],
    "repetición": ["loop", "bucle", "ciclo", "iteración"],
    "variable": ["dato", "valor", "contenedor", "almacén"],
    "función": ["procedimiento", "rutina", "bloque", "módulo"],
    "scratch": ["bloques", "visual", "arrastrar"],
    "pensamiento computacional": ["lógica", "resolución de problemas", "abstracción"],
}

_ACCENT_VARIANTS: Dict[str, str] = {
    "a": "aáàâä",
    "e": "eéèêë",
    "i": "iíìîï",
    "o": "oóòôö",
    "u": "uúùûü",
    "n": "nñ",
}

EXPANSION_SYSTEM_PROMPT = "You are a query expansion assistant. Respond with JSON."

EXPANSION_PROMPT = """Genera {n} reformulaciones de esta consulta para búsqueda semántica.
Contexto: Plataforma educativa de programación para niños (Scratch, pensamiento computacional).

**CONSULTA ORIGINAL:** "{query}"

**INSTRUCCIONES:**
- Genera variaciones que capturen la misma intención
- Incluye sinónimos y formas alternativas de preguntar
- Responde SOLO con JSON: {{ "expansions": ["query1", "query2", "query3"] }}

**RESPUESTA:**"""


def _dedup_key(text: str) -> str:
    return str(text or "").strip().casefold()


def dedupe_queries(original: str, candidates: Iterable[str]) -> List[str]:
    """Original query first and verbatim; later duplicates (case-insensitive, trimmed) dropped."""
    out = [original]
    seen = {_dedup_key(original)}
    for candidate in candidates:
        text = str(candidate or "").strip()
        key = _dedup_key(text)
        if not text or key in seen:
            continue
        seen.add(key)
        out.append(text)
    return out


class QueryExpander:
    """
    Local synonym substitution plus optional LLM paraphrases.
    LLM problems never propagate: expand() degrades to local expansions.
    """

    def __init__(
        self,
        synonyms: Optional[Dict[str, List[str]]] = None,
        llm: Optional[BaseChatModel] = None,
        cache: Optional[CacheService] = None,
        num_paraphrases: Optional[int] = None,
        timeout_ms: Optional[int] = None,
        cache_ttl_seconds: Optional[int] = None,
    ):
        self._synonyms: Dict[str, List[str]] = {}
        for term, values in (DEFAULT_SYNONYMS if synonyms is None else synonyms).items():
            self.add_synonyms(term, values)
        self._llm = llm
        self._cache = cache
        self._num_paraphrases = max(
            1, int(num_paraphrases or settings.QUERY_EXPANSION_NUM_PARAPHRASES)
        )
        self._timeout_ms = int(timeout_ms or settings.QUERY_EXPANSION_TIMEOUT_MS)
        self._cache_ttl_seconds = int(
            settings.QUERY_EXPANSION_CACHE_TTL_SECONDS if cache_ttl_seconds is None else cache_ttl_seconds
        )

    @property
    def synonyms(self) -> Dict[str, List[str]]:
        return {term: list(values) for term, values in self._synonyms.items()}

    def add_synonyms(self, term: str, synonyms: Iterable[str]) -> None:
        key = str(term or "").strip().lower()
        if not key:
            return
        merged = dedupe_queries(key, [*self._synonyms.get(key, []), *synonyms])[1:]
        self._synonyms[key] = merged

    @staticmethod
    def _member_pattern(member: str) -> re.Pattern[str]:
        # Accent-insensitive. Short members match whole words; longer ones absorb suffixes ("bucle" -> "bucles").
        body = "".join(
            f"[{_ACCENT_VARIANTS[ch]}]" if ch in _ACCENT_VARIANTS else re.escape(ch)
            for ch in normalize_text(member)
        )
        suffix = r"\b" if len(member) < 4 else ""
        return re.compile(rf"\b{body}{suffix}", flags=re.IGNORECASE)

    def expand_with_synonyms(self, query: str) -> List[str]:
        variants: List[str] = []
        for term, synonyms in self._synonyms.items():
            group = [term, *synonyms]
            for member in group:
                pattern = self._member_pattern(member)
                if not pattern.search(query):
                    continue
                for replacement in group:
                    if _dedup_key(replacement) == _dedup_key(member):
                        continue
                    variants.append(pattern.sub(lambda _m, r=replacement: r, query))
        return dedupe_queries(query, variants)

    def _get_llm(self) -> BaseChatModel:
        if self._llm is None:
            try:
                self._llm = get_llm(capability="EXPANSION", prefer_provider="groq")
            except ValueError as exc:
                raise ExpansionFailure(str(exc)) from exc
        return self._llm

    @staticmethod
    def _parse_expansions(content: str) -> List[str]:
        try:
            payload = extract_json_object(content)
        except ValueError as exc:
            raise ExpansionFailure(f"unparseable expansion payload: {exc}") from exc
        raw = payload.get("expansions")
        if not isinstance(raw, list):
            raise ExpansionFailure("expansion payload has no 'expansions' list")
        return [str(item).strip() for item in raw if isinstance(item, str) and item.strip()]

    async def expand_with_llm(self, query: str, num_expansions: Optional[int] = None) -> List[str]:
        """Paraphrases only (original excluded). Raises ExpansionFailure."""
        n = max(1, int(num_expansions or self._num_paraphrases))
        cache_key = CacheService.key_for(f"query_expansion:{n}", query)
        if self._cache is not None:
            cached = await self._cache.get(cache_key)
            if isinstance(cached, list):
                logger.debug("query_expansion_cache_hit", query_chars=len(query))
                return [str(item) for item in cached]

        llm = self._get_llm()
        try:
            response = await asyncio.wait_for(
                llm.ainvoke(
                    [
                        {"role": "system", "content": EXPANSION_SYSTEM_PROMPT},
                        {"role": "user", "content": EXPANSION_PROMPT.format(n=n, query=query)},
                    ]
                ),
                timeout=max(self._timeout_ms, 100) / 1000.0,
            )
        except asyncio.TimeoutError as exc:
            raise ExpansionFailure(f"expansion timed out after {self._timeout_ms}ms") from exc
        except Exception as exc:
            raise ExpansionFailure(f"expansion provider error: {exc}") from exc

        expansions = self._parse_expansions(response_to_text(response))[:n]
        if self._cache is not None and expansions:
            await self._cache.set(cache_key, expansions, ttl_seconds=self._cache_ttl_seconds)
        return expansions

    async def expand(self, query: str, use_llm: bool = True) -> List[str]:
        local = self.expand_with_synonyms(query)
        if not use_llm or not str(query or "").strip():
            return local

        try:
            paraphrases = await self.expand_with_llm(query)
        except ExpansionFailure as exc:
            logger.warning("query_expansion_llm_failed", error=str(exc), local_count=len(local))
            return local

        expanded = dedupe_queries(query, [*local[1:], *paraphrases])
        logger.info(
            "query_expanded", local_count=len(local), llm_count=len(paraphrases), total=len(expanded)
        )
        return expanded
