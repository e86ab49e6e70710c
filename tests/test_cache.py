from __future__ import annotations

from civichub.llm.schemas import GenerationResult, Intent
from civichub.pipeline.cache import ResponseCache, TenantCache, normalize_query

from conftest import FakeClock


def _generation(intent: Intent = Intent.KNOWLEDGE_QUERY, **overrides) -> GenerationResult:
    return GenerationResult(response_text="Buka jam 8 pagi.", intent=intent, **overrides)


def test_normalize_query_ignores_order_fillers_and_punctuation() -> None:
    assert normalize_query("Kak, jam buka kantor desa dong?") == normalize_query("kantor desa JAM BUKA")
    assert normalize_query("??? tolong") == ""


def test_entries_expire_after_ttl() -> None:
    clock = FakeClock()
    cache: TenantCache[str] = TenantCache(clock=clock)

    cache.set("desa-1", "k", "v", ttl=10)
    assert cache.get("desa-1", "k") == "v"

    clock.advance(10)
    assert cache.get("desa-1", "k") is None
    assert cache.stats()["size"] == 0


def test_least_recently_used_entry_is_evicted() -> None:
    cache: TenantCache[int] = TenantCache(max_size=2)
    cache.set("t", "a", 1)
    cache.set("t", "b", 2)
    cache.get("t", "a")
    cache.set("t", "c", 3)

    assert cache.get("t", "b") is None
    assert cache.get("t", "a") == 1
    assert cache.get("t", "c") == 3


def test_entries_are_tenant_scoped() -> None:
    cache: TenantCache[str] = TenantCache()
    cache.set("desa-1", "k", "satu")
    cache.set("desa-2", "k", "dua")

    assert cache.get("desa-2", "k") == "dua"
    assert cache.clear("desa-1") == 1
    assert cache.get("desa-1", "k") is None
    assert cache.get("desa-2", "k") == "dua"
    assert cache.clear() == 1


def test_stats_report_hit_rate() -> None:
    cache: TenantCache[str] = TenantCache()
    cache.set("t", "k", "v")
    cache.get("t", "k")
    cache.get("t", "k")
    cache.get("t", "missing")

    stats = cache.stats()
    assert stats["hits"] == 2
    assert stats["misses"] == 1
    assert stats["hit_rate"] == 0.667


def test_response_cache_only_keeps_repeatable_intents() -> None:
    cache = ResponseCache()

    assert cache.put("desa-1", "whatsapp", "jam buka kantor?", _generation())
    assert not cache.put("desa-1", "whatsapp", "lapor jalan rusak", _generation(Intent.CREATE_COMPLAINT))
    assert not cache.put("desa-1", "whatsapp", "halo", _generation(Intent.GREETING, format_degraded=True))
    assert not cache.put("desa-1", "whatsapp", "?!", _generation())

    assert cache.get("desa-1", "whatsapp", "Kantor jam buka") is not None
    assert cache.get("desa-1", "webchat", "jam buka kantor?") is None
    assert cache.get("desa-2", "whatsapp", "jam buka kantor?") is None
