from __future__ import annotations

from datetime import datetime, timedelta, timezone
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from threading import Barrier

import pytest

from config import Settings
from core import (
    ActionType,
    AnalysisAction,
    AnalysisRecordInput,
    AnalysisStatus,
    JobRun,
    JobStatus,
    JobTrigger,
    PipelineStep,
    RuntimeConfig,
    Source,
    WarningEntry,
)
from storage import DEFAULT_SOURCE_ID, StoreBundle, build_stores, get_latest_analysis, get_top_signals
from storage.signals import clamp_signal_hours, clamp_signal_limit, opportunity_score
from utils.exceptions import ConfigurationError


QUOTE = "We spend hours every week copying data between these two systems."


@pytest.fixture(params=["memory", "sqlite"])
def stores(request, tmp_path: Path) -> StoreBundle:
    settings = Settings()
    settings.storage.backend = request.param
    settings.storage.sqlite_path = str(tmp_path / "radar.db")
    settings.storage.seed_hn_source = False
    settings.job.cron_secret = "s3cret"
    return build_stores(settings)


def _record(url: str, status: AnalysisStatus = AnalysisStatus.SUCCESS, **overrides) -> AnalysisRecordInput:
    data = dict(
        url=url,
        url_normalized=url,
        status=status,
        step=PipelineStep.ANALYZED,
        extracted_len=120,
        content_text="body",
        need_card={
            "kind": "NO_DEMAND",
            "title": "t",
            "no_demand_reason": "none",
            "evidence_quote": QUOTE,
            "source_url": url,
        },
        warnings=[WarningEntry(type="LOW_CONFIDENCE", reason="generic_trigger")],
        meta={"fetch": {"used": "direct", "fallback": False}},
    )
    data.update(overrides)
    return AnalysisRecordInput(**data)


def test_analysis_upsert_keeps_identity_per_normalized_url(stores: StoreBundle) -> None:
    first = stores.analyses.upsert(_record("https://a.example.com/"))
    second = stores.analyses.upsert(
        _record("https://a.example.com/", status=AnalysisStatus.FAILED, need_card=None, error="TOO_SHORT")
    )

    assert second.id == first.id
    assert second.created_at == first.created_at
    assert second.status == AnalysisStatus.FAILED
    assert second.need_card is None

    fetched = stores.analyses.get(first.id)
    assert fetched.error == "TOO_SHORT"
    assert fetched.warnings[0].type == "LOW_CONFIDENCE"
    assert stores.analyses.get_by_normalized_url("https://a.example.com/").id == first.id
    assert stores.analyses.get("missing") is None


def test_analysis_list_existing_preserves_input_order(stores: StoreBundle) -> None:
    stores.analyses.upsert(_record("https://b.example.com/"))
    stores.analyses.upsert(_record("https://a.example.com/"))

    existing = stores.analyses.list_existing(
        ["https://a.example.com/", "https://new.example.com/", "https://b.example.com/", "https://a.example.com/"]
    )
    assert existing == ["https://a.example.com/", "https://b.example.com/"]
    assert stores.analyses.list_existing([]) == []
    assert len(stores.analyses.list_recent(limit=1)) == 1


def test_job_runs_insert_update_and_list(stores: StoreBundle) -> None:
    base = datetime(2024, 1, 1, tzinfo=timezone.utc)
    for i in range(3):
        stores.job_runs.insert(
            JobRun(id=f"r{i}", job_name="pull_demands", trigger=JobTrigger.MANUAL, started_at=base + timedelta(minutes=i))
        )
    run = stores.job_runs.get("r1")
    stores.job_runs.update(
        run.model_copy(update={"status": JobStatus.SUCCESS, "finished_at": base, "meta": {"stats": {"total": 2}}})
    )

    recent = stores.job_runs.list_recent(limit=2)
    assert [r.id for r in recent] == ["r2", "r1"]
    assert recent[1].status == JobStatus.SUCCESS
    assert recent[1].meta == {"stats": {"total": 2}}
    assert [r.id for r in stores.job_runs.list_recent(limit=2, offset=2)] == ["r0"]
    assert stores.job_runs.list_recent(job_name="other") == []


def test_lock_store_check_and_set(stores: StoreBundle) -> None:
    now = datetime.now(timezone.utc)
    first = stores.locks.try_acquire("pull_now", "a", now + timedelta(seconds=60), now)
    second = stores.locks.try_acquire("pull_now", "b", now + timedelta(seconds=60), now)

    assert first.acquired
    assert not second.acquired
    assert second.reason == "LOCKED"
    assert second.lock.locked_by == "a"

    assert not stores.locks.release("pull_now", "b")
    assert stores.locks.release("pull_now", "a")
    assert stores.locks.get("pull_now").locked_by is None

    later = now + timedelta(seconds=120)
    stores.locks.try_acquire("pull_now", "c", now + timedelta(seconds=1), now)
    assert stores.locks.try_acquire("pull_now", "d", later + timedelta(seconds=60), later).acquired

    stores.locks.force_release("pull_now")
    assert not stores.locks.get("pull_now").is_active()


def test_lock_store_concurrent_acquire_has_single_winner(stores: StoreBundle) -> None:
    contenders = 8
    barrier = Barrier(contenders)
    now = datetime.now(timezone.utc)

    def _acquire(owner: str):
        barrier.wait()
        return stores.locks.try_acquire("pull_now", owner, now + timedelta(seconds=60), now)

    with ThreadPoolExecutor(max_workers=contenders) as pool:
        results = list(pool.map(_acquire, [f"worker-{i}" for i in range(contenders)]))

    winners = [result for result in results if result.acquired]
    losers = [result for result in results if not result.acquired]
    assert len(winners) == 1
    holder = winners[0].lock.locked_by
    assert len(losers) == contenders - 1
    assert all(result.reason == "LOCKED" for result in losers)
    assert all(result.lock.locked_by == holder for result in losers)
    assert stores.locks.get("pull_now").locked_by == holder


def test_sources_enabled_and_touch(stores: StoreBundle) -> None:
    stores.sources.add(Source(id="s1", name="Ask", entry_url="https://x/askstories.json"))
    stores.sources.add(Source(id="s2", name="Off", entry_url="https://x/top.json", enabled=False))

    enabled = stores.sources.list_enabled()
    assert [s.id for s in enabled] == ["s1"]
    assert enabled[0].last_checked_at is None

    checked = datetime(2024, 5, 1, 12, tzinfo=timezone.utc)
    stores.sources.touch_checked("s1", checked)
    assert stores.sources.list_enabled()[0].last_checked_at == checked


def test_actions_upsert_delete_and_saved_listing(stores: StoreBundle) -> None:
    stores.actions.upsert(AnalysisAction(analysis_id="a1", action=ActionType.SAVED, tags=["Billing"]))
    stores.actions.upsert(AnalysisAction(analysis_id="a2", action=ActionType.IGNORED))
    stores.actions.upsert(AnalysisAction(analysis_id="a3", action=ActionType.WATCHING, note=" later "))

    assert {a.analysis_id for a in stores.actions.list_saved()} == {"a1", "a3"}
    assert [a.analysis_id for a in stores.actions.list_saved(tag="billing")] == ["a1"]
    assert stores.actions.get("a3").note == "later"

    assert stores.actions.delete("a1")
    assert not stores.actions.delete("a1")
    assert stores.actions.get("a1") is None


def test_automation_state_merges_patches(stores: StoreBundle) -> None:
    stores.automation.update({"last_cron_hit_at": "2024-01-01T00:00:00+00:00"})
    merged = stores.automation.update({"last_trigger": "cron"})

    assert merged == {"last_cron_hit_at": "2024-01-01T00:00:00+00:00", "last_trigger": "cron"}
    assert stores.automation.get() == merged
    assert stores.automation.get("other") == {}


def test_runtime_config_defaults_and_update(stores: StoreBundle) -> None:
    config = stores.config.get_or_create()
    assert config.cron_secret == "s3cret"
    assert isinstance(config, RuntimeConfig)

    updated = stores.config.update({"schedule_enabled": True, "max_per_run": 9, "unknown": 1})
    assert updated.schedule_enabled
    assert stores.config.get_or_create().max_per_run == 9


def test_build_stores_seeds_default_source_and_rejects_unknown_backend() -> None:
    settings = Settings()
    seeded = build_stores(settings)
    assert [s.id for s in seeded.sources.list_enabled()] == [DEFAULT_SOURCE_ID]
    assert seeded.sources.list_enabled()[0].entry_url.endswith("/askstories.json")
    assert seeded.config.get_or_create().cron_secret

    settings.storage.backend = "postgres"
    with pytest.raises(ConfigurationError):
        build_stores(settings)


def _demand(url: str, wtp: str, **overrides) -> AnalysisRecordInput:
    card = {
        "kind": "DEMAND",
        "title": f"Need with {wtp} signal",
        "who": "operations teams",
        "pain": "Copying data by hand between two systems every week",
        "trigger": "Month end close",
        "workaround": "Shared spreadsheets",
        "wtp_signal": wtp,
        "evidence_quote": QUOTE,
        "source_url": url,
    }
    return _record(url, need_card=card, warnings=[], **overrides)


def test_top_signals_filter_and_rank(stores: StoreBundle) -> None:
    stores.sources.add(Source(id="s1", name="Ask HN", entry_url="https://x/askstories.json"))
    strong_low = stores.analyses.upsert(
        _demand("https://strong-low.example.com/", "STRONG", low_confidence=True, source_id="s1")
    )
    medium = stores.analyses.upsert(_demand("https://medium.example.com/", "MEDIUM"))
    strong = stores.analyses.upsert(
        _demand(
            "https://news.ycombinator.com/item?id=1",
            "STRONG",
            meta={"discussion": {"id": 1, "kind": "link", "target_url": "https://target.example.com/"}},
        )
    )
    stores.analyses.upsert(_demand("https://none.example.com/", "NONE"))
    stores.analyses.upsert(_record("https://no-demand.example.com/"))
    stores.analyses.upsert(_record("https://failed.example.com/", status=AnalysisStatus.FAILED, need_card=None))
    ignored = stores.analyses.upsert(_demand("https://ignored.example.com/", "STRONG"))
    stores.actions.upsert(AnalysisAction(analysis_id=ignored.id, action=ActionType.IGNORED, tags=["noise"]))
    stores.actions.upsert(AnalysisAction(analysis_id=medium.id, action=ActionType.SAVED, tags=["ops"]))

    signals = get_top_signals(stores.analyses, stores.actions, stores.sources)
    assert [s.id for s in signals] == [strong.id, strong_low.id, medium.id]
    assert signals[0].source_url == "https://target.example.com/"
    assert signals[0].source_label == "Manual"
    assert signals[1].source_label == "Ask HN"
    assert signals[1].low_confidence is True
    assert signals[2].action == ActionType.SAVED
    assert signals[2].tags == ["ops"]
    assert signals[2].pain_snippet == "Copying data by hand between two systems every week"
    assert signals[0].opportunity_score == opportunity_score()

    with_ignored = get_top_signals(stores.analyses, stores.actions, stores.sources, show_ignored=True)
    assert ignored.id in [s.id for s in with_ignored]
    assert [s.id for s in get_top_signals(stores.analyses, stores.actions, stores.sources, limit=1)] == [strong.id]


def test_top_signals_respect_time_window(stores: StoreBundle) -> None:
    stores.analyses.upsert(_demand("https://w.example.com/", "WEAK"))
    later = datetime.now(timezone.utc) + timedelta(hours=100)

    def _count(hours):
        return len(get_top_signals(stores.analyses, stores.actions, stores.sources, hours=hours, now=later))

    assert _count(72) == 0
    assert _count(168) == 1
    # 非法窗口回落到 72 小时
    assert _count(100) == 0


def test_latest_analysis_skips_ignored(stores: StoreBundle) -> None:
    assert get_latest_analysis(stores.analyses, stores.actions) is None

    first = stores.analyses.upsert(_record("https://first.example.com/"))
    second = stores.analyses.upsert(_record("https://second.example.com/", status=AnalysisStatus.FAILED, need_card=None))
    record, action = get_latest_analysis(stores.analyses, stores.actions)
    assert record.id == second.id
    assert action is None

    stores.actions.upsert(AnalysisAction(analysis_id=second.id, action=ActionType.IGNORED))
    stores.actions.upsert(AnalysisAction(analysis_id=first.id, action=ActionType.WATCHING))
    record, action = get_latest_analysis(stores.analyses, stores.actions)
    assert record.id == first.id
    assert action.action == ActionType.WATCHING

    stores.actions.upsert(AnalysisAction(analysis_id=first.id, action=ActionType.IGNORED))
    assert get_latest_analysis(stores.analyses, stores.actions) is None


def test_signal_query_bounds_and_score() -> None:
    assert clamp_signal_limit(None) == 10
    assert clamp_signal_limit(500) == 20
    assert clamp_signal_limit(0) == 1
    assert clamp_signal_hours(24) == 24
    assert clamp_signal_hours(None) == 72
    assert opportunity_score() == 6.0
    assert opportunity_score({"pain": 3, "risk": 2}) == 9.0
