"""Tests for the job registry."""
import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from comfy_jobs.core.registry import JobRegistry, RegistryEntry
from comfy_jobs.core.types import JobObserver


def make_entry(name: str = "job") -> RegistryEntry:
    return RegistryEntry(job=name, handlers=JobObserver(on_error=MagicMock()))


def test_register_and_get():
    registry = JobRegistry()
    entry = make_entry()
    registry.register("a", entry)

    assert "a" in registry
    assert len(registry) == 1
    assert registry.get("a") is entry
    assert registry.get("b") is None
    assert registry.get(None) is None


def test_register_replaces_existing_entry():
    registry = JobRegistry()
    first, second = make_entry("first"), make_entry("second")
    registry.register("a", first)
    registry.register("a", second)

    assert len(registry) == 1
    assert registry.get("a") is second


def test_unregister_missing_is_noop():
    registry = JobRegistry()
    entry = make_entry()
    registry.register("a", entry)

    assert registry.unregister("a") is entry
    assert registry.unregister("a") is None
    assert registry.unregister(None) is None
    assert len(registry) == 0


@pytest.mark.asyncio
async def test_entry_forwards_job_to_handlers():
    on_update = MagicMock()
    on_error = AsyncMock()
    entry = RegistryEntry(job="job", handlers=JobObserver(on_update=on_update, on_error=on_error))

    await entry.update("5")
    await entry.fail(["boom"])
    await entry.complete()  # no handler, no error

    on_update.assert_called_once_with("job", "5")
    on_error.assert_awaited_once_with("job", ["boom"])


@pytest.mark.asyncio
async def test_for_each_entry_allows_unregister_during_iteration():
    registry = JobRegistry()
    for job_id in ("a", "b", "c"):
        registry.register(job_id, make_entry(job_id))
    visited = []

    def visit(entry):
        visited.append(entry.job)
        registry.unregister(entry.job)

    await registry.for_each_entry(visit)

    assert visited == ["a", "b", "c"]
    assert len(registry) == 0


@pytest.mark.asyncio
async def test_for_each_entry_skips_entries_removed_mid_pass():
    registry = JobRegistry()
    registry.register("a", make_entry("a"))
    registry.register("b", make_entry("b"))
    visited = []

    async def visit(entry):
        visited.append(entry.job)
        registry.unregister("b")

    await registry.for_each_entry(visit)
    assert visited == ["a"]


@pytest.mark.asyncio
async def test_for_entries_matching_only_visits_requested_ids():
    registry = JobRegistry()
    for job_id in ("a", "b", "c"):
        registry.register(job_id, make_entry(job_id))
    visited = []

    await registry.for_entries_matching(["c", "a", "missing"], lambda e: visited.append(e.job))

    assert sorted(visited) == ["a", "c"]


@pytest.mark.asyncio
async def test_visitor_failure_does_not_stop_iteration(caplog):
    registry = JobRegistry()
    registry.register("a", make_entry("a"))
    registry.register("b", make_entry("b"))
    visited = []

    def visit(entry):
        visited.append(entry.job)
        if entry.job == "a":
            raise RuntimeError("bad callback")

    with caplog.at_level(logging.ERROR, logger="comfy_jobs.core.registry"):
        await registry.for_each_entry(visit)

    assert visited == ["a", "b"]
    assert "Registry visitor failed for job a" in caplog.text
