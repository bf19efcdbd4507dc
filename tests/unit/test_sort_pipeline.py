"""
Sort Pipeline: Unit Tests
===========================

Covers:
  1. Candidate building (deployed only, last known order)
  2. Serialization of dispatches
  3. Invalid item retries
  4. Failure classification and reporting
  5. Entry point contracts (auto-sort preference, callback, raising sort)
"""

import asyncio
import hashlib

import pytest

from autosort.core.events import ACTIVITY_STARTED, ACTIVITY_STOPPED
from autosort.services.autosort_service import AutosortService
from autosort.services.cycles import CYCLE_NOTIFICATION_ID
from autosort.services.notifications import NotificationType
from autosort.services.rule_lists import LOAD_ERROR_ID
from autosort.services.sort_pipeline import FAILED_NOTIFICATION_ID, SortOutcome

from fakes import NativeError

CYCLE = [
    {"name": "A.esp", "typeOfEdgeToNextVertex": "userlistLoadAfter"},
    {"name": "B.esp", "typeOfEdgeToNextVertex": "masterlistLoadAfter"},
]


async def make_service(host, rules, factory, settings, metrics):
    service = AutosortService(host, rules, factory, settings=settings, metrics=metrics)
    service.on_context_activated(host.context)
    await service.wait()
    return service


class TestCandidates:

    @pytest.mark.asyncio
    async def test_only_deployed_in_last_known_order(self, host, rules, factory, settings, metrics):
        host.add_plugin("C.esp", load_order=2)
        host.add_plugin("A.esp", load_order=0)
        host.add_plugin("Hidden.esp", deployed=False, load_order=1)
        host.add_plugin("New.esp")
        service = await make_service(host, rules, factory, settings, metrics)

        assert service.pipeline.build_candidates() == ["New.esp", "A.esp", "C.esp"]
        assert await service.sort() == SortOutcome.SORTED
        assert factory.last.sort_inputs == [["New.esp", "A.esp", "C.esp"]]
        assert host.published == [["C.esp", "A.esp", "New.esp"]]

    @pytest.mark.asyncio
    async def test_undeployed_never_sorted(self, host, rules, factory, settings, metrics):
        host.add_plugin("A.esp", deployed=False)
        host.add_plugin("B.esp", deployed=False)
        service = await make_service(host, rules, factory, settings, metrics)
        await service.sort()
        assert factory.last.sort_inputs == [[]]


class TestEntryPoints:

    @pytest.mark.asyncio
    async def test_automatic_sort_respects_preference(self, host, rules, factory, settings, metrics):
        host.add_plugin("A.esp")
        service = await make_service(host, rules, factory, settings, metrics)

        assert await service.trigger_sort(manual=False) == SortOutcome.SKIPPED
        assert factory.last.sort_inputs == []

        host.autosort = True
        assert await service.trigger_sort(manual=False) == SortOutcome.SORTED

    @pytest.mark.asyncio
    async def test_no_engine_is_silent_noop(self, host, rules, factory, settings, metrics):
        host.context = "witcher3"
        service = await make_service(host, rules, factory, settings, metrics)
        assert await service.sort() == SortOutcome.SKIPPED
        assert service.notifications.active == []

    @pytest.mark.asyncio
    async def test_context_mismatch_is_noop(self, host, rules, factory, settings, metrics):
        host.add_plugin("A.esp")
        service = await make_service(host, rules, factory, settings, metrics)
        host.context = "fallout4"
        assert await service.sort() == SortOutcome.SKIPPED
        assert factory.last.sort_inputs == []

    @pytest.mark.asyncio
    async def test_callback_receives_unexpected_error(self, host, rules, factory, settings, metrics):
        host.add_plugin("A.esp")
        host.publish_error = RuntimeError("store rejected order")
        service = await make_service(host, rules, factory, settings, metrics)

        received = []
        outcome = await service.trigger_sort(manual=True, callback=received.append)
        assert outcome == SortOutcome.FAILED
        assert isinstance(received[0], RuntimeError)

        with pytest.raises(RuntimeError):
            await service.sort()

    @pytest.mark.asyncio
    async def test_callback_receives_none_on_success(self, host, rules, factory, settings, metrics):
        service = await make_service(host, rules, factory, settings, metrics)
        received = []
        await service.trigger_sort(manual=True, callback=received.append)
        assert received == [None]


class TestSerialization:

    @pytest.mark.asyncio
    async def test_dispatches_never_overlap(self, host, rules, factory, settings, metrics):
        host.add_plugin("A.esp", load_order=0)
        service = await make_service(host, rules, factory, settings, metrics)
        native = factory.last
        native.sort_gate = asyncio.Event()

        first = asyncio.ensure_future(service.sort())
        second = asyncio.ensure_future(service.sort())
        await asyncio.sleep(0.05)
        assert len(native.sort_inputs) == 1

        native.sort_gate.set()
        assert await first == SortOutcome.SORTED
        assert await second == SortOutcome.SORTED
        assert len(native.sort_inputs) == 2
        assert native.max_active_sorts == 1

    @pytest.mark.asyncio
    async def test_earlier_failure_does_not_block_next(self, host, rules, factory, settings, metrics):
        host.add_plugin("A.esp")
        service = await make_service(host, rules, factory, settings, metrics)
        factory.last.sort_results.append(NativeError("something odd"))

        assert await service.sort() == SortOutcome.FAILED
        assert await service.sort() == SortOutcome.SORTED

    @pytest.mark.asyncio
    async def test_activity_raised_and_lowered(self, host, rules, factory, settings, metrics):
        service = await make_service(host, rules, factory, settings, metrics)
        seen = []
        service.events.on(ACTIVITY_STARTED, lambda group, activity: seen.append(("start", group, activity)))
        service.events.on(ACTIVITY_STOPPED, lambda group, activity: seen.append(("stop", group, activity)))
        factory.last.sort_results.append(NativeError("something odd"))

        await service.sort()
        assert seen == [("start", "plugins", "sorting"), ("stop", "plugins", "sorting")]
        assert not service.notifications.is_active("plugins", "sorting")

    @pytest.mark.asyncio
    async def test_userlist_change_reloads_lists(self, host, rules, factory, settings, metrics):
        service = await make_service(host, rules, factory, settings, metrics)
        native = factory.last
        await service.sort()
        assert len(native.loaded_lists) == 1

        userlist = settings.DATA_DIR / "skyrimse" / "userlist.yaml"
        userlist.write_text("plugins: []\n")
        await service.sort()
        assert len(native.loaded_lists) == 2
        assert native.loaded_lists[-1][1] == str(userlist)

    @pytest.mark.asyncio
    async def test_repeated_list_failure_keeps_one_report(self, host, rules, factory, settings, metrics):
        factory.prepare = lambda engine: setattr(engine, "load_lists_error", NativeError("bad yaml"))
        service = await make_service(host, rules, factory, settings, metrics)
        for _ in range(3):
            await service.sort()

        errors = [n for n in service.notifications.active if n.type == NotificationType.ERROR]
        assert [n.id for n in errors] == [LOAD_ERROR_ID]

        factory.last.load_lists_error = None
        await service.sort()
        assert service.notifications.get(LOAD_ERROR_ID) is None


class TestInvalidItemRetry:

    @pytest.mark.asyncio
    async def test_drops_missing_items_one_by_one(self, host, rules, factory, settings, metrics, tmp_path):
        host.path = str(tmp_path / "game")
        for idx, name in enumerate(("A.esp", "Foo.esp", "Bar.esp")):
            host.add_plugin(name, load_order=idx)
        service = await make_service(host, rules, factory, settings, metrics)
        native = factory.last
        native.sort_results.extend([
            NativeError('"Foo.esp" is not a valid plugin'),
            NativeError('"Bar.esp" is not a valid plugin'),
            ["A.esp"],
        ])

        assert await service.sort() == SortOutcome.SORTED
        assert native.sort_inputs == [["A.esp", "Foo.esp", "Bar.esp"], ["A.esp", "Bar.esp"], ["A.esp"]]
        assert host.published == [["A.esp"]]
        assert metrics.registry.get_sample_value("autosort_sort_invalid_item_retries_total") == 2

    @pytest.mark.asyncio
    async def test_item_lookup_is_case_insensitive(self, host, rules, factory, settings, metrics):
        host.add_plugin("A.esp", load_order=0)
        host.add_plugin("Foo.esp", load_order=1)
        service = await make_service(host, rules, factory, settings, metrics)
        native = factory.last
        native.sort_results.append(NativeError('"foo.ESP" is not a valid plugin'))

        assert await service.sort() == SortOutcome.SORTED
        assert native.sort_inputs[1] == ["A.esp"]

    @pytest.mark.asyncio
    async def test_unknown_item_warns_without_retry(self, host, rules, factory, settings, metrics):
        host.add_plugin("A.esp")
        service = await make_service(host, rules, factory, settings, metrics)
        native = factory.last
        native.sort_results.append(NativeError('"Other.esp" is not a valid plugin'))

        assert await service.sort() == SortOutcome.FAILED
        assert len(native.sort_inputs) == 1
        warning = service.notifications.get(FAILED_NOTIFICATION_ID)
        assert warning.type == NotificationType.WARNING
        assert warning.message == 'Plugins not sorted because: "Other.esp" is not a valid plugin'

    @pytest.mark.asyncio
    async def test_existing_file_warns_without_retry(self, host, rules, factory, settings, metrics, tmp_path):
        data = tmp_path / "game" / "data"
        data.mkdir(parents=True)
        (data / "Foo.esp").write_bytes(b"TES4")
        host.path = str(tmp_path / "game")
        host.add_plugin("Foo.esp")
        service = await make_service(host, rules, factory, settings, metrics)
        native = factory.last
        native.sort_results.append(NativeError('"Foo.esp" is not a valid plugin'))

        assert await service.sort() == SortOutcome.FAILED
        assert len(native.sort_inputs) == 1
        assert service.notifications.get(FAILED_NOTIFICATION_ID).type == NotificationType.WARNING

    @pytest.mark.asyncio
    async def test_retries_bounded_by_candidates(self, host, rules, factory, settings, metrics):
        host.add_plugin("A.esp", load_order=0)
        host.add_plugin("B.esp", load_order=1)
        service = await make_service(host, rules, factory, settings, metrics)
        native = factory.last
        native.sort_results.extend([
            NativeError('"A.esp" is not a valid plugin'),
            NativeError('"B.esp" is not a valid plugin'),
            NativeError('"A.esp" is not a valid plugin'),
        ])

        assert await service.sort() == SortOutcome.FAILED
        assert native.sort_inputs == [["A.esp", "B.esp"], ["B.esp"], []]


class TestFailureClassification:

    @pytest.mark.asyncio
    async def test_closed_engine_is_not_an_error(self, host, rules, factory, settings, metrics):
        host.add_plugin("A.esp")
        service = await make_service(host, rules, factory, settings, metrics)
        factory.last.sort_results.append(NativeError("already closed"))

        assert await service.sort() == SortOutcome.CLOSED
        assert host.published == []
        assert service.notifications.active == []

    @pytest.mark.asyncio
    async def test_cycle_reported_without_retry(self, host, rules, factory, settings, metrics):
        host.add_plugin("A.esp")
        service = await make_service(host, rules, factory, settings, metrics)
        native = factory.last
        native.sort_results.append(NativeError("Cyclic interaction detected", cycle=CYCLE))

        assert await service.sort() == SortOutcome.CYCLE
        assert len(native.sort_inputs) == 1
        warning = service.notifications.get(CYCLE_NOTIFICATION_ID)
        assert warning.message == "Plugins not sorted because of cyclic rules"
        assert [a.title for a in warning.actions] == ["More"]

    @pytest.mark.asyncio
    async def test_new_sort_dismisses_cycle_warning(self, host, rules, factory, settings, metrics):
        service = await make_service(host, rules, factory, settings, metrics)
        factory.last.sort_results.append(NativeError("Cyclic interaction detected", cycle=CYCLE))
        await service.sort()
        assert service.notifications.get(CYCLE_NOTIFICATION_ID) is not None

        await service.sort()
        assert service.notifications.get(CYCLE_NOTIFICATION_ID) is None

    @pytest.mark.asyncio
    async def test_missing_group_warns(self, host, rules, factory, settings, metrics):
        service = await make_service(host, rules, factory, settings, metrics)
        factory.last.sort_results.append(NativeError('The group "Late" does not exist'))

        assert await service.sort() == SortOutcome.FAILED
        warning = service.notifications.get(FAILED_NOTIFICATION_ID)
        assert warning.type == NotificationType.WARNING
        assert "Late" in warning.message

    @pytest.mark.asyncio
    async def test_condition_failure_attaches_probe(self, host, rules, factory, settings, metrics, tmp_path):
        data = tmp_path / "game" / "data"
        data.mkdir(parents=True)
        (data / "skse64_loader.exe").write_bytes(b"not a pe file")
        host.path = str(tmp_path / "game")
        service = await make_service(host, rules, factory, settings, metrics)
        factory.last.sort_results.append(NativeError(
            'Failed to evaluate condition "version("skse64_loader.exe", "2.0", >=)": bad header'
        ))

        assert await service.sort() == SortOutcome.FAILED
        report = service.notifications.get(FAILED_NOTIFICATION_ID)
        assert report.type == NotificationType.ERROR
        assert report.message == "Sorting engine operation failed"
        assert report.detail["File"] == str(data / "skse64_loader.exe")
        assert report.detail["Exists"] is True
        assert report.detail["Size"] == len(b"not a pe file")
        assert report.detail["MD5"] == hashlib.md5(b"not a pe file").hexdigest()
        assert report.detail["Version"] == "unknown"

    @pytest.mark.asyncio
    async def test_condition_failure_missing_file(self, host, rules, factory, settings, metrics, tmp_path):
        host.path = str(tmp_path / "game")
        service = await make_service(host, rules, factory, settings, metrics)
        factory.last.sort_results.append(NativeError(
            'Failed to evaluate condition "version("missing.exe", "1.0", ==)": nope'
        ))

        await service.sort()
        report = service.notifications.get(FAILED_NOTIFICATION_ID)
        assert report.detail["Exists"] is False
        assert report.detail["MD5"] == ""

    @pytest.mark.asyncio
    async def test_generic_failure_report(self, host, rules, factory, settings, metrics):
        service = await make_service(host, rules, factory, settings, metrics)
        factory.last.sort_results.append(NativeError("boost::filesystem::status: denied"))

        assert await service.sort() == SortOutcome.FAILED
        report = service.notifications.get(FAILED_NOTIFICATION_ID)
        assert report.type == NotificationType.ERROR
        assert report.allow_report is False
