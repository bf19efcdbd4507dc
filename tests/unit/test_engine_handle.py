"""
Engine Handle: Unit Tests
===========================

Covers:
  1. translate_engine_error (native message → typed error)
  2. EngineHandle (closed handling, idempotent close, result translation)
"""

import pytest

from autosort.core.exceptions import (
    ConditionEvalError,
    CyclicInteractionError,
    EngineClosedError,
    EngineError,
    InvalidItemError,
    InvalidParameterError,
    MissingGroupError,
)
from autosort.core.types import CycleEdge, EdgeType
from autosort.infra.engine import EngineHandle, translate_engine_error

from fakes import FakeNativeEngine, NativeError


class TestTranslateEngineError:

    def test_already_closed(self):
        err = translate_engine_error(NativeError("already closed"), "sort")
        assert isinstance(err, EngineClosedError)
        assert err.operation == "sort"

    def test_cyclic_interaction_carries_cycle(self):
        native = NativeError(
            "Cyclic interaction detected",
            cycle=[
                {"name": "A.esp", "typeOfEdgeToNextVertex": "userlistLoadAfter"},
                {"name": "B.esp", "typeOfEdgeToNextVertex": "group"},
            ],
        )
        err = translate_engine_error(native)
        assert isinstance(err, CyclicInteractionError)
        assert err.cycle == [
            CycleEdge("A.esp", EdgeType.USER_LOAD_AFTER),
            CycleEdge("B.esp", EdgeType.GROUP),
        ]

    def test_cyclic_interaction_without_cycle_is_generic(self):
        err = translate_engine_error(NativeError("Cyclic interaction detected"))
        assert type(err) is EngineError

    def test_invalid_item(self):
        err = translate_engine_error(NativeError('"Foo.esp" is not a valid plugin'))
        assert isinstance(err, InvalidItemError)
        assert err.item == "Foo.esp"
        assert err.error_code == "ENGINE_INVALID_ITEM"

    def test_missing_group(self):
        err = translate_engine_error(NativeError('The group "Late Loaders" does not exist'))
        assert isinstance(err, MissingGroupError)
        assert err.group == "Late Loaders"

    def test_condition_with_executable(self):
        native = NativeError(
            'Failed to evaluate condition "version("skse64_loader.exe", "2.0.17", >=)": bad'
        )
        err = translate_engine_error(native)
        assert isinstance(err, ConditionEvalError)
        assert err.path == "skse64_loader.exe"

    def test_condition_without_executable(self):
        err = translate_engine_error(NativeError('Failed to evaluate condition "file("x.esp")"'))
        assert isinstance(err, ConditionEvalError)
        assert err.path is None

    def test_invalid_parameter(self):
        err = translate_engine_error(NativeError("Invalid argument", arg="plugin"), "metadata")
        assert isinstance(err, InvalidParameterError)
        assert err.arg == "plugin"

    def test_generic_allows_report(self):
        err = translate_engine_error(NativeError("something odd"))
        assert type(err) is EngineError
        assert err.allow_report is True

    def test_filesystem_errors_not_reportable(self):
        err = translate_engine_error(NativeError("boost::filesystem::status: Access denied"))
        assert err.allow_report is False


class TestEngineHandle:

    def setup_method(self):
        self.native = FakeNativeEngine()

    @pytest.mark.asyncio
    async def test_sort_returns_engine_order(self, metrics):
        handle = EngineHandle("skyrimse", self.native, metrics=metrics)
        self.native.sort_results.append(["B.esp", "A.esp"])
        assert await handle.sort_plugins(["A.esp", "B.esp"]) == ["B.esp", "A.esp"]

    @pytest.mark.asyncio
    async def test_native_failure_is_translated(self, metrics):
        handle = EngineHandle("skyrimse", self.native, metrics=metrics)
        self.native.sort_results.append(NativeError('"Foo.esp" is not a valid plugin'))
        with pytest.raises(InvalidItemError) as info:
            await handle.sort_plugins(["Foo.esp"])
        assert isinstance(info.value.original_error, NativeError)

    @pytest.mark.asyncio
    async def test_closed_handle_raises_without_calling_engine(self, metrics):
        handle = EngineHandle("skyrimse", self.native, metrics=metrics)
        handle.close()
        with pytest.raises(EngineClosedError):
            await handle.sort_plugins(["A.esp"])
        assert self.native.sort_inputs == []

    def test_close_is_idempotent(self, metrics):
        handle = EngineHandle("skyrimse", self.native, metrics=metrics)
        assert handle.close() is True
        assert handle.close() is False
        assert self.native.close_calls == 1
        assert metrics.registry.get_sample_value("autosort_engine_instances_live") == 0

    def test_reports_native_closed_state(self, metrics):
        handle = EngineHandle("skyrimse", self.native, metrics=metrics)
        self.native.closed = True
        assert handle.is_closed()

    @pytest.mark.asyncio
    async def test_groups_path_is_typed(self, metrics):
        handle = EngineHandle("skyrimse", self.native, metrics=metrics)
        path = await handle.get_groups_path("early", "late")
        assert path == [
            CycleEdge("early", EdgeType.MASTERLIST_LOAD_AFTER),
            CycleEdge("late", EdgeType.HARDCODED),
        ]

    @pytest.mark.asyncio
    async def test_missing_userlist_passes_empty_path(self, metrics):
        handle = EngineHandle("skyrimse", self.native, metrics=metrics)
        await handle.load_lists("/data/masterlist.yaml", None)
        assert self.native.loaded_lists == [("/data/masterlist.yaml", "")]
