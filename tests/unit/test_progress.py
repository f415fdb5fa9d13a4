# tests/unit/test_progress.py
"""
Unit tests for progress observers
"""
import asyncio
import logging

import pytest

from core.progress import CallbackProgress, NullProgress, RecordingProgress, as_observer


@pytest.mark.unit
class TestAsObserver:

    def test_none(self):
        assert isinstance(as_observer(None), NullProgress)

    def test_observer_passes_through(self):
        recorder = RecordingProgress()
        assert as_observer(recorder) is recorder

    def test_callable_is_wrapped(self):
        assert isinstance(as_observer(print), CallbackProgress)

    @pytest.mark.parametrize("value", [42, "phase", object()])
    def test_rejects_other_values(self, value):
        with pytest.raises(TypeError):
            as_observer(value)


@pytest.mark.unit
class TestCallbackProgress:

    @pytest.mark.asyncio
    async def test_delivery_is_deferred(self):
        seen = []
        progress = CallbackProgress(seen.append)
        progress.on_phase('base_security')
        assert seen == []
        await asyncio.sleep(0)
        assert seen == ['base_security']

    @pytest.mark.asyncio
    async def test_callback_errors_are_logged(self, caplog):
        def explode(phase):
            raise RuntimeError("consumer gone")

        progress = CallbackProgress(explode)
        with caplog.at_level(logging.WARNING, logger='core.progress'):
            progress.on_phase('scoring')
            await asyncio.sleep(0)
        assert "consumer gone" in caplog.text
