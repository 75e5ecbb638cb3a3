"""
Tests for FormHandle.

Tests cover:
- Forwarded operations
- submit() success/failure dispatch and submit_count
- Focus of the first invalid field
- Coalescing of concurrent and re-entrant submissions
- Stale results discarded after reset()
"""
import asyncio
import logging

import pytest

from formstate import FieldError, SubmitResult, create_form

from conftest import FakeRenderer, email_resolver


class TestForwarding:
    """Test that the handle forwards to the current container."""

    def test_set_and_get_values(self, email_form):
        handle = email_form.handle
        handle.set_value('email', 'a@b.com')
        assert handle.get_values() == {'email': 'a@b.com'}
        assert handle.get_values('email') == 'a@b.com'

    def test_errors_round_trip(self, email_form):
        handle = email_form.handle
        handle.set_error('email', {'kind': 'server', 'message': 'Taken'})
        assert handle.form_state.errors == {'email': FieldError('server', 'Taken')}
        assert handle.get_field_state('email').invalid
        handle.clear_errors('email')
        assert handle.form_state.is_valid

    def test_reset_and_reset_field(self, email_form):
        handle = email_form.handle
        handle.set_value('email', 'x')
        handle.reset_field('email')
        assert handle.get_values('email') == ''
        handle.set_value('email', 'y')
        handle.reset({'email': 'z@z.io'})
        assert handle.get_values() == {'email': 'z@z.io'}
        assert not handle.form_state.is_dirty

    def test_trigger(self, email_form):
        handle = email_form.handle
        assert handle.trigger('email') is False
        handle.set_value('email', 'a@b.com')
        assert handle.trigger() is True
        assert asyncio.run(handle.trigger_async('email')) is True

    def test_watch(self, email_form):
        received = []
        value, subscription = email_form.handle.watch('email', received.append)
        assert value == ''
        email_form.handle.set_value('email', 'x')
        subscription.release()
        email_form.handle.set_value('email', 'y')
        assert [snapshot['email'] for snapshot in received] == ['x']

    def test_unregister(self, email_form):
        email_form.handle.unregister('email')
        assert email_form.handle.get_values() == {}


class TestFocus:
    """Test set_focus()."""

    def test_focus_mounted_renderer(self, email_form, renderer):
        assert email_form.handle.set_focus('email') is True
        assert renderer.focus_count == 1
        assert renderer.select_count == 0

    def test_focus_with_select(self, email_form, renderer):
        email_form.handle.set_focus('email', should_select=True)
        assert renderer.select_count == 1

    def test_focus_without_renderer_warns(self, email_form, caplog):
        with caplog.at_level(logging.WARNING, logger="formstate.form_state"):
            assert email_form.handle.set_focus('nothing.here') is False
        assert "no renderer is mounted" in caplog.text

    def test_set_error_with_focus(self, email_form, renderer):
        email_form.handle.set_error('email', 'Taken', should_focus=True)
        assert renderer.focus_count == 1


class TestSubmit:
    """Test submit() dispatch."""

    def test_success_calls_on_submit_and_counts(self, email_form, recorder):
        email_form.handle.set_value('email', 'a@b.com')
        result = email_form.handle.submit()

        assert result == SubmitResult(success=True, values={'email': 'a@b.com'}, errors={})
        assert recorder.submitted == [{'email': 'a@b.com'}]
        assert recorder.failed == []
        state = email_form.handle.form_state
        assert state.submit_count == 1
        assert state.is_submitted
        assert state.is_submit_successful
        assert not state.is_submitting

    def test_failure_calls_on_error_and_focuses(self, email_form, recorder, renderer):
        email_form.handle.set_value('email', 'bad')
        result = email_form.handle.submit()

        assert not result.success
        assert recorder.submitted == []
        assert recorder.failed[0]['email'].kind == 'pattern'
        assert email_form.handle.form_state.submit_count == 0
        assert renderer.focus_count == 1

    def test_no_focus_when_disabled(self, recorder):
        renderer = FakeRenderer()
        form = create_form(
            {'initial_values': {'email': ''}, 'resolver': email_resolver, 'shouldFocusError': False},
            on_error=recorder.on_error,
        )
        form.control('email').attach(renderer)
        form.handle.submit()
        assert renderer.focus_count == 0
        form.close()

    def test_first_error_in_tree_order_is_focused(self):
        first, second = FakeRenderer('first'), FakeRenderer('second')

        def resolver(values, paths):
            return {'b': 'required', 'a': 'required'}

        form = create_form({'initial_values': {'a': None, 'b': None}, 'resolver': resolver})
        form.control('b').attach(second)
        form.control('a').attach(first)
        form.handle.submit()
        assert first.focus_count == 1
        assert second.focus_count == 0
        form.close()

    def test_submit_without_callbacks(self):
        form = create_form({'initial_values': {'email': 'a@b.com'}, 'resolver': email_resolver})
        assert form.handle.submit().success
        assert form.handle.form_state.submit_count == 1

    def test_revalidates_on_change_after_failed_submit(self, email_form):
        handle = email_form.handle
        handle.set_value('email', 'bad')
        handle.submit()
        assert 'email' in handle.form_state.errors

        handle.set_value('email', 'a@b.com')
        assert handle.form_state.errors == {}

    def test_callback_exception_propagates_and_clears_submitting(self, email_form):
        def on_submit(values):
            raise ValueError("callback failed")

        email_form.handle.on_submit = on_submit
        email_form.handle.set_value('email', 'a@b.com')
        with pytest.raises(ValueError):
            email_form.handle.submit()
        assert not email_form.handle.form_state.is_submitting


class TestCoalescing:
    """A submission while one is outstanding never starts a second pass."""

    def test_reentrant_sync_submit_returns_none(self, email_form):
        nested = []

        def on_submit(values):
            nested.append(email_form.handle.submit())

        email_form.handle.on_submit = on_submit
        email_form.handle.set_value('email', 'a@b.com')
        email_form.handle.submit()

        assert nested == [None]
        assert email_form.handle.form_state.submit_count == 1

    def test_concurrent_submit_async_runs_one_validation_pass(self, recorder):
        calls = []

        async def resolver(values, paths):
            calls.append(paths)
            await asyncio.sleep(0)
            return email_resolver(values, paths)

        form = create_form(
            {'initial_values': {'email': 'a@b.com'}, 'resolver': resolver},
            on_submit=recorder.on_submit,
            on_error=recorder.on_error,
        )

        async def scenario():
            return await asyncio.gather(form.handle.submit_async(), form.handle.submit_async())

        first, second = asyncio.run(scenario())

        assert first is second
        assert first.success
        assert len(calls) == 1
        assert recorder.submitted == [{'email': 'a@b.com'}]
        assert recorder.failed == []
        assert form.handle.form_state.submit_count == 1
        form.close()

    def test_async_callback_is_awaited_while_submitting(self):
        observed = []

        form = create_form({'initial_values': {'email': 'a@b.com'}, 'resolver': email_resolver})

        async def on_submit(values):
            await asyncio.sleep(0)
            observed.append(form.handle.form_state.is_submitting)

        form.handle.on_submit = on_submit
        result = asyncio.run(form.handle.submit_async())

        assert result.success
        assert observed == [True]
        assert not form.handle.form_state.is_submitting
        form.close()

    def test_sync_submit_drives_async_resolver_without_loop(self, recorder):
        async def resolver(values, paths):
            return email_resolver(values, paths)

        form = create_form(
            {'initial_values': {'email': 'bad'}, 'resolver': resolver},
            on_error=recorder.on_error,
        )
        result = form.handle.submit()
        assert not result.success
        assert len(recorder.failed) == 1
        form.close()

    def test_sync_submit_inside_loop_with_async_resolver_raises(self):
        async def resolver(values, paths):
            return {}

        form = create_form({'resolver': resolver})

        async def scenario():
            with pytest.raises(RuntimeError, match="submit_async"):
                form.handle.submit()
            return form.handle.form_state.is_submitting

        assert asyncio.run(scenario()) is False
        form.close()


class TestStaleResults:
    """reset() while validation is outstanding discards the result."""

    def test_reset_discards_outstanding_submission(self, recorder):
        form = create_form(
            {'initial_values': {'email': 'bad'}},
            on_submit=recorder.on_submit,
            on_error=recorder.on_error,
        )

        async def scenario():
            started = asyncio.Event()
            gate = asyncio.Event()

            async def resolver(values, paths):
                started.set()
                await gate.wait()
                return email_resolver(values, paths)

            form.reconfigure({'initial_values': {'email': 'bad'}, 'resolver': resolver})
            task = asyncio.ensure_future(form.handle.submit_async())
            await started.wait()
            assert form.handle.form_state.is_submitting

            form.handle.reset()
            gate.set()
            return await task

        result = asyncio.run(scenario())

        assert result.discarded
        assert not result.success
        assert recorder.submitted == []
        assert recorder.failed == []
        state = form.handle.form_state
        assert state.errors == {}
        assert state.submit_count == 0
        assert not state.is_submitting
        form.close()

    def test_unregister_discards_outstanding_trigger(self):
        form = create_form({'initial_values': {'email': 'bad'}})

        async def scenario():
            started = asyncio.Event()
            gate = asyncio.Event()

            async def resolver(values, paths):
                started.set()
                await gate.wait()
                return email_resolver(values, paths)

            form.reconfigure({'initial_values': {'email': 'bad'}, 'resolver': resolver})
            form.control('email')
            task = asyncio.ensure_future(form.handle.trigger_async())
            await started.wait()
            form.handle.unregister('email')
            gate.set()
            await task
            return form.handle.form_state.errors

        assert asyncio.run(scenario()) == {}
        form.close()
