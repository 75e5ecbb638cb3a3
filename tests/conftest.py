"""Pytest configuration and shared fixtures."""
import re

import pytest

from formstate import FormStateContainer, create_form

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class FakeRenderer:
    """Stand-in for a mounted widget: counts focus requests."""

    def __init__(self, name: str = "widget"):
        self.name = name
        self.focus_count = 0
        self.select_count = 0

    def focus(self):
        self.focus_count += 1

    def select(self):
        self.select_count += 1


class CallbackRecorder:
    """Records on_submit / on_error / on_change invocations."""

    def __init__(self):
        self.submitted = []
        self.failed = []
        self.changes = []

    def on_submit(self, values):
        self.submitted.append(values)

    def on_error(self, errors):
        self.failed.append(errors)

    def on_change(self, values):
        self.changes.append(values)


def email_resolver(values, paths):
    """Rejects an email that does not look like one."""
    if not EMAIL_PATTERN.match(values.get('email') or ''):
        return {'email': {'kind': 'pattern', 'message': 'Enter a valid email'}}
    return {}


@pytest.fixture
def renderer():
    """Provide a fresh fake renderer."""
    return FakeRenderer()


@pytest.fixture
def recorder():
    """Provide a callback recorder."""
    return CallbackRecorder()


@pytest.fixture
def email_form(recorder, renderer):
    """Form with initial {email: ""}, mode=onSubmit and the email resolver.

    The email control is mounted with a renderer attached.
    """
    form = create_form(
        {'mode': 'onSubmit', 'initial_values': {'email': ''}, 'resolver': email_resolver},
        on_submit=recorder.on_submit,
        on_error=recorder.on_error,
        on_change=recorder.on_change,
    )
    control = form.control('email', required=True)
    control.attach(renderer)
    yield form
    form.close()


@pytest.fixture
def container():
    """Provide a container with a small nested initial tree."""
    state = FormStateContainer({
        'initial_values': {
            'name': 'Ada',
            'user': {'email': 'ada@example.com', 'age': 36},
            'items': [{'name': 'a'}, {'name': 'b'}, {'name': 'c'}],
        },
    })
    state.register('name')
    state.register('user.email')
    state.register('user.age')
    yield state
    state.close()
