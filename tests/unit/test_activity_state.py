"""
Unit tests for ActivityStateMachine

Tests music/speech mutual exclusion:
- Admission from IDLE
- Rejection reasons for conflicting entries
- clear() always returns to IDLE
"""

import pytest

from jarvis.types.errors import AdmissionRejected, ReasonCode
from jarvis.voice.activity import ActivityState, ActivityStateMachine


@pytest.fixture
def machine():
    return ActivityStateMachine(session_key=42)


@pytest.mark.unit
class TestAdmission:
    """Test try_enter() from each state"""

    def test_starts_idle(self, machine):
        assert machine.current() is ActivityState.IDLE

    def test_music_admitted_from_idle(self, machine):
        admission = machine.try_enter(ActivityState.MUSIC)

        assert admission.admitted
        assert admission.reason is None
        assert machine.is_music()

    def test_music_is_idempotent(self, machine):
        machine.try_enter(ActivityState.MUSIC)

        assert machine.try_enter(ActivityState.MUSIC).admitted
        assert machine.current() is ActivityState.MUSIC

    def test_speech_rejected_while_music(self, machine):
        machine.try_enter(ActivityState.MUSIC)

        admission = machine.try_enter(ActivityState.SPEECH)

        assert not admission.admitted
        assert admission.reason is ReasonCode.MUSIC_PLAYING
        assert machine.current() is ActivityState.MUSIC

    def test_music_rejected_while_speech(self, machine):
        machine.try_enter(ActivityState.SPEECH)

        admission = machine.try_enter(ActivityState.MUSIC)

        assert not admission.admitted
        assert admission.reason is ReasonCode.ALREADY_SPEAKING
        assert machine.is_speech()

    def test_second_speech_rejected(self, machine):
        machine.try_enter(ActivityState.SPEECH)

        admission = machine.try_enter(ActivityState.SPEECH)

        assert admission.reason is ReasonCode.ALREADY_IN_SPEECH

    def test_entering_idle_is_not_allowed(self, machine):
        with pytest.raises(ValueError):
            machine.try_enter(ActivityState.IDLE)


@pytest.mark.unit
class TestClear:
    """Test clear()"""

    @pytest.mark.parametrize("mode", [ActivityState.MUSIC, ActivityState.SPEECH])
    def test_clear_allows_either_mode_again(self, machine, mode):
        machine.try_enter(mode)
        machine.clear()

        assert machine.current() is ActivityState.IDLE
        assert machine.try_enter(ActivityState.SPEECH).admitted
        machine.clear()
        assert machine.try_enter(ActivityState.MUSIC).admitted

    def test_clear_when_idle_is_noop(self, machine):
        machine.clear()
        assert machine.current() is ActivityState.IDLE


@pytest.mark.unit
def test_raise_for_rejection_carries_reason():
    machine = ActivityStateMachine()
    machine.try_enter(ActivityState.MUSIC)

    with pytest.raises(AdmissionRejected) as exc_info:
        machine.try_enter(ActivityState.SPEECH).raise_for_rejection()

    assert exc_info.value.reason is ReasonCode.MUSIC_PLAYING


@pytest.mark.unit
def test_raise_for_rejection_is_silent_when_admitted():
    machine = ActivityStateMachine()
    machine.try_enter(ActivityState.MUSIC).raise_for_rejection()
