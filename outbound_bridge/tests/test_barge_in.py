"""
BargeInController and AudioRelay tests.
"""

from outbound_bridge.src.audio_relay import AudioRelay
from outbound_bridge.src.barge_in import BargeInController


def test_cancels_only_while_response_active():
    controller = BargeInController(enabled=True)

    assert controller.on_speech_started(response_active=False) is False
    assert controller.on_speech_started(response_active=True, response_id="resp_1") is True
    assert controller.interruptions == 1


def test_disabled_controller_never_cancels():
    controller = BargeInController(enabled=False)

    assert controller.on_speech_started(response_active=True, response_id="resp_1") is False
    assert controller.should_forward("resp_1") is True


def test_suppresses_audio_of_cancelled_response_only():
    controller = BargeInController()
    controller.on_response_started("resp_1")
    controller.on_speech_started(response_active=True, response_id="resp_1")

    assert controller.should_forward("resp_1") is False
    assert controller.should_forward(None) is False
    assert controller.should_forward("resp_2") is True

    controller.on_response_started("resp_2")
    assert controller.should_forward("resp_1") is True


def test_suppress_without_barge_in():
    controller = BargeInController(enabled=False)
    controller.suppress("resp_1")

    assert controller.interruptions == 0
    assert controller.should_forward("resp_1") is False
    assert controller.should_forward("resp_2") is True


def test_relay_passes_payload_through_unchanged():
    payload = "/////w==+ab/"

    assert AudioRelay.to_dialogue(payload, dialogue_ready=True) == {
        "type": "input_audio_buffer.append",
        "audio": payload,
    }
    assert AudioRelay.to_dialogue(payload, dialogue_ready=False) is None
    assert AudioRelay.to_telephony("MZ1", payload) == {
        "event": "media",
        "streamSid": "MZ1",
        "media": {"payload": payload},
    }
