from __future__ import annotations

from librarian.intent import detect_intent


def test_button_styling_request_is_ui_only() -> None:
    signals = detect_intent("fix the login button styling")

    assert signals.intents == ("ui",)
    assert signals.ui_only
    assert "button" in signals.matches["ui"]


def test_generic_fix_request_falls_back_to_behavior() -> None:
    signals = detect_intent("fix the broken thing")

    assert signals.intents == ("behavior",)
    assert signals.matches["behavior"] == ("fix", "broken")


def test_logging_words_alone_do_not_trigger_observability() -> None:
    signals = detect_intent("add logging to the request handler")

    assert not signals.has("observability")
    assert signals.has("behavior")


def test_infra_conditional_words_need_a_base_match() -> None:
    assert not detect_intent("build the release package").has("infra")
    infra = detect_intent("build the docker image in the ci pipeline")
    assert infra.has("infra")
    assert "build" in infra.matches["infra"]


def test_buckets_follow_canonical_order() -> None:
    signals = detect_intent("add pytest coverage for the jwt auth cache")
    assert signals.intents == ("behavior", "testing", "security", "performance")


def test_plural_and_inflected_keywords_still_match() -> None:
    signals = detect_intent("Fix the buttons on the settings pages")

    assert signals.intents == ("ui",)
    assert signals.matches["ui"] == ("page", "button")
    assert detect_intent("add tests before deploying the docker images").intents == ("testing", "infra")


def test_keywords_only_match_at_word_start() -> None:
    signals = detect_intent("rebuild the login flow")

    assert not signals.has("ui")
    assert not signals.has("observability")
    assert signals.intents == ("behavior",)
