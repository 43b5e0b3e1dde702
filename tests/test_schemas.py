import pytest
from pydantic import ValidationError

from prompts import get_prompt
from schemas import MoodSample, SentimentPayload, UserPreferences, parse_json_safe


def test_parse_json_safe_plain_object():
    payload = parse_json_safe('{"sentiment": 0.2, "mood": "calm"}', SentimentPayload)

    assert payload.sentiment == 0.2


def test_parse_json_safe_extracts_first_object():
    text = 'Result: {"sentiment": -0.3, "mood": "tired"} and {"sentiment": 0.9, "mood": "happy"}'

    payload = parse_json_safe(text, SentimentPayload)

    assert payload.mood == "tired"


def test_parse_json_safe_rejects_non_text():
    with pytest.raises(TypeError):
        parse_json_safe(None, SentimentPayload)


def test_parse_json_safe_keeps_schema_errors():
    with pytest.raises(ValidationError):
        parse_json_safe('{"sentiment": "very", "mood": "calm"}', SentimentPayload)


def test_preference_defaults():
    prefs = UserPreferences()

    assert prefs.preferred_study_time == "evening"
    assert prefs.preferred_rest_day_index == 6
    assert prefs.max_daily_hours == 3
    assert prefs.focus_areas == ["Math", "Science"]


def test_mood_value_range():
    with pytest.raises(ValidationError):
        MoodSample(user_id="u", value=0, timestamp="2024-03-01T00:00:00Z")


def test_prompts_render_without_leftover_placeholders():
    messages = get_prompt("weekly_schedule").render(
        start_date="2024-03-11",
        end_date="2024-03-17",
        mood_average=3.5,
        mood_trend="stable",
        performance_json="[]",
        sentiment_score=0.0,
        mood_label="neutral",
        preferences_json="{}",
        rest_day_name="Saturday (2024-03-16)",
        max_daily_minutes=180,
    )

    assert [message["role"] for message in messages] == ["system", "user"]
    assert '{"days": [...]}' in messages[1]["content"]
    assert "Saturday (2024-03-16)" in messages[1]["content"]
    with pytest.raises(KeyError):
        get_prompt("unknown")
