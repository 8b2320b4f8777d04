from app.features.interview_ingest.pipeline.extraction import CandidateExtractor
from app.features.interview_ingest.pipeline.extraction.service import normalize_list_field
from app.features.interview_ingest.pipeline.extraction.strategies import (
    Strategy,
    is_acceptable_email,
    is_plausible_name,
    normalize_phone,
    run_strategies,
)
from app.features.interview_ingest.pipeline.normalization import normalize_conversation
from tests.conftest import make_conversation


def _conversation(transcript=None, data_collection=None):
    return normalize_conversation(
        make_conversation("conv_abc123", transcript=transcript, data_collection=data_collection)
    )


def test_introduction_with_phone_and_no_email():
    conversation = _conversation(
        transcript=[{"role": "user", "message": "Hi, I'm Dana, my number is 555-123-4567"}]
    )

    draft = CandidateExtractor().extract(conversation)

    assert draft.name == "Dana"
    assert draft.phone == "+15551234567"
    assert draft.email is None


def test_metadata_fields_win_over_transcript():
    conversation = _conversation(
        data_collection={
            "candidate_name": {"value": "Maria Lopez", "rationale": "stated at start"},
            "email": {"value": "Maria.Lopez@Example.com"},
            "phone": "(512) 555-0199",
        }
    )

    draft = CandidateExtractor().extract(conversation)

    assert draft.name == "Maria Lopez"
    assert draft.email == "maria.lopez@example.com"
    assert draft.phone == "+15125550199"


def test_default_transcript_yields_name_and_email():
    draft = CandidateExtractor().extract(_conversation())

    assert draft.name == "Dana Whitfield"
    assert draft.email == "dana.whitfield@example.com"


def test_name_from_answer_to_name_question():
    conversation = _conversation(
        transcript=[
            {"role": "agent", "message": "Before we start, what's your full name?"},
            {"role": "user", "message": "Jordan Reyes here."},
        ]
    )

    assert CandidateExtractor().extract(conversation).name == "Jordan Reyes"


def test_spoken_email_gives_email_and_name():
    conversation = _conversation(
        transcript=[{"role": "user", "message": "Sure, it's Casey at example.com"}]
    )

    draft = CandidateExtractor().extract(conversation)

    assert draft.email == "casey@example.com"
    assert draft.name == "Casey"


def test_recording_artifact_email_is_rejected():
    conversation = _conversation(
        transcript=[{"role": "user", "message": "reach me at conversation-123@temp.elevenlabs.com"}],
        data_collection={"email": "someone@internal.temp"},
    )

    assert CandidateExtractor().extract(conversation).email is None


def test_empty_conversation_yields_empty_draft():
    conversation = _conversation(transcript=[])

    draft = CandidateExtractor().extract(conversation)

    assert draft.name is None
    assert draft.email is None
    assert draft.phone is None
    assert draft.overall_score is None
    assert draft.summary == "Interview conversation completed"


def test_explicit_overall_score_is_rounded_half_up():
    conversation = _conversation(data_collection={"overall_score": {"value": "87.5"}})

    assert CandidateExtractor().extract(conversation).overall_score == 88


def test_overall_score_averages_positive_sub_scores():
    conversation = _conversation(
        data_collection={
            "communication_score": 70,
            "motivation_score": {"value": 81},
            "coachability_score": 0,
        }
    )

    draft = CandidateExtractor().extract(conversation)

    assert draft.sub_scores == {"communication_score": 70.0, "motivation_score": 81.0}
    assert draft.overall_score == 76


def test_structured_fields_and_lists():
    conversation = _conversation(
        data_collection={
            "preferred_markets": "Texas, Florida",
            "demo_call_performed": {"value": "yes"},
            "why_insurance": "Family business",
            "strengths": '["Rapport", "Closing"]',
            "development_areas": ["Objection handling"],
        }
    )

    draft = CandidateExtractor().extract(conversation)

    assert draft.structured_fields["preferred_markets"] == ["Texas", "Florida"]
    assert draft.structured_fields["demo_call_performed"] is True
    assert draft.structured_fields["why_insurance"] == "Family business"
    assert draft.structured_fields["transcript_summary"] == "Candidate discussed sales background."
    assert draft.strengths == ["Rapport", "Closing"]
    assert draft.development_areas == ["Objection handling"]


def test_failing_strategy_degrades_to_next():
    def boom(conversation):
        raise KeyError("broken payload")

    strategies = (
        Strategy("boom", 1, boom),
        Strategy("fallback", 2, lambda conversation: "Fallback Name"),
    )

    assert run_strategies(strategies, _conversation()) == ("Fallback Name", "fallback")


def test_name_validator():
    assert is_plausible_name("Dana Whitfield")
    assert not is_plausible_name("Hello There")
    assert not is_plausible_name("dana")
    assert not is_plausible_name("Agent Smith")
    assert not is_plausible_name("Conv 123")
    assert not is_plausible_name("One Two Three Four")


def test_email_validator():
    assert is_acceptable_email("a.b+c@example.co")
    assert not is_acceptable_email("conv_1@example.com")
    assert not is_acceptable_email("dana.12345678@internal.temp")
    assert not is_acceptable_email("not-an-email")


def test_normalize_phone_variants():
    assert normalize_phone("555.123.4567") == "+15551234567"
    assert normalize_phone("1-555-123-4567") == "+15551234567"
    assert normalize_phone("12345") == "12345"
    assert normalize_phone("n/a") is None


def test_normalize_list_field_variants():
    assert normalize_list_field(None) == []
    assert normalize_list_field("single") == ["single"]
    assert normalize_list_field({"value": "a, b"}) == ["a", "b"]
